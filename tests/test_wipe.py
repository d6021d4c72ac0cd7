from typing import List, Sequence, Tuple

import pytest

from vg_manager.api import DeviceSelector, VolumeGroupSpec
from vg_manager.executor import CommandError
from vg_manager.lsblk import BlockDevice, BlockDeviceTree
from vg_manager.lvm import PhysicalVolume, VolumeGroup
from vg_manager.wipe import DeviceMapperReferenceNotFound, DeviceWiper, WipeError


class RecordingExecutor:
    def __init__(self, failures=None) -> None:
        self.failures = dict(failures or {})
        self.commands: List[Tuple[str, ...]] = []

    def run(self, command: str, args: Sequence[str]) -> str:
        cmd = (command, *args)
        self.commands.append(cmd)
        stderr = self.failures.get(cmd)
        if stderr is not None:
            raise CommandError(1, " ".join(cmd), output="", stderr=stderr)
        return ""


def identity(path: str) -> str:
    return path


def _tree() -> BlockDeviceTree:
    tree = BlockDeviceTree()
    sdb = tree.add(BlockDevice("/dev/sdb", "/dev/sdb", type="disk"))
    part = tree.add(BlockDevice("/dev/sdb1", "/dev/sdb1", type="part"), sdb)
    crypt = tree.add(BlockDevice("/dev/mapper/data", "/dev/dm-0", type="crypt"), part)
    tree.add(BlockDevice("/dev/mapper/vg-lv", "/dev/dm-1", type="lvm"), crypt)
    tree.add(BlockDevice("/dev/sdc", "/dev/sdc", type="disk"))
    return tree


def _spec(paths=(), optional=(), force=True) -> VolumeGroupSpec:
    return VolumeGroupSpec(
        name="vg1",
        device_selector=DeviceSelector(paths=tuple(paths), optional_paths=tuple(optional), force_wipe=force),
    )


def test_without_force_wipe_nothing_runs() -> None:
    executor = RecordingExecutor()

    wiped = DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(
        _spec(["/dev/sdb"], force=False), [], _tree()
    )

    assert wiped is False
    assert executor.commands == []


def test_wipe_removes_mapper_children_bottom_up() -> None:
    executor = RecordingExecutor()

    wiped = DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(
        _spec(["/dev/sdb"]), [], _tree()
    )

    assert wiped is True
    assert executor.commands == [
        ("wipefs", "--all", "--force", "/dev/sdb"),
        ("dmsetup", "remove", "--force", "/dev/dm-1"),
        ("dmsetup", "remove", "--force", "/dev/dm-0"),
    ]


def test_volume_group_members_are_not_wiped() -> None:
    executor = RecordingExecutor()
    vgs = [VolumeGroup("vg1", [PhysicalVolume("/dev/sdb", "vg1")])]

    wiped = DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(
        _spec(["/dev/sdb"], ["/dev/sdc"]), vgs, _tree()
    )

    assert wiped is True
    assert executor.commands == [("wipefs", "--all", "--force", "/dev/sdc")]


def test_absent_mapping_is_skipped() -> None:
    executor = RecordingExecutor(
        {("dmsetup", "remove", "--force", "/dev/dm-1"): "device-mapper: remove ioctl failed: No such device or address"}
    )

    DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(_spec(["/dev/sdb"]), [], _tree())

    assert executor.commands[-1] == ("dmsetup", "remove", "--force", "/dev/dm-0")


def test_dmsetup_remove_classifies_not_found() -> None:
    executor = RecordingExecutor({("dmsetup", "remove", "--force", "/dev/dm-9"): "Device dm-9 not found"})

    with pytest.raises(DeviceMapperReferenceNotFound):
        DeviceWiper(executor, resolve_path=identity).dmsetup_remove("/dev/dm-9")


def test_required_wipe_failure_aborts() -> None:
    executor = RecordingExecutor({("wipefs", "--all", "--force", "/dev/sdb"): "probing failed"})

    with pytest.raises(WipeError, match="/dev/sdb"):
        DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(
            _spec(["/dev/sdb"], ["/dev/sdc"]), [], _tree()
        )

    assert ("wipefs", "--all", "--force", "/dev/sdc") not in executor.commands


def test_required_mapper_failure_aborts() -> None:
    executor = RecordingExecutor({("dmsetup", "remove", "--force", "/dev/dm-1"): "Device or resource busy"})

    with pytest.raises(WipeError, match="/dev/dm-1"):
        DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(_spec(["/dev/sdb"]), [], _tree())


def test_optional_wipe_failure_is_logged_only() -> None:
    executor = RecordingExecutor({("wipefs", "--all", "--force", "/dev/sdc"): "probing failed"})

    wiped = DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(
        _spec(optional=["/dev/sdc", "/dev/sdb"]), [], _tree()
    )

    assert wiped is True
    assert ("wipefs", "--all", "--force", "/dev/sdb") in executor.commands


def test_unknown_device_is_not_wiped() -> None:
    executor = RecordingExecutor()

    wiped = DeviceWiper(executor, resolve_path=identity).wipe_devices_if_necessary(
        _spec(["/dev/sdz"]), [], _tree()
    )

    assert wiped is False
    assert executor.commands == []


def test_foreign_member_reached_through_symlink_is_not_wiped() -> None:
    executor = RecordingExecutor()
    vgs = [VolumeGroup("other", [PhysicalVolume("/dev/sdc", "other")])]
    links = {"/dev/disk/by-id/wwn-0x5000c500a1b2c3d4": "/dev/sdc"}

    wiped = DeviceWiper(executor, resolve_path=lambda path: links.get(path, path)).wipe_devices_if_necessary(
        _spec(["/dev/disk/by-id/wwn-0x5000c500a1b2c3d4"]), vgs, _tree()
    )

    assert wiped is False
    assert executor.commands == []
