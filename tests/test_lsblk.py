import json

import pytest

from vg_manager.lsblk import LSBLK_COLUMNS, list_block_devices, parse_lsblk_output

LSBLK_OUTPUT = {
    "blockdevices": [
        {
            "name": "/dev/sda",
            "kname": "/dev/sda",
            "type": "disk",
            "size": 53687091200,
            "ro": False,
            "state": "running",
            "rota": True,
            "model": "QEMU HARDDISK",
            "serial": "drive-0",
            "partlabel": None,
            "fstype": None,
            "mountpoint": None,
            "children": [
                {
                    "name": "/dev/sda1",
                    "kname": "/dev/sda1",
                    "type": "part",
                    "size": 1048576,
                    "ro": "0",
                    "partlabel": "BIOS-BOOT",
                    "fstype": None,
                    "mountpoint": None,
                },
                {
                    "name": "/dev/sda2",
                    "kname": "/dev/sda2",
                    "type": "part",
                    "size": "52000000000",
                    "ro": "1",
                    "fstype": "xfs",
                    "mountpoint": "/boot",
                    "children": [
                        {"name": "/dev/mapper/root", "kname": "/dev/dm-0", "type": "crypt"},
                    ],
                },
            ],
        },
        {"name": "/dev/sr0", "kname": "/dev/sr0", "type": "rom", "size": 0, "ro": True},
    ]
}


class StubExecutor:
    def __init__(self, output: str) -> None:
        self.output = output
        self.commands = []

    def run(self, command, args):
        self.commands.append((command, *args))
        return self.output


def test_parse_builds_arena_with_parent_and_child_indices() -> None:
    tree = parse_lsblk_output(json.dumps(LSBLK_OUTPUT))

    assert [device.kname for device in tree.walk()] == [
        "/dev/sda",
        "/dev/sda1",
        "/dev/sda2",
        "/dev/dm-0",
        "/dev/sr0",
    ]
    sda = tree.find("/dev/sda")
    assert sda is not None and sda.parent is None
    assert [child.kname for child in tree.children(sda)] == ["/dev/sda1", "/dev/sda2"]
    mapper = tree.find("/dev/mapper/root")
    assert mapper is not None and mapper.kname == "/dev/dm-0"
    assert tree.devices[mapper.parent].kname == "/dev/sda2"


def test_parse_normalises_column_values() -> None:
    tree = parse_lsblk_output(json.dumps(LSBLK_OUTPUT))

    sda1 = tree.find("/dev/sda1")
    sda2 = tree.find("/dev/sda2")
    assert sda1.read_only is False
    assert sda1.partlabel == "BIOS-BOOT"
    assert sda2.read_only is True
    assert sda2.size == 52000000000
    assert sda2.mountpoints == ["/boot"]
    assert sda2.has_children


def test_descendants_bottom_up_lists_innermost_first() -> None:
    tree = parse_lsblk_output(json.dumps(LSBLK_OUTPUT))

    descendants = tree.descendants_bottom_up(tree.find("/dev/sda"))

    assert [device.kname for device in descendants] == ["/dev/sda1", "/dev/dm-0", "/dev/sda2"]


def test_parse_rejects_missing_blockdevices() -> None:
    with pytest.raises(ValueError):
        parse_lsblk_output(json.dumps({"devices": []}))
    with pytest.raises(ValueError):
        parse_lsblk_output("{not json")


def test_list_block_devices_runs_lsblk() -> None:
    executor = StubExecutor(json.dumps({"blockdevices": []}))

    tree = list_block_devices(executor)

    assert len(tree) == 0
    assert executor.commands == [("lsblk", "--json", "--paths", "--bytes", "-o", LSBLK_COLUMNS)]
