import json
from typing import Dict, List, Sequence, Tuple

import pytest

from vg_manager.executor import CommandError
from vg_manager.lvm import (
    LVM,
    LVMError,
    PhysicalVolume,
    STATE_ACTIVE,
    VOLUME_TYPE_THIN_POOL,
    VolumeGroup,
    VolumeGroupNotFound,
    parse_lv_attr,
)


class ScriptedExecutor:
    """Answer commands from a ``command -> stdout`` table and record them."""

    def __init__(self, outputs: Dict[str, str] | None = None, failing: Sequence[str] = ()) -> None:
        self.outputs = outputs or {}
        self.failing = set(failing)
        self.commands: List[Tuple[str, ...]] = []

    def run(self, command: str, args: Sequence[str]) -> str:
        self.commands.append((command, *args))
        if command in self.failing:
            raise CommandError(5, command, output="", stderr="device busy")
        return self.outputs.get(command, "")


def _report(key: str, records: list) -> str:
    return json.dumps({"report": [{key: records}]})


def test_list_vgs_joins_physical_volumes() -> None:
    executor = ScriptedExecutor(
        {
            "vgs": _report("vg", [{"vg_name": "vg1", "vg_size": "<99.99g", "vg_free": "10.00g"}]),
            "pvs": _report("pv", [{"pv_name": "/dev/sdb", "vg_name": "vg1"}]),
        }
    )

    vgs = LVM(executor).list_vgs()

    assert vgs == [
        VolumeGroup("vg1", [PhysicalVolume("/dev/sdb", "vg1")], size="<99.99g", free="10.00g")
    ]
    assert executor.commands == [
        ("vgs", "--units", "g", "--reportformat", "json"),
        ("pvs", "--units", "g", "-v", "--reportformat", "json", "-S", "vgname=vg1"),
    ]


def test_get_vg_raises_when_absent() -> None:
    executor = ScriptedExecutor({"vgs": _report("vg", [])})

    with pytest.raises(VolumeGroupNotFound):
        LVM(executor).get_vg("vg1")


def test_unparsable_report_raises_lvm_error() -> None:
    executor = ScriptedExecutor({"vgs": "not json"})

    with pytest.raises(LVMError):
        LVM(executor).list_vgs()


def test_command_failure_raises_lvm_error() -> None:
    executor = ScriptedExecutor(failing=["vgcreate"])

    with pytest.raises(LVMError, match="device busy"):
        LVM(executor).create_vg("vg1", ["/dev/sdb"])


def test_create_and_extend_reject_empty_input_before_any_command() -> None:
    executor = ScriptedExecutor()
    lvm = LVM(executor)

    with pytest.raises(ValueError):
        lvm.create_vg("vg1", [])
    with pytest.raises(ValueError):
        lvm.create_vg("", ["/dev/sdb"])
    with pytest.raises(ValueError):
        lvm.extend_vg(VolumeGroup("vg1"), [])

    assert executor.commands == []


def test_create_and_extend_argument_vectors() -> None:
    executor = ScriptedExecutor()
    lvm = LVM(executor)

    vg = lvm.create_vg("vg1", ["/dev/sdb", "/dev/sdc"])
    vg = lvm.extend_vg(vg, ["/dev/sdd"])

    assert executor.commands == [
        ("vgcreate", "vg1", "/dev/sdb", "/dev/sdc"),
        ("vgextend", "vg1", "/dev/sdd"),
    ]
    assert vg.pv_names == ["/dev/sdb", "/dev/sdc", "/dev/sdd"]


def test_delete_vg_deactivates_removes_and_releases_pvs() -> None:
    executor = ScriptedExecutor()

    LVM(executor).delete_vg(VolumeGroup("vg1", [PhysicalVolume("/dev/sdb", "vg1")]))

    assert executor.commands == [
        ("vgchange", "-an", "vg1"),
        ("vgremove", "vg1"),
        ("pvremove", "/dev/sdb"),
    ]


def test_thin_pool_argument_vectors() -> None:
    executor = ScriptedExecutor()
    lvm = LVM(executor)

    lvm.create_thin_pool("pool", "vg1", 90)
    lvm.extend_lv("pool", "vg1", 80)
    lvm.delete_lv("pool", "vg1")

    assert executor.commands == [
        ("lvcreate", "-l", "90%FREE", "-c", "128", "-Z", "y", "-T", "vg1/pool"),
        ("lvextend", "-l", "80%Vg", "vg1/pool"),
        ("lvchange", "-an", "vg1/pool"),
        ("lvremove", "-y", "vg1/pool"),
    ]


def test_lv_exists_uses_combined_selector() -> None:
    executor = ScriptedExecutor({"lvs": _report("lv", [])})

    assert LVM(executor).lv_exists("pool", "vg1") is False
    assert executor.commands == [
        ("lvs", "-S", "vgname=vg1,lvname=pool", "--reportformat", "json"),
    ]


def test_list_lvs_parses_attributes() -> None:
    executor = ScriptedExecutor(
        {
            "lvs": _report(
                "lv",
                [
                    {
                        "lv_name": "pool",
                        "vg_name": "vg1",
                        "pool_lv": "",
                        "lv_attr": "twi-a-tz--",
                        "lv_size": "90.00g",
                        "metadata_percent": "12.50",
                        "chunk_size": "128.00k",
                    }
                ],
            )
        }
    )

    (lv,) = LVM(executor).list_lvs("vg1")

    assert lv.size == "90.00g"
    assert lv.attributes.volume_type == VOLUME_TYPE_THIN_POOL
    assert lv.attributes.state == STATE_ACTIVE


def test_parse_lv_attr_fields() -> None:
    attributes = parse_lv_attr("Vwi-aotz--")

    assert attributes.volume_type == "thin-volume"
    assert attributes.permissions == "writeable"
    assert attributes.open is True
    assert attributes.zero is True
    assert str(attributes) == "Vwi-aotz--"


def test_parse_lv_attr_rejects_wrong_length() -> None:
    with pytest.raises(ValueError):
        parse_lv_attr("twi-a")
