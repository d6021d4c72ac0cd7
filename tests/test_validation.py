import pytest

from vg_manager.api import ThinPoolConfig, VolumeGroupSpec
from vg_manager.lvm import LVM
from vg_manager.validation import InconsistentVolumeGroupError, validate_volume_group

from tests.fakes import FakeHost, FakeLV

SPEC = VolumeGroupSpec(name="vg1", thin_pool_config=ThinPoolConfig("pool"))


def _host(**pool) -> FakeHost:
    host = FakeHost()
    host.add_vg("vg1", ["/dev/sdb"]).lvs["pool"] = FakeLV(**pool)
    return host


def test_volume_group_without_thin_pool_is_not_inspected() -> None:
    host = FakeHost()

    validate_volume_group(LVM(host), VolumeGroupSpec(name="vg1"))

    assert host.calls == []


def test_healthy_thin_pool_passes() -> None:
    validate_volume_group(LVM(_host(size=90.0)), SPEC)


def test_empty_report_fails() -> None:
    host = FakeHost()
    host.add_vg("vg1", ["/dev/sdb"])

    with pytest.raises(InconsistentVolumeGroupError, match="report was empty"):
        validate_volume_group(LVM(host), SPEC)


def test_missing_pool_fails() -> None:
    host = FakeHost()
    host.add_vg("vg1", ["/dev/sdb"]).lvs["other"] = FakeLV()

    with pytest.raises(InconsistentVolumeGroupError, match="no longer present"):
        validate_volume_group(LVM(host), SPEC)


@pytest.mark.parametrize(
    "pool, message",
    [
        ({"attr": "-wi-a-----"}, "not a thin pool"),
        ({"attr": "twi---tz--"}, "inactive"),
        ({"attr": "twi-a"}, "lv_attr"),
        ({"metadata_percent": "95.01"}, "over the 95% limit"),
        ({"metadata_percent": ""}, "metadata percentage"),
    ],
)
def test_degraded_pool_fails(pool, message) -> None:
    with pytest.raises(InconsistentVolumeGroupError, match=message):
        validate_volume_group(LVM(_host(**pool)), SPEC)


def test_metadata_at_limit_passes() -> None:
    validate_volume_group(LVM(_host(metadata_percent="95.00")), SPEC)
