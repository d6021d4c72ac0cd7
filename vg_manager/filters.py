"""Per-device eligibility filters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .logging_utils import log_event
from .lsblk import BlockDevice
from .lvm import LVM

__all__ = [
    "DEFAULT_MIN_DEVICE_SIZE",
    "DeviceFilter",
    "Exclusion",
    "FilterResult",
    "apply_filters",
    "default_filters",
    "filter_devices",
]

DEFAULT_MIN_DEVICE_SIZE = 1024 ** 3

FSTYPE_LVM2_MEMBER = "LVM2_member"

_EXCLUDED_TYPES = {"rom", "lvm"}


@dataclass(frozen=True)
class DeviceFilter:
    """A named predicate returning ``True`` when a device may be used."""

    name: str
    predicate: Callable[[BlockDevice], bool]


@dataclass(frozen=True)
class Exclusion:
    """Why a device was not eligible.

    ``error`` is set when the filter itself failed rather than rejecting the
    device by rule.
    """

    device: str
    filter: str
    error: Optional[str] = None

    @property
    def reason(self) -> str:
        if self.error is not None:
            return f"{self.filter}: error: {self.error}"
        return self.filter


@dataclass
class FilterResult:
    available: List[BlockDevice] = field(default_factory=list)
    excluded: List[Exclusion] = field(default_factory=list)


def apply_filters(device: BlockDevice, filters: Sequence[DeviceFilter]) -> Optional[Exclusion]:
    """Run *filters* in order; return the first exclusion or ``None``."""

    for device_filter in filters:
        try:
            valid = device_filter.predicate(device)
        except Exception as exc:
            log_event(
                "vg_manager.filters.error",
                device=device.kname,
                filter=device_filter.name,
                error=str(exc),
            )
            return Exclusion(device.kname, device_filter.name, error=str(exc))
        if not valid:
            log_event(
                "vg_manager.filters.rejected",
                device=device.kname,
                filter=device_filter.name,
            )
            return Exclusion(device.kname, device_filter.name)
    return None


def filter_devices(devices: Iterable[BlockDevice], filters: Sequence[DeviceFilter]) -> FilterResult:
    """Split *devices* into eligible devices and exclusions.

    A failing device never affects its siblings.
    """

    result = FilterResult()
    for device in devices:
        exclusion = apply_filters(device, filters)
        if exclusion is None:
            result.available.append(device)
        else:
            result.excluded.append(exclusion)
    return result


def _not_read_only(device: BlockDevice) -> bool:
    return not device.read_only


def _not_suspended(device: BlockDevice) -> bool:
    return device.state.lower() != "suspended"


def _no_bios_boot_partlabel(device: BlockDevice) -> bool:
    label = device.partlabel.lower()
    return "bios" not in label and "boot" not in label


def _no_reserved_partlabel(device: BlockDevice) -> bool:
    return "reserved" not in device.partlabel.lower()


def _usable_device_type(device: BlockDevice) -> bool:
    return device.type not in _EXCLUDED_TYPES


def _no_children(device: BlockDevice) -> bool:
    return not device.has_children


def _not_mounted(device: BlockDevice) -> bool:
    return not device.mountpoints


def _no_filesystem_signature(device: BlockDevice) -> bool:
    return device.fstype in {"", FSTYPE_LVM2_MEMBER}


class _PhysicalVolumeIndex:
    """Lazy ``pv_name -> vg_name`` lookup shared by the LVM-aware filters."""

    def __init__(self, lvm: LVM) -> None:
        self.lvm = lvm
        self._owners: Optional[Dict[str, str]] = None

    def owner(self, device: BlockDevice) -> str:
        if self._owners is None:
            self._owners = {pv.pv_name: pv.vg_name for pv in self.lvm.list_pvs()}
        for candidate in (device.kname, device.name, device.device_path):
            if candidate and self._owners.get(candidate):
                return self._owners[candidate]
        return ""


def default_filters(
    vg_name: str,
    lvm: LVM,
    *,
    min_size: int = DEFAULT_MIN_DEVICE_SIZE,
) -> List[DeviceFilter]:
    """Return the standard filter pipeline for volume group *vg_name*.

    Build a fresh pipeline for every pass: the physical volume lookup is
    cached for the lifetime of the returned filters.
    """

    pv_index = _PhysicalVolumeIndex(lvm)

    def minimum_size(device: BlockDevice) -> bool:
        return device.size >= min_size

    def not_in_foreign_volume_group(device: BlockDevice) -> bool:
        owner = pv_index.owner(device)
        return not owner or owner == vg_name

    def not_in_this_volume_group(device: BlockDevice) -> bool:
        return pv_index.owner(device) != vg_name

    return [
        DeviceFilter("not-read-only", _not_read_only),
        DeviceFilter("not-suspended", _not_suspended),
        DeviceFilter("no-bios-boot-partlabel", _no_bios_boot_partlabel),
        DeviceFilter("no-reserved-partlabel", _no_reserved_partlabel),
        DeviceFilter("usable-device-type", _usable_device_type),
        DeviceFilter("no-children", _no_children),
        DeviceFilter("not-mounted", _not_mounted),
        DeviceFilter("minimum-size", minimum_size),
        DeviceFilter("no-filesystem-signature", _no_filesystem_signature),
        DeviceFilter("not-in-foreign-volume-group", not_in_foreign_volume_group),
        DeviceFilter("not-in-this-volume-group", not_in_this_volume_group),
    ]
