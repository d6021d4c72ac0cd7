"""Resolve a volume group's device selector against the block device tree."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .api import DeviceSelector, VolumeGroupSpec
from .filters import DeviceFilter, Exclusion, apply_filters, filter_devices
from .logging_utils import log_event
from .lsblk import BlockDevice, BlockDeviceTree
from .lvm import VolumeGroup

__all__ = [
    "DeviceSelectionError",
    "DuplicateDevicePathsError",
    "PathResolver",
    "Selection",
    "check_duplicate_paths",
    "resolve_device_path",
    "select_devices",
]

PathResolver = Callable[[str], str]


class DeviceSelectionError(ValueError):
    """The configured devices cannot be used for the volume group."""


class DuplicateDevicePathsError(DeviceSelectionError):
    def __init__(self, duplicates: Sequence[str]) -> None:
        self.duplicates = sorted(duplicates)
        super().__init__(f"duplicate device paths found: {', '.join(self.duplicates)}")


@dataclass
class Selection:
    """New devices for a volume group, plus what was left out and why."""

    available: List[BlockDevice] = field(default_factory=list)
    excluded: List[Exclusion] = field(default_factory=list)
    already_in_volume_group: List[str] = field(default_factory=list)

    @property
    def paths(self) -> List[str]:
        return [device.path for device in self.available]


def resolve_device_path(path: str) -> str:
    """Follow symlinks in *path*; raise ``OSError`` when it does not exist."""

    return str(Path(path).resolve(strict=True))


def check_duplicate_paths(selector: DeviceSelector) -> None:
    """Raise :class:`DuplicateDevicePathsError` if a path is listed twice.

    Required and optional paths share one namespace.
    """

    seen: set[str] = set()
    duplicates: set[str] = set()
    for path in (*selector.paths, *selector.optional_paths):
        if path in seen:
            duplicates.add(path)
        seen.add(path)
    if duplicates:
        raise DuplicateDevicePathsError(sorted(duplicates))


def _owners(volume_groups: Sequence[VolumeGroup]) -> Dict[str, str]:
    owners: Dict[str, str] = {}
    for vg in volume_groups:
        for pv in vg.pvs:
            owners[pv.pv_name] = vg.name
    return owners


class _Resolver:
    def __init__(
        self,
        tree: BlockDeviceTree,
        volume_groups: Sequence[VolumeGroup],
        vg_name: str,
        filters: Sequence[DeviceFilter],
        resolve_path: PathResolver,
    ) -> None:
        self.tree = tree
        self.owners = _owners(volume_groups)
        self.vg_name = vg_name
        self.filters = filters
        self.resolve_path = resolve_path

    def resolve(self, path: str) -> Optional[BlockDevice]:
        """Return the unfiltered device for *path*, or ``None`` when it is already ours."""

        try:
            resolved = self.resolve_path(path)
        except OSError as exc:
            raise DeviceSelectionError(f"unable to resolve device path {path}: {exc}") from exc

        owner = self.owners.get(resolved) or self.owners.get(path)
        if owner == self.vg_name:
            return None
        if owner:
            raise DeviceSelectionError(
                f"device {path} is already part of volume group {owner}"
            )

        device = self.tree.find(resolved)
        if device is None:
            raise DeviceSelectionError(
                f"cannot find device {path} ({resolved}) in the available block devices"
            )
        return dataclasses.replace(device, device_path=path)

    def admit(self, selection: Selection, path: str, device: BlockDevice, *, required: bool) -> None:
        """Add *device* to *selection* unless a filter rejects it."""

        exclusion = apply_filters(device, self.filters)
        if exclusion is None:
            selection.available.append(device)
            return
        log_event(
            "vg_manager.devices.excluded",
            vg=self.vg_name,
            path=path,
            required=required,
            reason=exclusion.reason,
        )
        selection.excluded.append(dataclasses.replace(exclusion, device=path))


def select_devices(
    tree: BlockDeviceTree,
    volume_groups: Sequence[VolumeGroup],
    spec: VolumeGroupSpec,
    filters: Sequence[DeviceFilter],
    *,
    resolve_path: PathResolver = resolve_device_path,
) -> Selection:
    """Return the devices that should be added to the volume group of *spec*.

    Without configured paths every eligible device is returned. Otherwise
    required paths must all resolve or the selection fails; optional paths
    are skipped on any problem. A configured device that a filter rejects
    is excluded, not fatal. Devices that already belong to the volume
    group are never returned again.
    """

    selector = spec.device_selector
    if selector is None or not selector.constrained:
        result = filter_devices(tree.walk(), filters)
        # A device assembled from several parents is listed once per parent.
        unique: Dict[str, BlockDevice] = {}
        for device in result.available:
            unique.setdefault(device.kname, device)
        return Selection(available=list(unique.values()), excluded=result.excluded)

    check_duplicate_paths(selector)

    resolver = _Resolver(tree, volume_groups, spec.name, filters, resolve_path)
    selection = Selection()

    for path in selector.paths:
        try:
            device = resolver.resolve(path)
        except DeviceSelectionError as exc:
            raise DeviceSelectionError(f"unable to validate required device {path}: {exc}") from exc
        if device is None:
            log_event("vg_manager.devices.already_in_vg", vg=spec.name, path=path, required=True)
            selection.already_in_volume_group.append(path)
            continue
        resolver.admit(selection, path, device, required=True)

    for path in selector.optional_paths:
        try:
            device = resolver.resolve(path)
        except DeviceSelectionError as exc:
            log_event("vg_manager.devices.optional_skipped", vg=spec.name, path=path, error=str(exc))
            selection.excluded.append(Exclusion(path, "optional-path", error=str(exc)))
            continue
        if device is None:
            log_event("vg_manager.devices.already_in_vg", vg=spec.name, path=path, required=False)
            selection.already_in_volume_group.append(path)
            continue
        resolver.admit(selection, path, device, required=False)

    if (
        selector.optional_paths
        and not selector.paths
        and not selection.available
        and not selection.already_in_volume_group
    ):
        raise DeviceSelectionError(
            "at least 1 valid device is required if device selector paths or optional paths are specified"
        )

    return selection
