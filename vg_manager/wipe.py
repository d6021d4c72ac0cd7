"""Destructive device preparation for ``forceWipeDevicesAndDestroyAllData``."""

from __future__ import annotations

from typing import List, Sequence, Set

from .api import VolumeGroupSpec
from .devices import PathResolver, resolve_device_path
from .executor import CommandError, Executor
from .logging_utils import log_event
from .lsblk import BlockDevice, BlockDeviceTree
from .lvm import VolumeGroup

__all__ = [
    "DeviceMapperReferenceNotFound",
    "DeviceWiper",
    "WipeError",
]

_DM_TYPES = {"lvm", "crypt", "dm", "mpath"}
_DM_NOT_FOUND_MARKERS = ("not found", "no such device")


class WipeError(RuntimeError):
    """Wiping a required device failed."""


class DeviceMapperReferenceNotFound(LookupError):
    """``dmsetup`` has no mapping by that name."""


def _is_dm_device(device: BlockDevice) -> bool:
    return device.type in _DM_TYPES or device.kname.startswith("/dev/dm-")


class DeviceWiper:
    """Erase signatures and stale device-mapper mappings on configured devices."""

    def __init__(self, executor: Executor, *, resolve_path: PathResolver = resolve_device_path) -> None:
        self.executor = executor
        self.resolve_path = resolve_path

    def wipefs(self, device: str) -> None:
        self.executor.run("wipefs", ["--all", "--force", device])

    def dmsetup_remove(self, device: str) -> None:
        try:
            self.executor.run("dmsetup", ["remove", "--force", device])
        except CommandError as exc:
            output = f"{exc.output or ''}{exc.stderr or ''}".lower()
            if any(marker in output for marker in _DM_NOT_FOUND_MARKERS):
                raise DeviceMapperReferenceNotFound(device) from exc
            raise

    def wipe_devices_if_necessary(
        self,
        spec: VolumeGroupSpec,
        volume_groups: Sequence[VolumeGroup],
        tree: BlockDeviceTree,
    ) -> bool:
        """Wipe the configured devices that are not yet part of any volume group.

        Returns ``True`` when at least one device was wiped, in which case the
        caller must list block devices again. Failures on required paths
        raise :class:`WipeError`; failures on optional paths are logged only.
        """

        selector = spec.device_selector
        if selector is None or not selector.force_wipe:
            return False

        # Members of any volume group, this one included, are never wiped.
        claimed = {pv.pv_name for vg in volume_groups for pv in vg.pvs}
        wiped = False
        for path in selector.paths:
            if self._is_claimed(path, claimed):
                log_event("vg_manager.wipe.skipped_claimed", vg=spec.name, device=path)
                continue
            try:
                if self._wipe_path(path, tree, required=True):
                    wiped = True
            except (CommandError, OSError) as exc:
                log_event("vg_manager.wipe.failed", vg=spec.name, device=path, required=True, error=str(exc))
                raise WipeError(f"failed to wipe device {path}: {exc}") from exc
        for path in selector.optional_paths:
            if self._is_claimed(path, claimed):
                log_event("vg_manager.wipe.skipped_claimed", vg=spec.name, device=path)
                continue
            try:
                if self._wipe_path(path, tree, required=False):
                    wiped = True
            except (CommandError, OSError) as exc:
                log_event("vg_manager.wipe.failed", vg=spec.name, device=path, required=False, error=str(exc))
        return wiped

    def _is_claimed(self, path: str, claimed: Set[str]) -> bool:
        if path in claimed:
            return True
        try:
            return self.resolve_path(path) in claimed
        except OSError:
            return False

    def _wipe_path(self, path: str, tree: BlockDeviceTree, *, required: bool) -> bool:
        try:
            resolved = self.resolve_path(path)
        except OSError:
            resolved = path
        device = tree.find(resolved) or tree.find(path)
        if device is None:
            log_event("vg_manager.wipe.device_missing", device=path)
            return False

        self.wipefs(device.kname)
        log_event("vg_manager.wipe.wiped", device=device.kname)

        # wipefs leaves the mappings of former logical volumes behind.
        errors: List[str] = []
        for child in self._mapper_children(tree, device):
            try:
                self.dmsetup_remove(child.kname)
            except DeviceMapperReferenceNotFound:
                log_event("vg_manager.wipe.dm_reference_absent", device=device.kname, child=child.kname)
                continue
            except CommandError as exc:
                log_event(
                    "vg_manager.wipe.dm_remove_failed",
                    device=device.kname,
                    child=child.kname,
                    error=str(exc),
                )
                errors.append(f"{child.kname}: {exc}")
                continue
            log_event("vg_manager.wipe.dm_reference_removed", device=device.kname, child=child.kname)
        if errors and required:
            raise WipeError(
                f"failed to remove device-mapper references of {device.kname}: {'; '.join(errors)}"
            )
        return True

    @staticmethod
    def _mapper_children(tree: BlockDeviceTree, device: BlockDevice) -> Sequence[BlockDevice]:
        children = [child for child in tree.descendants_bottom_up(device) if _is_dm_device(child)]
        unique = {child.kname: child for child in reversed(children)}
        return [child for child in children if unique.get(child.kname) is child]
