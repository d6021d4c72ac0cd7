"""Per-node reconciliation of one volume group specification."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, List, NoReturn, Optional, Sequence

from . import events
from .api import (
    PHASE_FAILED,
    PHASE_PROGRESSING,
    PHASE_READY,
    ExcludedDevice,
    NodeVolumeGroupStatus,
    VolumeGroupSpec,
)
from .devices import (
    DeviceSelectionError,
    DuplicateDevicePathsError,
    PathResolver,
    Selection,
    check_duplicate_paths,
    resolve_device_path,
    select_devices,
)
from .events import EventRecorder
from .executor import CommandError, Executor
from .filters import DeviceFilter, default_filters
from .logging_utils import log_event
from .lsblk import BlockDeviceTree, list_block_devices
from .lvm import LVM, LVMError, VolumeGroup, VolumeGroupNotFound
from .lvmd import LVMDConfigFile, RegistryConfig, device_class_for
from .node import Node, matches_node
from .state import ObjectStore
from .thin_pool import ThinPoolError, ensure_thin_pool, pending_thin_pool_change
from .validation import InconsistentVolumeGroupError, validate_volume_group
from .wipe import DeviceWiper, WipeError

__all__ = [
    "NODE_CLEANUP_FINALIZER",
    "RECONCILE_INTERVAL",
    "ReconcileError",
    "Result",
    "VGReconciler",
]

RECONCILE_INTERVAL = 15.0
NODE_CLEANUP_FINALIZER = "cleanup.vgmanager.node.topolvm.io"

FiltersFactory = Callable[[str, LVM], Sequence[DeviceFilter]]

_READY_MESSAGE = "all the available devices are attached to the volume group"


class ReconcileError(RuntimeError):
    """A reconciliation pass failed; the next pass retries."""


@dataclass(frozen=True)
class Result:
    """What the scheduler should do after a pass.

    ``requeue`` asks for an immediate new pass, ``requeue_after`` for one
    after that many seconds. Neither means the object needs no more work.
    """

    requeue: bool = False
    requeue_after: Optional[float] = None


def _excluded_devices(selection: Selection) -> List[ExcludedDevice]:
    grouped: "OrderedDict[str, List[str]]" = OrderedDict()
    for exclusion in selection.excluded:
        grouped.setdefault(exclusion.device, []).append(exclusion.reason)
    return [ExcludedDevice(device, tuple(reasons)) for device, reasons in grouped.items()]


class VGReconciler:
    """Converge host LVM state on this node toward each volume group spec."""

    def __init__(
        self,
        store: ObjectStore,
        executor: Executor,
        node: Node,
        *,
        recorder: Optional[EventRecorder] = None,
        lvm: Optional[LVM] = None,
        lvmd: Optional[LVMDConfigFile] = None,
        wiper: Optional[DeviceWiper] = None,
        filters: FiltersFactory = default_filters,
        resolve_path: PathResolver = resolve_device_path,
    ) -> None:
        self.store = store
        self.executor = executor
        self.node = node
        self.recorder = recorder or EventRecorder(events.LogEventSink(), node.name)
        self.lvm = lvm or LVM(executor)
        self.lvmd = lvmd or LVMDConfigFile()
        self.wiper = wiper or DeviceWiper(executor, resolve_path=resolve_path)
        self.filters = filters
        self.resolve_path = resolve_path

    @property
    def finalizer(self) -> str:
        return f"{NODE_CLEANUP_FINALIZER}/{self.node.name}"

    def reconcile(self, name: str) -> Result:
        """Run one pass for the volume group called *name*.

        Raises :class:`ReconcileError` when the pass fails; the node status
        has then already been marked Failed where that applies.
        """

        spec = self.store.get_spec(name)
        if spec is None:
            log_event("vg_manager.reconcile.not_found", vg=name)
            return Result()

        try:
            matches = matches_node(spec.node_selector, self.node)
        except ValueError as exc:
            raise ReconcileError(f"failed to match nodeSelector to node labels: {exc}") from exc
        if not matches:
            log_event("vg_manager.reconcile.node_mismatch", vg=name, node=self.node.name)
            return Result()

        log_event("vg_manager.reconcile.start", vg=name, node=self.node.name)

        if spec.deletion_requested:
            if self.finalizer not in spec.finalizers:
                return Result()
            self._process_delete(spec)
            return Result()

        if self.finalizer not in spec.finalizers:
            spec.finalizers.append(self.finalizer)
            self.store.save_spec(spec)
            log_event("vg_manager.reconcile.finalizer_added", vg=name, finalizer=self.finalizer)
            return Result(requeue=True)

        return self._reconcile(spec)

    def _reconcile(self, spec: VolumeGroupSpec) -> Result:
        try:
            registry = self.lvmd.load()
        except (OSError, ValueError) as exc:
            self._fail(spec, f"failed to read the lvmd config file: {exc}")
        registry_missing = registry is None
        if registry is None:
            registry = RegistryConfig()
        snapshot = registry.snapshot()

        # Nothing destructive runs for a selector that cannot be valid.
        if spec.device_selector is not None:
            try:
                check_duplicate_paths(spec.device_selector)
            except DuplicateDevicePathsError as exc:
                self._fail(
                    spec,
                    f"failed to get matching available block devices for volume group {spec.name}: {exc}",
                    events.DEVICES_SELECTION_FAILED,
                )

        tree = self._list_block_devices(spec)
        volume_groups = self._list_volume_groups(spec)
        try:
            wiped = self.wiper.wipe_devices_if_necessary(spec, volume_groups, tree)
        except WipeError as exc:
            self._fail(spec, f"failed to wipe devices: {exc}", events.DEVICES_WIPE_FAILED)
        if wiped:
            tree = self._list_block_devices(spec)

        try:
            selection = select_devices(
                tree,
                volume_groups,
                spec,
                self.filters(spec.name, self.lvm),
                resolve_path=self.resolve_path,
            )
        except DeviceSelectionError as exc:
            self._fail(
                spec,
                f"failed to get matching available block devices for volume group {spec.name}: {exc}",
                events.DEVICES_SELECTION_FAILED,
            )

        existing = next((vg for vg in volume_groups if vg.name == spec.name and vg.pvs), None)
        members = existing.pv_names if existing is not None else []

        if not selection.available:
            if existing is None:
                self._fail(
                    spec,
                    f"the volume group {spec.name} does not exist and there were no available devices to create it",
                    events.NO_AVAILABLE_DEVICES,
                    selection=selection,
                )
            log_event("vg_manager.reconcile.no_new_devices", vg=spec.name)
            # A pool left missing by an interrupted creation, or below its
            # target size, is changed only after Progressing is recorded.
            change = self._pending_thin_pool_change(spec, selection, members)
            if change is not None:
                if self._set_status(spec, PHASE_PROGRESSING, members, selection=selection):
                    log_event("vg_manager.reconcile.progressing", vg=spec.name, thin_pool=change)
                    return Result(requeue=True)
                self._ensure_thin_pool(spec, selection, members)
            self._validate(spec, selection, members)
            self._sync_registry(spec, registry, snapshot, registry_missing, selection, members)
            self._set_ready(spec, members, selection)
            return Result(requeue_after=RECONCILE_INTERVAL)

        if self._set_status(spec, PHASE_PROGRESSING, members, selection=selection):
            log_event("vg_manager.reconcile.progressing", vg=spec.name, devices=selection.paths)
            return Result(requeue=True)

        log_event("vg_manager.reconcile.new_devices", vg=spec.name, devices=selection.paths)
        try:
            vg = self._add_devices_to_vg(volume_groups, spec.name, selection.paths)
        except (LVMError, ValueError) as exc:
            self._fail(
                spec,
                f"failed to create/extend volume group {spec.name}: {exc}",
                events.VG_CREATE_OR_EXTEND_FAILED,
                selection=selection,
                devices=members,
            )
        members = self._member_devices(vg)
        self._ensure_thin_pool(spec, selection, members)
        self._validate(spec, selection, members)
        self._sync_registry(spec, registry, snapshot, registry_missing, selection, members)
        self._set_ready(spec, members, selection)
        return Result(requeue_after=RECONCILE_INTERVAL)

    def _list_block_devices(self, spec: VolumeGroupSpec) -> BlockDeviceTree:
        try:
            return list_block_devices(self.executor)
        except (CommandError, ValueError) as exc:
            self._fail(spec, f"failed to list block devices: {exc}")

    def _list_volume_groups(self, spec: VolumeGroupSpec) -> List[VolumeGroup]:
        try:
            return self.lvm.list_vgs()
        except LVMError as exc:
            self._fail(spec, f"failed to list volume groups: {exc}")

    def _add_devices_to_vg(
        self, volume_groups: Sequence[VolumeGroup], vg_name: str, devices: Sequence[str]
    ) -> VolumeGroup:
        """Create *vg_name* from *devices*, or extend it when it already exists."""

        if not devices:
            raise ValueError(f"no devices found to add to volume group {vg_name}")
        for vg in volume_groups:
            if vg.name == vg_name:
                log_event("vg_manager.reconcile.extend_vg", vg=vg_name, devices=list(devices))
                return self.lvm.extend_vg(vg, devices)
        log_event("vg_manager.reconcile.create_vg", vg=vg_name, devices=list(devices))
        return self.lvm.create_vg(vg_name, devices)

    def _member_devices(self, vg: VolumeGroup) -> List[str]:
        try:
            return self.lvm.get_vg(vg.name).pv_names
        except (LVMError, VolumeGroupNotFound) as exc:
            log_event("vg_manager.reconcile.member_lookup_failed", vg=vg.name, error=str(exc))
            return vg.pv_names

    def _pending_thin_pool_change(
        self, spec: VolumeGroupSpec, selection: Selection, devices: Sequence[str]
    ) -> Optional[str]:
        config = spec.thin_pool_config
        if config is None:
            return None
        try:
            return pending_thin_pool_change(self.lvm, spec.name, config)
        except (ThinPoolError, LVMError) as exc:
            self._fail(
                spec,
                f"failed to inspect thin pool {config.name} of volume group {spec.name}: {exc}",
                events.THIN_POOL_CREATE_OR_EXTEND_FAILED,
                selection=selection,
                devices=devices,
            )

    def _ensure_thin_pool(self, spec: VolumeGroupSpec, selection: Selection, devices: Sequence[str]) -> None:
        config = spec.thin_pool_config
        if config is None:
            return
        try:
            ensure_thin_pool(self.lvm, spec.name, config)
        except (ThinPoolError, LVMError) as exc:
            self._fail(
                spec,
                f"failed to create thin pool {config.name} for volume group {spec.name}: {exc}",
                events.THIN_POOL_CREATE_OR_EXTEND_FAILED,
                selection=selection,
                devices=devices,
            )

    def _validate(self, spec: VolumeGroupSpec, selection: Selection, devices: Sequence[str]) -> None:
        try:
            validate_volume_group(self.lvm, spec)
        except InconsistentVolumeGroupError as exc:
            self._fail(
                spec,
                f"error while validating logical volumes in existing volume group: {exc}",
                events.INCONSISTENT_LVS,
                selection=selection,
                devices=devices,
            )

    def _sync_registry(
        self,
        spec: VolumeGroupSpec,
        registry: RegistryConfig,
        snapshot: RegistryConfig,
        registry_missing: bool,
        selection: Selection,
        devices: Sequence[str],
    ) -> None:
        entry = device_class_for(spec)
        if registry.find(spec.name) != entry:
            registry.upsert(entry)
        if registry == snapshot:
            return

        if registry_missing:
            self.recorder.normal(
                spec,
                events.LVMD_CONFIG_MISSING,
                "lvmd config file doesn't exist, will attempt to create a fresh config",
            )
        try:
            self.lvmd.save(registry)
        except OSError as exc:
            self._fail(
                spec,
                f"failed to update lvmd config file to update volume group {spec.name}: {exc}",
                selection=selection,
                devices=devices,
            )
        self.recorder.normal(spec, events.LVMD_CONFIG_UPDATED, "updated lvmd config with new deviceClasses")

    def _set_ready(self, spec: VolumeGroupSpec, devices: Sequence[str], selection: Selection) -> None:
        if self._set_status(spec, PHASE_READY, devices, selection=selection):
            self.recorder.normal(spec, events.VOLUME_GROUP_READY, _READY_MESSAGE)

    def _set_status(
        self,
        spec: VolumeGroupSpec,
        phase: str,
        devices: Optional[Sequence[str]] = None,
        *,
        selection: Optional[Selection] = None,
        reason: str = "",
    ) -> bool:
        """Write the node status for *spec*; return ``True`` if it changed."""

        current = self.store.get_status(self.node.name, spec.name)
        if devices is None:
            devices = current.devices if current is not None else []
        if selection is not None:
            excluded = _excluded_devices(selection)
        else:
            excluded = list(current.excluded) if current is not None else []
        status = NodeVolumeGroupStatus(
            node=self.node.name,
            name=spec.name,
            phase=phase,
            devices=sorted(devices),
            excluded=excluded,
            reason=reason,
        )
        if status == current:
            return False
        self.store.save_status(status)
        log_event("vg_manager.status.updated", vg=spec.name, node=self.node.name, phase=phase, reason=reason)
        return True

    def _fail(
        self,
        spec: VolumeGroupSpec,
        message: str,
        reason: Optional[str] = None,
        *,
        selection: Optional[Selection] = None,
        devices: Optional[Sequence[str]] = None,
    ) -> NoReturn:
        """Mark *spec* Failed on this node, emit a warning and abort the pass.

        *devices* are the current members of the volume group; when omitted the
        recorded ones are kept.
        """

        log_event("vg_manager.reconcile.failed", vg=spec.name, node=self.node.name, reason=reason, error=message)
        if reason is not None:
            self.recorder.warning(spec, reason, message)
        try:
            self._set_status(spec, PHASE_FAILED, devices, selection=selection, reason=message)
        except OSError as exc:
            log_event("vg_manager.status.update_failed", vg=spec.name, error=str(exc))
        raise ReconcileError(message)

    def _process_delete(self, spec: VolumeGroupSpec) -> None:
        """Tear down the volume group of *spec* and release this node's finalizer.

        Thin pool first, then the volume group, then the registry entry, then
        the node status. Any failure keeps the finalizer so the next pass
        resumes the teardown.
        """

        log_event("vg_manager.delete.start", vg=spec.name, node=self.node.name)

        try:
            registry = self.lvmd.load()
        except (OSError, ValueError) as exc:
            self._fail(spec, f"failed to read the lvmd config file: {exc}", events.VOLUME_GROUP_DELETE_FAILED)
        if registry is None:
            log_event("vg_manager.delete.lvmd_config_missing", vg=spec.name)
        elif not registry.remove(spec.name):
            log_event("vg_manager.delete.device_class_missing", vg=spec.name)

        try:
            vg: Optional[VolumeGroup] = self.lvm.get_vg(spec.name)
        except VolumeGroupNotFound:
            log_event("vg_manager.delete.vg_missing", vg=spec.name)
            vg = None
        except LVMError as exc:
            self._fail(spec, f"failed to get volume group {spec.name}: {exc}", events.VOLUME_GROUP_DELETE_FAILED)

        if vg is not None:
            config = spec.thin_pool_config
            if config is not None:
                try:
                    exists = self.lvm.lv_exists(config.name, spec.name)
                except LVMError as exc:
                    self._fail(
                        spec,
                        f"failed to check existence of thin pool {config.name} in volume group {spec.name}: {exc}",
                        events.VOLUME_GROUP_DELETE_FAILED,
                    )
                if exists:
                    try:
                        self.lvm.delete_lv(config.name, spec.name)
                    except LVMError as exc:
                        self._fail(
                            spec,
                            f"failed to delete thin pool {config.name} in volume group {spec.name}: {exc}",
                            events.VOLUME_GROUP_DELETE_FAILED,
                        )
                    log_event("vg_manager.delete.thin_pool_deleted", vg=spec.name, thin_pool=config.name)
                else:
                    log_event("vg_manager.delete.thin_pool_missing", vg=spec.name, thin_pool=config.name)

            try:
                self.lvm.delete_vg(vg)
            except LVMError as exc:
                self._fail(
                    spec,
                    f"failed to delete volume group {spec.name}: {exc}",
                    events.VOLUME_GROUP_DELETE_FAILED,
                )
            log_event("vg_manager.delete.vg_deleted", vg=spec.name)

        if registry is not None:
            if registry.device_classes:
                try:
                    self.lvmd.save(registry)
                except OSError as exc:
                    raise ReconcileError(
                        f"failed to update lvmd config file for volume group {spec.name}: {exc}"
                    ) from exc
                self.recorder.normal(
                    spec, events.LVMD_CONFIG_UPDATED, "updated lvmd config after deviceClass was removed"
                )
            else:
                try:
                    self.lvmd.delete()
                except OSError as exc:
                    raise ReconcileError(
                        f"failed to delete lvmd config file for volume group {spec.name}: {exc}"
                    ) from exc
                self.recorder.normal(
                    spec, events.LVMD_CONFIG_DELETED, "removed lvmd config after last deviceClass was removed"
                )

        self.store.delete_status(self.node.name, spec.name)

        spec.finalizers.remove(self.finalizer)
        log_event("vg_manager.delete.finalizer_removed", vg=spec.name, finalizer=self.finalizer)
        if spec.finalizers:
            self.store.save_spec(spec)
        else:
            # Nothing else holds the object; deletion completes.
            self.store.delete_spec(spec.name)

