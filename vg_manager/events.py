"""Notification events for volume group reconciliation.

Every event is fanned out to the node status object, to each owner of the
volume group and to the volume group itself.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol

from .api import VolumeGroupSpec
from .logging_utils import log_event

__all__ = [
    "Event",
    "EventRecorder",
    "EventSink",
    "LogEventSink",
    "MemoryEventSink",
    "NORMAL",
    "ObjectRef",
    "WARNING",
]

NORMAL = "Normal"
WARNING = "Warning"

# Warning reasons
NO_AVAILABLE_DEVICES = "NoAvailableDevicesForVG"
INCONSISTENT_LVS = "InconsistentLVs"
VG_CREATE_OR_EXTEND_FAILED = "VGCreateOrExtendFailed"
THIN_POOL_CREATE_OR_EXTEND_FAILED = "ThinPoolCreateOrExtendFailed"
DEVICES_SELECTION_FAILED = "DevicesSelectionFailed"
DEVICES_WIPE_FAILED = "DevicesWipeFailed"
LVMD_CONFIG_MISSING = "LVMDConfigMissing"
VOLUME_GROUP_DELETE_FAILED = "VolumeGroupDeleteFailed"

# Normal reasons
LVMD_CONFIG_UPDATED = "LVMDConfigUpdated"
LVMD_CONFIG_DELETED = "LVMDConfigDeleted"
VOLUME_GROUP_READY = "VolumeGroupReady"

KIND_VOLUME_GROUP = "LVMVolumeGroup"
KIND_NODE_STATUS = "LVMVolumeGroupNodeStatus"


@dataclass(frozen=True)
class ObjectRef:
    kind: str
    name: str
    namespace: str = ""
    api_version: str = ""
    uid: str = ""

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class Event:
    target: ObjectRef
    type: str
    reason: str
    message: str


class EventSink(Protocol):
    def emit(self, event: Event) -> None:
        ...


class LogEventSink:
    """Write events as structured log records."""

    def emit(self, event: Event) -> None:
        log_event(
            "vg_manager.event",
            kind=event.target.kind,
            name=event.target.key,
            type=event.type,
            reason=event.reason,
            message=event.message,
        )


class MemoryEventSink:
    def __init__(self) -> None:
        self.events: List[Event] = []

    def emit(self, event: Event) -> None:
        self.events.append(event)

    def reasons(self) -> List[str]:
        return [event.reason for event in self.events]


class EventRecorder:
    """Apply one (type, reason, message) uniformly to every interested object."""

    def __init__(self, sink: EventSink, node_name: str, namespace: str = "") -> None:
        self.sink = sink
        self.node_name = node_name
        self.namespace = namespace

    def _node_status_ref(self) -> ObjectRef:
        return ObjectRef(KIND_NODE_STATUS, self.node_name, self.namespace)

    def _spec_ref(self, spec: VolumeGroupSpec) -> ObjectRef:
        return ObjectRef(KIND_VOLUME_GROUP, spec.name, spec.namespace or self.namespace)

    def _emit(self, spec: VolumeGroupSpec, event_type: str, reason: str, message: str, verb: str) -> None:
        node_status = self._node_status_ref()
        target = self._spec_ref(spec)
        self.sink.emit(Event(node_status, event_type, reason, message))
        for owner in spec.owner_references:
            ref = ObjectRef(owner.kind, owner.name, target.namespace, owner.api_version, owner.uid)
            self.sink.emit(
                Event(
                    ref,
                    event_type,
                    reason,
                    f"{verb} on node {node_status.key} in volume group {target.key}: {message}",
                )
            )
        self.sink.emit(Event(target, event_type, reason, f"{verb} on node {node_status.key}: {message}"))

    def warning(self, spec: VolumeGroupSpec, reason: str, error: BaseException | str) -> None:
        self._emit(spec, WARNING, reason, str(error), "error")

    def normal(self, spec: VolumeGroupSpec, reason: str, message: str) -> None:
        self._emit(spec, NORMAL, reason, message, "update")
