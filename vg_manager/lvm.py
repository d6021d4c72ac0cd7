"""LVM command adapter.

Every query goes through ``--reportformat json``; LVM reports are shaped as
``{"report": [{"vg": [...]}, ...]}`` with one entity-keyed array per report.
Nothing here retries: a failed command surfaces to the caller, and the next
reconciliation pass is the retry.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .executor import CommandError, Executor
from .logging_utils import log_event

__all__ = [
    "LVAttributes",
    "LVM",
    "LVMError",
    "LogicalVolume",
    "PhysicalVolume",
    "VolumeGroup",
    "VolumeGroupNotFound",
    "parse_lv_attr",
    "VOLUME_TYPE_THIN_POOL",
    "STATE_ACTIVE",
]

VOLUME_TYPE_THIN_POOL = "thin-pool"
STATE_ACTIVE = "active"

_VOLUME_TYPES = {
    "m": "mirrored",
    "M": "mirrored-without-initial-sync",
    "o": "origin",
    "O": "origin-with-merging-snapshot",
    "r": "raid",
    "R": "raid-without-initial-sync",
    "s": "snapshot",
    "S": "merging-snapshot",
    "p": "pvmove",
    "v": "virtual",
    "i": "mirror-or-raid-image",
    "I": "mirror-or-raid-image-out-of-sync",
    "l": "log-device",
    "c": "under-conversion",
    "V": "thin-volume",
    "t": VOLUME_TYPE_THIN_POOL,
    "T": "thin-pool-data",
    "d": "vdo-pool",
    "D": "vdo-pool-data",
    "e": "raid-or-pool-metadata",
    "-": "linear",
}

_PERMISSIONS = {
    "w": "writeable",
    "r": "read-only",
    "R": "read-only-activation",
    "-": "none",
}

_STATES = {
    "a": STATE_ACTIVE,
    "h": "historical",
    "s": "suspended",
    "I": "invalid-snapshot",
    "S": "invalid-suspended-snapshot",
    "m": "snapshot-merge-failed",
    "M": "suspended-snapshot-merge-failed",
    "d": "mapped-device-present-without-tables",
    "i": "mapped-device-present-with-inactive-table",
    "c": "thin-pool-check-needed",
    "X": "unknown",
    "-": "inactive",
}


class LVMError(RuntimeError):
    """An LVM command failed or returned an unreadable report."""


class VolumeGroupNotFound(LookupError):
    """The requested volume group does not exist on the host."""


@dataclass(frozen=True)
class LVAttributes:
    volume_type: str
    permissions: str
    allocation_policy: str
    fixed_minor: bool
    state: str
    open: bool
    target_type: str
    zero: bool
    health: str
    skip_activation: bool
    raw: str

    def __str__(self) -> str:
        return self.raw


def parse_lv_attr(raw: str) -> LVAttributes:
    """Parse the ten character ``lv_attr`` report field."""

    if len(raw) != 10:
        raise ValueError(f"lv_attr must be 10 characters long, got {raw!r}")
    return LVAttributes(
        volume_type=_VOLUME_TYPES.get(raw[0], f"unknown({raw[0]})"),
        permissions=_PERMISSIONS.get(raw[1], f"unknown({raw[1]})"),
        allocation_policy=raw[2],
        fixed_minor=raw[3] == "m",
        state=_STATES.get(raw[4], f"unknown({raw[4]})"),
        open=raw[5] == "o",
        target_type=raw[6],
        zero=raw[7] == "z",
        health=raw[8],
        skip_activation=raw[9] == "k",
        raw=raw,
    )


@dataclass(frozen=True)
class PhysicalVolume:
    pv_name: str
    vg_name: str = ""


@dataclass
class VolumeGroup:
    name: str
    pvs: List[PhysicalVolume] = field(default_factory=list)
    size: str = ""
    free: str = ""

    @property
    def pv_names(self) -> List[str]:
        return [pv.pv_name for pv in self.pvs]


@dataclass(frozen=True)
class LogicalVolume:
    name: str
    vg_name: str = ""
    pool_lv: str = ""
    attr: str = ""
    size: str = ""
    metadata_percent: str = ""
    chunk_size: str = ""

    @property
    def attributes(self) -> LVAttributes:
        return parse_lv_attr(self.attr)


def _parse_report(output: str, key: str) -> List[Dict[str, str]]:
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError as exc:
        raise LVMError(f"failed to parse {key} report: {exc}") from exc
    if not isinstance(data, dict):
        raise LVMError(f"unexpected {key} report shape")
    records: List[Dict[str, str]] = []
    for report in data.get("report", []) or []:
        if not isinstance(report, dict):
            continue
        for entry in report.get(key, []) or []:
            if isinstance(entry, dict):
                records.append(entry)
    return records


class LVM:
    """Host LVM operations over an :class:`~vg_manager.executor.Executor`."""

    def __init__(self, executor: Executor) -> None:
        self.executor = executor

    def _run(self, command: str, args: Sequence[str]) -> str:
        try:
            return self.executor.run(command, list(args))
        except CommandError as exc:
            raise LVMError(str(exc)) from exc

    def list_vgs(self) -> List[VolumeGroup]:
        """Return every volume group with its member physical volumes."""

        output = self._run("vgs", ["--units", "g", "--reportformat", "json"])
        volume_groups: List[VolumeGroup] = []
        for record in _parse_report(output, "vg"):
            name = str(record.get("vg_name") or "")
            if not name:
                continue
            volume_groups.append(
                VolumeGroup(
                    name=name,
                    pvs=self.list_pvs(name),
                    size=str(record.get("vg_size") or ""),
                    free=str(record.get("vg_free") or ""),
                )
            )
        return volume_groups

    def get_vg(self, name: str) -> VolumeGroup:
        for vg in self.list_vgs():
            if vg.name == name:
                return vg
        raise VolumeGroupNotFound(f"volume group {name} not found")

    def list_pvs(self, vg_name: Optional[str] = None) -> List[PhysicalVolume]:
        """Return physical volumes, limited to *vg_name* when given."""

        args = ["--units", "g", "-v", "--reportformat", "json"]
        if vg_name is not None:
            args.extend(["-S", f"vgname={vg_name}"])
        output = self._run("pvs", args)
        return [
            PhysicalVolume(
                pv_name=str(record.get("pv_name") or ""),
                vg_name=str(record.get("vg_name") or ""),
            )
            for record in _parse_report(output, "pv")
            if record.get("pv_name")
        ]

    def create_vg(self, name: str, devices: Sequence[str]) -> VolumeGroup:
        if not name:
            raise ValueError("failed to create volume group: name is empty")
        if not devices:
            raise ValueError(f"failed to create volume group {name}: no physical volumes given")
        log_event("vg_manager.lvm.create_vg", vg=name, devices=list(devices))
        self._run("vgcreate", [name, *devices])
        return VolumeGroup(name=name, pvs=[PhysicalVolume(d, name) for d in devices])

    def extend_vg(self, vg: VolumeGroup, devices: Sequence[str]) -> VolumeGroup:
        if not vg.name:
            raise ValueError("failed to extend volume group: name is empty")
        if not devices:
            raise ValueError(f"failed to extend volume group {vg.name}: no physical volumes given")
        log_event("vg_manager.lvm.extend_vg", vg=vg.name, devices=list(devices))
        self._run("vgextend", [vg.name, *devices])
        return VolumeGroup(
            name=vg.name,
            pvs=[*vg.pvs, *(PhysicalVolume(d, vg.name) for d in devices)],
            size=vg.size,
            free=vg.free,
        )

    def delete_vg(self, vg: VolumeGroup) -> None:
        """Deactivate and remove *vg*, then release its physical volumes."""

        log_event("vg_manager.lvm.delete_vg", vg=vg.name, pvs=vg.pv_names)
        self._run("vgchange", ["-an", vg.name])
        self._run("vgremove", [vg.name])
        if vg.pvs:
            self._run("pvremove", vg.pv_names)

    def list_lvs(self, vg_name: str) -> List[LogicalVolume]:
        output = self._run(
            "lvs",
            [
                "-S",
                f"vgname={vg_name}",
                "--units",
                "g",
                "--reportformat",
                "json",
                "-o",
                "lv_name,vg_name,pool_lv,lv_attr,lv_size,metadata_percent,chunk_size",
            ],
        )
        return [
            LogicalVolume(
                name=str(record.get("lv_name") or ""),
                vg_name=str(record.get("vg_name") or ""),
                pool_lv=str(record.get("pool_lv") or ""),
                attr=str(record.get("lv_attr") or ""),
                size=str(record.get("lv_size") or ""),
                metadata_percent=str(record.get("metadata_percent") or ""),
                chunk_size=str(record.get("chunk_size") or ""),
            )
            for record in _parse_report(output, "lv")
        ]

    def lv_exists(self, lv_name: str, vg_name: str) -> bool:
        output = self._run(
            "lvs",
            ["-S", f"vgname={vg_name},lvname={lv_name}", "--reportformat", "json"],
        )
        return bool(_parse_report(output, "lv"))

    def create_thin_pool(self, lv_name: str, vg_name: str, size_percent: int) -> None:
        log_event(
            "vg_manager.lvm.create_thin_pool",
            vg=vg_name,
            lv=lv_name,
            size_percent=size_percent,
        )
        self._run(
            "lvcreate",
            ["-l", f"{size_percent}%FREE", "-c", "128", "-Z", "y", "-T", f"{vg_name}/{lv_name}"],
        )

    def extend_lv(self, lv_name: str, vg_name: str, size_percent: int) -> None:
        log_event(
            "vg_manager.lvm.extend_lv",
            vg=vg_name,
            lv=lv_name,
            size_percent=size_percent,
        )
        self._run("lvextend", ["-l", f"{size_percent}%Vg", f"{vg_name}/{lv_name}"])

    def delete_lv(self, lv_name: str, vg_name: str) -> None:
        log_event("vg_manager.lvm.delete_lv", vg=vg_name, lv=lv_name)
        self._run("lvchange", ["-an", f"{vg_name}/{lv_name}"])
        self._run("lvremove", ["-y", f"{vg_name}/{lv_name}"])
