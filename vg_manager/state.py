"""Storage for volume group specs and per-node status records."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from .api import NodeVolumeGroupStatus, VolumeGroupSpec

_SPEC_DIRNAME = "volumegroups"
_STATUS_DIRNAME = "nodestatus"


def _default_state_dir() -> Path:
    """Return the default directory for stored objects."""

    override = os.environ.get("VG_MANAGER_STATE_DIR")
    if override:
        return Path(override)
    return Path("/run/vg-manager")


class ObjectStore(Protocol):
    """The object CRUD surface the reconciler needs."""

    def list_specs(self) -> List[VolumeGroupSpec]:
        ...

    def get_spec(self, name: str) -> Optional[VolumeGroupSpec]:
        ...

    def save_spec(self, spec: VolumeGroupSpec) -> None:
        ...

    def delete_spec(self, name: str) -> None:
        ...

    def get_status(self, node: str, name: str) -> Optional[NodeVolumeGroupStatus]:
        ...

    def save_status(self, status: NodeVolumeGroupStatus) -> None:
        ...

    def delete_status(self, node: str, name: str) -> None:
        ...


def _write_json(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(payload, indent=2, sort_keys=True)
    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    os.replace(tmp_path, path)


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"{path} does not contain a JSON object")
    return data


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return


class FileObjectStore:
    """Keep objects as JSON files below *state_dir*.

    Specs live in ``volumegroups/<name>.json`` and statuses in
    ``nodestatus/<node>/<name>.json``.
    """

    def __init__(self, state_dir: Optional[Path] = None) -> None:
        self.state_dir = Path(state_dir) if state_dir is not None else _default_state_dir()

    def spec_path(self, name: str) -> Path:
        return self.state_dir / _SPEC_DIRNAME / f"{name}.json"

    def status_path(self, node: str, name: str) -> Path:
        return self.state_dir / _STATUS_DIRNAME / node / f"{name}.json"

    def list_specs(self) -> List[VolumeGroupSpec]:
        directory = self.state_dir / _SPEC_DIRNAME
        if not directory.is_dir():
            return []
        specs = []
        for path in sorted(directory.glob("*.json")):
            data = _read_json(path)
            if data is not None:
                specs.append(VolumeGroupSpec.from_dict(data))
        return specs

    def get_spec(self, name: str) -> Optional[VolumeGroupSpec]:
        data = _read_json(self.spec_path(name))
        return VolumeGroupSpec.from_dict(data) if data is not None else None

    def save_spec(self, spec: VolumeGroupSpec) -> None:
        _write_json(self.spec_path(spec.name), spec.to_dict())

    def delete_spec(self, name: str) -> None:
        _unlink(self.spec_path(name))

    def list_statuses(self, node: str) -> List[NodeVolumeGroupStatus]:
        directory = self.state_dir / _STATUS_DIRNAME / node
        if not directory.is_dir():
            return []
        statuses = []
        for path in sorted(directory.glob("*.json")):
            data = _read_json(path)
            if data is not None:
                statuses.append(NodeVolumeGroupStatus.from_dict(data))
        return statuses

    def get_status(self, node: str, name: str) -> Optional[NodeVolumeGroupStatus]:
        data = _read_json(self.status_path(node, name))
        return NodeVolumeGroupStatus.from_dict(data) if data is not None else None

    def save_status(self, status: NodeVolumeGroupStatus) -> None:
        _write_json(self.status_path(status.node, status.name), status.to_dict())

    def delete_status(self, node: str, name: str) -> None:
        _unlink(self.status_path(node, name))
