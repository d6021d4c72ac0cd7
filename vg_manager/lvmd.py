"""The lvmd device-class registry file.

lvmd reads this file to learn which volume groups it may provision from.
vg-manager is its only writer and always rewrites it completely.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .api import VolumeGroupSpec
from .logging_utils import log_event

__all__ = [
    "DEFAULT_LVMD_CONFIG_PATH",
    "DEFAULT_LVMD_SOCKET",
    "DeviceClass",
    "LVMDConfigFile",
    "RegistryConfig",
    "ThinPoolSettings",
    "TYPE_THICK",
    "TYPE_THIN",
    "device_class_for",
    "lvmd_config_path",
]

DEFAULT_LVMD_CONFIG_PATH = Path("/etc/topolvm/lvmd.yaml")
DEFAULT_LVMD_SOCKET = "/run/lvmd/lvmd.socket"

TYPE_THIN = "thin"
TYPE_THICK = "thick"


@dataclass
class ThinPoolSettings:
    name: str
    overprovision_ratio: float

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "overprovision-ratio": float(self.overprovision_ratio)}


@dataclass
class DeviceClass:
    name: str
    volume_group: str
    default: bool = False
    type: str = TYPE_THICK
    thin_pool: Optional[ThinPoolSettings] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "volume-group": self.volume_group,
            "default": self.default,
            "type": self.type,
        }
        if self.thin_pool is not None:
            data["thin-pool"] = self.thin_pool.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DeviceClass":
        thin = data.get("thin-pool")
        thin_pool = None
        if isinstance(thin, Mapping) and thin.get("name"):
            thin_pool = ThinPoolSettings(
                name=str(thin["name"]),
                overprovision_ratio=float(thin.get("overprovision-ratio", 1.0)),
            )
        return cls(
            name=str(data.get("name", "")),
            volume_group=str(data.get("volume-group", "")),
            default=bool(data.get("default", False)),
            type=str(data.get("type") or (TYPE_THIN if thin_pool else TYPE_THICK)),
            thin_pool=thin_pool,
        )


@dataclass
class RegistryConfig:
    socket_name: str = DEFAULT_LVMD_SOCKET
    device_classes: List[DeviceClass] = field(default_factory=list)

    def find(self, name: str) -> Optional[DeviceClass]:
        for device_class in self.device_classes:
            if device_class.name == name:
                return device_class
        return None

    def upsert(self, entry: DeviceClass) -> None:
        """Insert *entry*, or replace the entry of the same name in place."""

        for index, device_class in enumerate(self.device_classes):
            if device_class.name == entry.name:
                self.device_classes[index] = entry
                return
        self.device_classes.append(entry)

    def remove(self, name: str) -> bool:
        before = len(self.device_classes)
        self.device_classes = [dc for dc in self.device_classes if dc.name != name]
        return len(self.device_classes) != before

    def snapshot(self) -> "RegistryConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "socket-name": self.socket_name,
            "device-classes": [dc.to_dict() for dc in self.device_classes],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RegistryConfig":
        return cls(
            socket_name=str(data.get("socket-name") or DEFAULT_LVMD_SOCKET),
            device_classes=[
                DeviceClass.from_dict(item)
                for item in data.get("device-classes") or ()
                if isinstance(item, Mapping)
            ],
        )


def device_class_for(spec: VolumeGroupSpec) -> DeviceClass:
    """Return the registry entry that advertises the volume group of *spec*."""

    entry = DeviceClass(name=spec.name, volume_group=spec.name, default=spec.default)
    if spec.thin_pool_config is not None:
        entry.type = TYPE_THIN
        entry.thin_pool = ThinPoolSettings(
            name=spec.thin_pool_config.name,
            overprovision_ratio=spec.thin_pool_config.overprovision_ratio,
        )
    return entry


def lvmd_config_path() -> Path:
    override = os.environ.get("VG_MANAGER_LVMD_CONFIG")
    if override:
        return Path(override)
    return DEFAULT_LVMD_CONFIG_PATH


class LVMDConfigFile:
    """Load, save and delete the registry file at *path*."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else lvmd_config_path()

    def load(self) -> Optional[RegistryConfig]:
        """Return the stored registry, or ``None`` when the file does not exist.

        A malformed file raises ``ValueError`` rather than being overwritten.
        """

        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ValueError(f"failed to parse lvmd config {self.path}: {exc}") from exc
        if data is None:
            return RegistryConfig()
        if not isinstance(data, Mapping):
            raise ValueError(f"lvmd config {self.path} is not a mapping")
        return RegistryConfig.from_dict(data)

    def save(self, config: RegistryConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(text, encoding="utf-8")
        os.replace(tmp_path, self.path)
        log_event(
            "vg_manager.lvmd.saved",
            path=self.path,
            device_classes=[dc.name for dc in config.device_classes],
        )

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        log_event("vg_manager.lvmd.deleted", path=self.path)
