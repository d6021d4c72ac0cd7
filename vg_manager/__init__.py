"""Per-node LVM volume group manager."""

from __future__ import annotations

from importlib import resources
from importlib.metadata import PackageNotFoundError, version as pkg_version

__all__ = [
    "api",
    "devices",
    "events",
    "filters",
    "lsblk",
    "lvm",
    "lvmd",
    "manager",
    "node",
    "reconciler",
    "state",
    "thin_pool",
    "validation",
    "wipe",
]


def _discover_version() -> str:
    try:
        return pkg_version("vg-manager")
    except PackageNotFoundError:
        try:
            return resources.files(__package__).joinpath("VERSION").read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return "unknown"


__version__ = _discover_version()
