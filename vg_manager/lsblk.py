"""Block device discovery via ``lsblk``."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from .executor import Executor

__all__ = [
    "BlockDevice",
    "BlockDeviceTree",
    "LSBLK_COLUMNS",
    "list_block_devices",
    "parse_lsblk_output",
]

LSBLK_COLUMNS = "NAME,KNAME,TYPE,SIZE,RO,STATE,ROTA,MODEL,SERIAL,PARTLABEL,FSTYPE,MOUNTPOINT"


@dataclass
class BlockDevice:
    """One node in the block device tree.

    ``parent`` and ``children`` are indices into the owning
    :class:`BlockDeviceTree`, never object references.
    """

    name: str
    kname: str
    type: str = ""
    size: int = 0
    read_only: bool = False
    state: str = ""
    rotational: bool = False
    model: str = ""
    serial: str = ""
    partlabel: str = ""
    fstype: str = ""
    mountpoints: List[str] = field(default_factory=list)
    device_path: str = ""
    index: int = -1
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    @property
    def path(self) -> str:
        """Path to hand to storage commands."""

        return self.device_path or self.kname


class BlockDeviceTree:
    """Arena of block devices as reported by ``lsblk``.

    The same kernel device may appear under several parents (for example a
    RAID array assembled from two partitions); every appearance gets its own
    record.
    """

    def __init__(self) -> None:
        self.devices: List[BlockDevice] = []
        self.roots: List[int] = []

    def add(self, device: BlockDevice, parent: Optional[BlockDevice] = None) -> BlockDevice:
        device.index = len(self.devices)
        device.children = []
        self.devices.append(device)
        if parent is None:
            device.parent = None
            self.roots.append(device.index)
        else:
            device.parent = parent.index
            parent.children.append(device.index)
        return device

    def __len__(self) -> int:
        return len(self.devices)

    def __iter__(self) -> Iterator[BlockDevice]:
        return self.walk()

    def children(self, device: BlockDevice) -> List[BlockDevice]:
        return [self.devices[i] for i in device.children]

    def walk(self) -> Iterator[BlockDevice]:
        """Yield every device depth-first, parents before children."""

        visited: set[int] = set()
        stack = list(reversed(self.roots))
        while stack:
            index = stack.pop()
            if index in visited:
                continue
            visited.add(index)
            device = self.devices[index]
            yield device
            stack.extend(reversed(device.children))

    def descendants_bottom_up(self, device: BlockDevice) -> List[BlockDevice]:
        """Return the descendants of *device*, innermost first."""

        ordered: List[BlockDevice] = []
        visited: set[int] = set()

        def visit(index: int) -> None:
            if index in visited:
                return
            visited.add(index)
            node = self.devices[index]
            for child in node.children:
                visit(child)
            ordered.append(node)

        for child in device.children:
            visit(child)
        return ordered

    def find(self, path: str) -> Optional[BlockDevice]:
        """Return the first device whose kernel name or name equals *path*."""

        for device in self.walk():
            if device.kname == path or device.name == path:
                return device
        return None


def _as_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes"}
    return False


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


def _as_str(value: object) -> str:
    return value.strip() if isinstance(value, str) else ""


def _mountpoints(entry: dict) -> List[str]:
    mountpoints: List[str] = []
    raw_mount = entry.get("mountpoint")
    if isinstance(raw_mount, str) and raw_mount:
        mountpoints.append(raw_mount)
    raw_mounts = entry.get("mountpoints")
    if isinstance(raw_mounts, list):
        mountpoints.extend(str(item) for item in raw_mounts if item and item not in mountpoints)
    return mountpoints


def _add_entry(tree: BlockDeviceTree, entry: dict, parent: Optional[BlockDevice]) -> None:
    name = _as_str(entry.get("name"))
    kname = _as_str(entry.get("kname")) or name
    device = tree.add(
        BlockDevice(
            name=name,
            kname=kname,
            type=_as_str(entry.get("type")),
            size=_as_int(entry.get("size")),
            read_only=_as_bool(entry.get("ro")),
            state=_as_str(entry.get("state")),
            rotational=_as_bool(entry.get("rota")),
            model=_as_str(entry.get("model")),
            serial=_as_str(entry.get("serial")),
            partlabel=_as_str(entry.get("partlabel")),
            fstype=_as_str(entry.get("fstype")),
            mountpoints=_mountpoints(entry),
        ),
        parent,
    )
    for child in entry.get("children") or []:
        if isinstance(child, dict):
            _add_entry(tree, child, device)


def parse_lsblk_output(output: str) -> BlockDeviceTree:
    """Parse ``lsblk --json`` output into a :class:`BlockDeviceTree`."""

    try:
        parsed = json.loads(output or "{}")
    except json.JSONDecodeError as exc:
        raise ValueError(f"failed to parse lsblk output: {exc}") from exc
    devices = parsed.get("blockdevices") if isinstance(parsed, dict) else None
    if not isinstance(devices, list):
        raise ValueError("lsblk output is missing the blockdevices list")
    tree = BlockDeviceTree()
    for entry in devices:
        if isinstance(entry, dict):
            _add_entry(tree, entry, None)
    return tree


def list_block_devices(executor: Executor) -> BlockDeviceTree:
    """Return the host block device tree.

    Any failure propagates: a partial catalog is never returned.
    """

    output = executor.run(
        "lsblk",
        ["--json", "--paths", "--bytes", "-o", LSBLK_COLUMNS],
    )
    return parse_lsblk_output(output)
