"""Create thin pools and grow them toward their configured size."""

from __future__ import annotations

from typing import Optional

from .api import ThinPoolConfig
from .logging_utils import log_event
from .lvm import LVM, VOLUME_TYPE_THIN_POOL, VolumeGroupNotFound

__all__ = [
    "THIN_POOL_CREATE",
    "THIN_POOL_EXTEND",
    "ThinPoolError",
    "current_percent",
    "ensure_thin_pool",
    "parse_size",
    "pending_thin_pool_change",
]

THIN_POOL_CREATE = "create"
THIN_POOL_EXTEND = "extend"


class ThinPoolError(RuntimeError):
    """The thin pool cannot be created or extended."""


def parse_size(value: str) -> float:
    """Parse an LVM size such as ``"40.00g"`` or ``"<475.94g"``.

    The trailing unit is dropped, so both sizes compared must use the same
    unit (all queries here request ``--units g``).
    """

    text = value.strip().lstrip("<")
    if not text:
        raise ValueError(f"empty size value: {value!r}")
    if text[-1].isalpha():
        text = text[:-1]
    return float(text)


def current_percent(pool_size: str, vg_size: str) -> int:
    """Return how much of the volume group the pool occupies, in whole percent."""

    pool = parse_size(pool_size)
    total = parse_size(vg_size)
    if total <= 0:
        raise ValueError(f"volume group size must be positive, got {vg_size!r}")
    return int(pool / total * 100)


def pending_thin_pool_change(lvm: LVM, vg_name: str, config: ThinPoolConfig) -> Optional[str]:
    """Return the change :func:`ensure_thin_pool` would make, or ``None``.

    A non-thin logical volume carrying the pool name is a conflict that
    needs an operator.
    """

    for lv in lvm.list_lvs(vg_name):
        if lv.name != config.name:
            continue
        try:
            attributes = lv.attributes
        except ValueError as exc:
            raise ThinPoolError(f"could not parse lv_attr of {lv.name}: {exc}") from exc
        if attributes.volume_type != VOLUME_TYPE_THIN_POOL:
            raise ThinPoolError(
                f"logical volume {config.name} already exists in volume group {vg_name} "
                f"but is not a thin pool ({attributes})"
            )
        return _pending_extension(lvm, vg_name, lv.size, config)
    return THIN_POOL_CREATE


def _pending_extension(lvm: LVM, vg_name: str, lv_size: str, config: ThinPoolConfig) -> Optional[str]:
    try:
        vg = lvm.get_vg(vg_name)
    except VolumeGroupNotFound:
        log_event("vg_manager.thin_pool.vg_missing", vg=vg_name, thin_pool=config.name)
        return None

    try:
        percent = current_percent(lv_size, vg.size)
    except ValueError as exc:
        raise ThinPoolError(f"failed to determine size of thin pool {config.name}: {exc}") from exc

    if config.size_percent <= percent:
        return None
    log_event(
        "vg_manager.thin_pool.below_target",
        vg=vg_name,
        thin_pool=config.name,
        current_percent=percent,
        target_percent=config.size_percent,
    )
    return THIN_POOL_EXTEND


def ensure_thin_pool(lvm: LVM, vg_name: str, config: ThinPoolConfig) -> Optional[str]:
    """Make sure the thin pool of *config* exists in *vg_name* at its target size.

    The pool is only ever grown. Returns the change that was made.
    """

    change = pending_thin_pool_change(lvm, vg_name, config)
    if change == THIN_POOL_CREATE:
        log_event("vg_manager.thin_pool.create", vg=vg_name, thin_pool=config.name, size_percent=config.size_percent)
        lvm.create_thin_pool(config.name, vg_name, config.size_percent)
    elif change == THIN_POOL_EXTEND:
        log_event("vg_manager.thin_pool.extend", vg=vg_name, thin_pool=config.name, size_percent=config.size_percent)
        lvm.extend_lv(config.name, vg_name, config.size_percent)
    else:
        log_event("vg_manager.thin_pool.exists", vg=vg_name, thin_pool=config.name)
    return change
