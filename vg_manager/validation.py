"""Consistency checks for volume groups managed with a thin pool."""

from __future__ import annotations

from .api import VolumeGroupSpec
from .logging_utils import log_event
from .lvm import LVM, LVMError, STATE_ACTIVE, VOLUME_TYPE_THIN_POOL

__all__ = ["InconsistentVolumeGroupError", "METADATA_WARNING_PERCENTAGE", "validate_volume_group"]

METADATA_WARNING_PERCENTAGE = 95.0


class InconsistentVolumeGroupError(RuntimeError):
    """The logical volumes of a volume group are degraded or corrupt."""


def validate_volume_group(lvm: LVM, spec: VolumeGroupSpec) -> None:
    """Check the thin pool of *spec* for corruption.

    Without a thin pool there is nothing owned here to check: top-level
    logical volumes belong to the provisioner. Failures are never repaired.
    """

    config = spec.thin_pool_config
    if config is None:
        return

    try:
        lvs = lvm.list_lvs(spec.name)
    except LVMError as exc:
        raise InconsistentVolumeGroupError(
            f"could not list logical volumes in volume group {spec.name}, "
            f"volume group content is degraded or corrupt: {exc}"
        ) from exc
    if not lvs:
        raise InconsistentVolumeGroupError(
            "logical volume report was empty, the thin pool is no longer found "
            "but the volume group might still exist"
        )

    pool = next((lv for lv in lvs if lv.name == config.name), None)
    if pool is None:
        raise InconsistentVolumeGroupError(
            f"thin pool {config.name} is no longer present, but the volume group might still exist"
        )

    try:
        attributes = pool.attributes
    except ValueError as exc:
        raise InconsistentVolumeGroupError(f"could not parse lv_attr of {pool.name}: {exc}") from exc
    if attributes.volume_type != VOLUME_TYPE_THIN_POOL:
        raise InconsistentVolumeGroupError(
            f"logical volume {pool.name} is {attributes.volume_type}, not a thin pool "
            f"(lv_attr {attributes}); the thin pool is corrupt or was set up by someone else"
        )
    if attributes.state != STATE_ACTIVE:
        raise InconsistentVolumeGroupError(
            f"thin pool {pool.name} is {attributes.state} (lv_attr {attributes}); "
            "it must be activated again before reconciliation can continue"
        )

    try:
        metadata_percent = float(pool.metadata_percent)
    except ValueError as exc:
        raise InconsistentVolumeGroupError(
            f"could not parse metadata percentage of thin pool {pool.name}: {pool.metadata_percent!r}"
        ) from exc
    if metadata_percent > METADATA_WARNING_PERCENTAGE:
        raise InconsistentVolumeGroupError(
            f"metadata of thin pool {pool.name} is {metadata_percent}% full, over the "
            f"{METADATA_WARNING_PERCENTAGE:g}% limit; extend the metadata volume manually, "
            "metadata overflows cannot be recovered"
        )

    log_event("vg_manager.validation.ok", vg=spec.name, thin_pool=pool.name, lv_attr=str(attributes))
