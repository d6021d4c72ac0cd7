"""Basic import tests for the vg_manager package."""

from pathlib import Path
import sys

# Ensure repository root is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


def test_import_package() -> None:
    import vg_manager  # noqa: F401


def test_import_modules() -> None:
    from vg_manager import devices, filters, lsblk, lvm, lvmd, reconciler, wipe  # noqa: F401


def test_import_cli_entrypoint() -> None:
    """Ensure the CLI module imports without missing dependencies."""

    __import__("vg_manager.vg_manager")
