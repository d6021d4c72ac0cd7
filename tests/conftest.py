from pathlib import Path
import sys

import pytest


# Ensure repository root is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))


@pytest.fixture(autouse=True)
def isolate_environment(tmp_path, monkeypatch) -> None:
    """Keep state, registry and log files of every test inside ``tmp_path``."""

    monkeypatch.delenv("VG_MANAGER_LOG_EVENTS", raising=False)
    monkeypatch.delenv("VG_MANAGER_HOST_NSENTER", raising=False)
    monkeypatch.delenv("VG_MANAGER_NODE_NAME", raising=False)
    monkeypatch.setenv("VG_MANAGER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("VG_MANAGER_LVMD_CONFIG", str(tmp_path / "lvmd.yaml"))
    monkeypatch.setenv("VG_MANAGER_LOG_FILE", str(tmp_path / "events.log"))
