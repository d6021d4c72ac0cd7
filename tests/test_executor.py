from typing import List, Sequence
import subprocess

import pytest

from vg_manager.executor import HOST_NAMESPACE_PREFIX, CommandError, HostExecutor


class RecordingRunner:
    def __init__(self, stdout: str = "", returncode: int = 0, stderr: str = "") -> None:
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.commands: List[Sequence[str]] = []

    def __call__(self, cmd: Sequence[str]) -> subprocess.CompletedProcess:
        self.commands.append(tuple(cmd))
        return subprocess.CompletedProcess(cmd, self.returncode, self.stdout, self.stderr)


def test_run_returns_stdout() -> None:
    runner = RecordingRunner(stdout="hello\n")
    executor = HostExecutor(runner=runner, host_namespace=False)

    assert executor.run("vgs", ["--reportformat", "json"]) == "hello\n"
    assert runner.commands == [("vgs", "--reportformat", "json")]


def test_run_prefixes_nsenter_for_host_namespace() -> None:
    runner = RecordingRunner()
    executor = HostExecutor(runner=runner, host_namespace=True)

    executor.run("wipefs", ["--all", "--force", "/dev/sdb"])

    assert runner.commands == [(*HOST_NAMESPACE_PREFIX, "wipefs", "--all", "--force", "/dev/sdb")]


def test_host_namespace_defaults_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("VG_MANAGER_HOST_NSENTER", "yes")
    runner = RecordingRunner()

    HostExecutor(runner=runner).run("lsblk", [])

    assert runner.commands[0][0] == "nsenter"


def test_non_zero_exit_raises_command_error() -> None:
    runner = RecordingRunner(returncode=5, stderr="  Volume group \"vg1\" not found\n")
    executor = HostExecutor(runner=runner, host_namespace=False)

    with pytest.raises(CommandError) as excinfo:
        executor.run("vgs", ["vg1"])

    assert excinfo.value.returncode == 5
    assert "not found" in str(excinfo.value)


def test_missing_binary_raises_command_error() -> None:
    def runner(cmd: Sequence[str]) -> subprocess.CompletedProcess:
        raise FileNotFoundError(2, "No such file or directory", cmd[0])

    executor = HostExecutor(runner=runner, host_namespace=False)

    with pytest.raises(CommandError) as excinfo:
        executor.run("dmsetup", ["remove"])

    assert excinfo.value.returncode == 127
