"""Host command execution for storage tooling."""

from __future__ import annotations

import os
import shlex
import subprocess
from typing import Callable, List, Protocol, Sequence

from .logging_utils import log_event

__all__ = [
    "CommandError",
    "CommandRunner",
    "Executor",
    "HostExecutor",
    "HOST_NAMESPACE_PREFIX",
]


CommandRunner = Callable[[Sequence[str]], subprocess.CompletedProcess]

# Enter the mount, UTS, IPC, network and PID namespaces of the host init
# process so LVM sees the host's /dev and lock directories from a container.
HOST_NAMESPACE_PREFIX = ("nsenter", "-m", "-u", "-i", "-n", "-p", "-t", "1")


class CommandError(subprocess.CalledProcessError):
    """A host command exited with a non-zero status."""

    def __str__(self) -> str:
        detail = (self.stderr or self.output or "").strip()
        base = super().__str__()
        return f"{base}: {detail}" if detail else base


class Executor(Protocol):
    """Narrow capability used by every component that touches the host."""

    def run(self, command: str, args: Sequence[str]) -> str:
        """Run *command* with *args* and return its standard output."""
        ...


def _default_runner(cmd: Sequence[str]) -> subprocess.CompletedProcess:
    """Run *cmd* with output captured so it can be parsed and logged."""

    return subprocess.run(
        list(cmd),
        check=False,
        capture_output=True,
        text=True,
    )


def _command_to_str(cmd: Sequence[str]) -> str:
    return " ".join(shlex.quote(part) for part in cmd)


def _command_output_fields(result: subprocess.CompletedProcess) -> dict[str, str]:
    """Return a mapping of non-empty output streams for logging."""

    fields = {}
    stdout = (result.stdout or "").strip()
    stderr = (result.stderr or "").strip()
    if stdout:
        fields["stdout"] = stdout
    if stderr:
        fields["stderr"] = stderr
    return fields


def _host_namespace_default() -> bool:
    value = os.environ.get("VG_MANAGER_HOST_NSENTER")
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


class HostExecutor:
    """Run storage commands on the host, optionally through ``nsenter``."""

    def __init__(
        self,
        *,
        runner: CommandRunner | None = None,
        host_namespace: bool | None = None,
    ) -> None:
        self.runner = runner or _default_runner
        if host_namespace is None:
            host_namespace = _host_namespace_default()
        self.prefix: tuple[str, ...] = HOST_NAMESPACE_PREFIX if host_namespace else ()

    def run(self, command: str, args: Sequence[str]) -> str:
        cmd: List[str] = [*self.prefix, command, *args]
        cmd_str = _command_to_str(cmd)
        log_event("vg_manager.command.start", command=cmd_str)
        try:
            result = self.runner(cmd)
        except OSError as exc:
            log_event("vg_manager.command.error", command=cmd_str, error=str(exc))
            raise CommandError(127, cmd_str, output="", stderr=str(exc)) from exc
        if result.returncode != 0:
            log_event(
                "vg_manager.command.failed",
                command=cmd_str,
                returncode=result.returncode,
                **_command_output_fields(result),
            )
            raise CommandError(
                result.returncode,
                cmd_str,
                output=result.stdout,
                stderr=result.stderr,
            )
        log_event("vg_manager.command.finished", command=cmd_str)
        return result.stdout or ""
