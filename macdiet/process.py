"""Bounded external-process execution.

Commands are spawned in their own session so a timeout can kill the whole
process group, not just the direct child.
"""

from __future__ import annotations

import os
import signal
import subprocess
import time
from typing import Mapping, Protocol, Sequence

from .errors import ExecutionTimeoutError
from .models import CommandOutput

REAP_GRACE_SEC = 2.0


class CommandRunner(Protocol):
    def __call__(
        self,
        cmd: str,
        args: Sequence[str],
        timeout: float,
        *,
        env: Mapping[str, str] | None = None,
        run_as: tuple[int, int] | None = None,
    ) -> CommandOutput: ...


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        proc.kill()


def _reap(proc: subprocess.Popen, grace: float = REAP_GRACE_SEC) -> tuple[str, str]:
    """Collect what output is left after a kill without waiting forever.

    A descendant that escaped the process group may still hold the pipes
    open; in that case the pipes are closed and only the child is reaped.
    """
    try:
        return proc.communicate(timeout=grace)
    except subprocess.TimeoutExpired:
        for pipe in (proc.stdout, proc.stderr):
            if pipe is not None:
                pipe.close()
        proc.wait()
        return "", ""


def run_command(
    cmd: str,
    args: Sequence[str],
    timeout: float,
    *,
    env: Mapping[str, str] | None = None,
    run_as: tuple[int, int] | None = None,
) -> CommandOutput:
    """Run ``cmd args...`` with stdin closed and a hard time budget.

    A missing executable yields exit code 127 like a shell would. On timeout
    the process group is killed and reaped before ExecutionTimeoutError is
    raised.
    """
    argv = [cmd, *args]
    extra: dict = {}
    if run_as is not None:
        uid, gid = run_as
        extra["user"] = uid
        extra["group"] = gid
        extra["extra_groups"] = []

    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            env=dict(env) if env is not None else None,
            start_new_session=True,
            **extra,
        )
    except FileNotFoundError:
        return CommandOutput(127, "", f"command not found: {cmd}", time.monotonic() - started)
    except PermissionError as exc:
        return CommandOutput(126, "", f"cannot execute {cmd}: {exc}", time.monotonic() - started)

    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        _kill_group(proc)
        stdout, stderr = _reap(proc)
        elapsed = time.monotonic() - started
        raise ExecutionTimeoutError(
            f"Timeout after {timeout:g}s: {' '.join(argv)}",
            details={"cmd": cmd, "args": list(args), "timeout_sec": timeout},
            stdout=stdout or "",
            stderr=stderr or "",
            duration_sec=elapsed,
        ) from None

    return CommandOutput(proc.returncode, stdout or "", stderr or "", time.monotonic() - started)


__all__ = ["CommandRunner", "run_command"]
