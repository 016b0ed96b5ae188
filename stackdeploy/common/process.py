"""Subprocess execution with timeouts and cancellation."""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping, Sequence

from stackdeploy.common.cancellation import CancellationToken
from stackdeploy.common.errors import CommandError, PipelineCancelled

POLL_SECONDS = 0.25
TERMINATE_GRACE_SECONDS = 10.0


@dataclass(frozen=True)
class ProcessResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _stop(proc: subprocess.Popen) -> None:
    proc.terminate()
    try:
        proc.communicate(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()


def run_process(
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    timeout: float | None = None,
    cancel: CancellationToken | None = None,
    check: bool = False,
) -> ProcessResult:
    """Run ``args`` to completion, polling for cancellation while it runs.

    ``env`` is layered over the current environment. A timeout raises
    ``CommandError``; cancellation terminates the child and raises
    ``PipelineCancelled``. With ``check`` a non-zero exit raises ``CommandError``.
    """
    merged_env = dict(os.environ)
    if env:
        merged_env.update(env)

    try:
        proc = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=merged_env,
            cwd=str(cwd) if cwd is not None else None,
        )
    except OSError as exc:
        raise CommandError(f"Unable to execute {args[0]}: {exc}") from exc

    deadline = time.monotonic() + timeout if timeout is not None else None
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=POLL_SECONDS)
            break
        except subprocess.TimeoutExpired:
            if cancel is not None and cancel.is_set():
                _stop(proc)
                raise PipelineCancelled(f"{args[0]} aborted: {cancel.reason}")
            if deadline is not None and time.monotonic() > deadline:
                _stop(proc)
                raise CommandError(f"{args[0]} timed out after {timeout}s")

    result = ProcessResult(args=tuple(args), returncode=proc.returncode, stdout=stdout, stderr=stderr)
    if check and not result.ok:
        raise CommandError(
            f"{args[0]} exited with status {result.returncode}",
            returncode=result.returncode,
            stderr=result.stderr,
        )
    return result


CommandRunner = Callable[..., ProcessResult]
