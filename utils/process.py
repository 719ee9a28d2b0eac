"""
External process helpers — argv-only invocation, time boxes and cancellation.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import IO, Mapping, Sequence

from models.errors import BackupCancelledError, ProcessTimeoutError

log = logging.getLogger(__name__)

TERMINATE_GRACE = 5.0  # seconds between SIGTERM and SIGKILL


async def spawn(
    argv: Sequence[str],
    *,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
    stdout: int | IO | None = asyncio.subprocess.DEVNULL,
) -> asyncio.subprocess.Process:
    """Start an external process without a shell."""
    log.info("Spawning: %s (cwd=%s)", argv[0], cwd or ".")
    return await asyncio.create_subprocess_exec(
        *argv,
        cwd=str(cwd) if cwd else None,
        env=dict(env) if env is not None else None,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=stdout,
        stderr=asyncio.subprocess.PIPE,
    )


async def terminate(proc: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE) -> None:
    """SIGTERM the process, then SIGKILL it if it is still alive after `grace`."""
    if proc.returncode is not None:
        return
    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except asyncio.TimeoutError:
        log.warning("Process %s ignored SIGTERM, killing", proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()


async def wait_process(
    proc: asyncio.subprocess.Process,
    *,
    name: str,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
) -> int:
    """
    Wait for `proc` to exit and return its exit code.

    Raises ProcessTimeoutError when `timeout` elapses and BackupCancelledError
    when `cancel` is set first; the process is terminated in both cases. If the
    awaiting task itself is cancelled the process is terminated as well.
    """
    waiter = asyncio.ensure_future(_drain_and_wait(proc))
    watchers = {waiter}
    canceller = None
    if cancel is not None:
        canceller = asyncio.ensure_future(cancel.wait())
        watchers.add(canceller)

    try:
        done, _ = await asyncio.wait(watchers, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        waiter.cancel()
        await terminate(proc)
        raise
    finally:
        if canceller is not None and not canceller.done():
            canceller.cancel()

    if waiter in done:
        return waiter.result()

    waiter.cancel()
    await terminate(proc)
    if canceller is not None and canceller in done:
        raise BackupCancelledError(f"{name} cancelled")
    raise ProcessTimeoutError(name, timeout or 0)


async def _drain_and_wait(proc: asyncio.subprocess.Process) -> int:
    stderr = b""
    if proc.stderr is not None:
        stderr = await proc.stderr.read()
    code = await proc.wait()
    if code != 0 and stderr:
        log.warning("Process %s exited with %d: %s", proc.pid, code, stderr.decode(errors="replace")[-2000:])
    return code


async def run_to_file(
    argv: Sequence[str],
    dest: Path,
    *,
    name: str,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
) -> int:
    """Run `argv` with stdout redirected into `dest` and return the exit code."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    with open(dest, "wb") as handle:
        proc = await spawn(argv, env=env, stdout=handle)
        return await wait_process(proc, name=name, timeout=timeout, cancel=cancel)
