"""One-shot subprocess execution for the SDK command-line tools."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


class CommandTimeout(Exception):
    """Raised when a command exceeds its timeout; the process is killed and reaped."""

    def __init__(self, args: Sequence[str], timeout: float) -> None:
        super().__init__(f"command timed out after {timeout:g}s: {' '.join(args)}")
        self.args_list = list(args)
        self.timeout = timeout


@dataclass(frozen=True, slots=True)
class CommandResult:
    args: list[str]
    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        detail = self.stderr or self.stdout
        return f"rc={self.returncode}: {detail[-500:]}" if detail else f"rc={self.returncode}"


async def run_command(
    args: Sequence[str],
    *,
    timeout: float,
    stdin_data: bytes | None = None,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run ``args`` to completion and capture its output.

    ``env`` entries are layered over the current environment.

    Raises:
        FileNotFoundError: If the executable does not exist.
        CommandTimeout: If the command runs longer than ``timeout`` seconds.
    """
    cmd = [str(a) for a in args]
    kwargs: dict[str, Any] = {}
    if cwd is not None:
        kwargs["cwd"] = cwd
    if env is not None:
        kwargs["env"] = {**os.environ, **env}
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdin=asyncio.subprocess.PIPE if stdin_data is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **kwargs,
    )
    try:
        stdout_b, stderr_b = await asyncio.wait_for(proc.communicate(stdin_data), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await _reap(proc)
        raise CommandTimeout(cmd, timeout) from exc
    except BaseException:
        await _reap(proc)
        raise

    result = CommandResult(
        args=cmd,
        stdout=(stdout_b or b"").decode(errors="replace").strip(),
        stderr=(stderr_b or b"").decode(errors="replace").strip(),
        returncode=proc.returncode or 0,
    )
    logger.debug("%s -> rc=%d", " ".join(cmd), result.returncode)
    return result


async def _reap(proc: asyncio.subprocess.Process) -> None:
    """Kill ``proc`` and wait for it so no child outlives an abandoned command."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()
