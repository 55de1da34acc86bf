"""Child process spawning, tracking and termination."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

OutputCallback = Callable[[bytes], None]

_CHUNK_SIZE = 4096


@dataclass(slots=True)
class ProcessHandle:
    """A supervised child process and the tasks pumping its output."""

    pid: int
    executable: str
    process: asyncio.subprocess.Process
    pumps: list[asyncio.Task[None]] = field(default_factory=list)

    @property
    def returncode(self) -> int | None:
        return self.process.returncode


class ProcessSupervisor:
    """Spawns child processes and owns them until they are confirmed dead.

    Output is read in chunks by one pump task per stream and handed to the
    caller's callback in arrival order, each chunk exactly once.
    """

    def __init__(self, *, kill_grace_seconds: float = 5.0) -> None:
        self._kill_grace = kill_grace_seconds
        self._handles: dict[int, ProcessHandle] = {}

    async def spawn(
        self,
        executable: str,
        args: Sequence[str],
        *,
        on_stdout: OutputCallback | None = None,
        on_stderr: OutputCallback | None = None,
    ) -> ProcessHandle:
        """Start ``executable`` and return once the OS has accepted it.

        Raises:
            FileNotFoundError: If the executable does not exist.
            OSError: If the OS refuses to start the process.
        """
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        handle = ProcessHandle(pid=proc.pid, executable=executable, process=proc)
        if proc.stdout is not None:
            handle.pumps.append(asyncio.create_task(_pump(proc.stdout, on_stdout, proc.pid, "stdout")))
        if proc.stderr is not None:
            handle.pumps.append(asyncio.create_task(_pump(proc.stderr, on_stderr, proc.pid, "stderr")))
        self._handles[proc.pid] = handle
        logger.info("spawned %s (pid=%d)", executable, proc.pid)
        return handle

    def is_running(self, pid: int) -> bool:
        handle = self._handles.get(pid)
        return handle is not None and handle.returncode is None

    async def kill(self, pid: int) -> None:
        """Terminate ``pid``. Unknown or already-exited processes are a no-op."""
        handle = self._handles.get(pid)
        if handle is None:
            logger.debug("kill: pid %d not tracked", pid)
            return

        proc = handle.process
        if proc.returncode is None:
            try:
                proc.terminate()
                try:
                    await asyncio.wait_for(proc.wait(), timeout=self._kill_grace)
                except asyncio.TimeoutError:
                    logger.warning("pid %d ignored SIGTERM for %.1fs, sending SIGKILL", pid, self._kill_grace)
                    proc.kill()
                    await proc.wait()
            except ProcessLookupError:
                logger.debug("pid %d already gone", pid)

        await _drain(handle)
        self._handles.pop(pid, None)
        logger.info("process %d stopped (rc=%s)", pid, proc.returncode)

    async def kill_all(self) -> None:
        for pid in list(self._handles):
            await self.kill(pid)

    @property
    def tracked_pids(self) -> list[int]:
        return list(self._handles)


async def _pump(
    stream: asyncio.StreamReader,
    callback: OutputCallback | None,
    pid: int,
    name: str,
) -> None:
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            return
        if callback is None:
            continue
        try:
            callback(chunk)
        except Exception as exc:
            logger.warning("%s callback for pid %d failed: %s", name, pid, exc)


async def _drain(handle: ProcessHandle, timeout: float = 2.0) -> None:
    """Let pump tasks finish delivering buffered output, cancelling stragglers."""
    if not handle.pumps:
        return
    done, pending = await asyncio.wait(handle.pumps, timeout=timeout)
    for task in pending:
        task.cancel()
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.debug("pump for pid %d ended with %s", handle.pid, task.exception())
