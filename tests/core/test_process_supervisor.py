"""Tests for ProcessSupervisor using real short-lived child processes."""

from __future__ import annotations

import sys

import pytest

from avdsession.core.process_supervisor import ProcessSupervisor


@pytest.fixture()
def supervisor() -> ProcessSupervisor:
    return ProcessSupervisor(kill_grace_seconds=2.0)


class TestProcessSupervisor:
    async def test_output_delivered_in_order(self, supervisor: ProcessSupervisor) -> None:
        chunks: list[bytes] = []
        script = "import sys\nfor i in range(200):\n    sys.stdout.write(f'line {i}\\n')\n"
        handle = await supervisor.spawn(sys.executable, ["-c", script], on_stdout=chunks.append)

        await handle.process.wait()
        await supervisor.kill(handle.pid)

        output = b"".join(chunks).decode()
        assert output.splitlines() == [f"line {i}" for i in range(200)]

    async def test_stderr_callback(self, supervisor: ProcessSupervisor) -> None:
        err: list[bytes] = []
        handle = await supervisor.spawn(
            sys.executable, ["-c", "import sys; sys.stderr.write('boom')"], on_stderr=err.append
        )
        await handle.process.wait()
        await supervisor.kill(handle.pid)
        assert b"".join(err) == b"boom"

    async def test_kill_running_process(self, supervisor: ProcessSupervisor) -> None:
        handle = await supervisor.spawn(sys.executable, ["-c", "import time; time.sleep(60)"])
        assert supervisor.is_running(handle.pid)

        await supervisor.kill(handle.pid)

        assert not supervisor.is_running(handle.pid)
        assert handle.returncode is not None
        assert handle.pid not in supervisor.tracked_pids

    async def test_kill_is_idempotent(self, supervisor: ProcessSupervisor) -> None:
        handle = await supervisor.spawn(sys.executable, ["-c", "import time; time.sleep(60)"])
        await supervisor.kill(handle.pid)
        await supervisor.kill(handle.pid)
        assert supervisor.tracked_pids == []

    async def test_kill_unknown_pid_is_noop(self, supervisor: ProcessSupervisor) -> None:
        await supervisor.kill(999_999)

    async def test_exited_process_not_running(self, supervisor: ProcessSupervisor) -> None:
        handle = await supervisor.spawn(sys.executable, ["-c", "raise SystemExit(3)"])
        await handle.process.wait()
        assert not supervisor.is_running(handle.pid)
        assert handle.returncode == 3
        await supervisor.kill(handle.pid)

    async def test_callback_error_does_not_stop_pump(self, supervisor: ProcessSupervisor) -> None:
        seen: list[bytes] = []

        def flaky(chunk: bytes) -> None:
            seen.append(chunk)
            raise RuntimeError("callback broke")

        handle = await supervisor.spawn(sys.executable, ["-c", "print('x')"], on_stdout=flaky)
        await handle.process.wait()
        await supervisor.kill(handle.pid)
        assert b"".join(seen).strip() == b"x"

    async def test_missing_executable(self, supervisor: ProcessSupervisor) -> None:
        with pytest.raises(FileNotFoundError):
            await supervisor.spawn("/nonexistent/emulator-binary", [])

    async def test_kill_all(self, supervisor: ProcessSupervisor) -> None:
        for _ in range(2):
            await supervisor.spawn(sys.executable, ["-c", "import time; time.sleep(60)"])
        await supervisor.kill_all()
        assert supervisor.tracked_pids == []
