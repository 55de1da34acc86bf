"""ADB bridge for emulator devices."""

from __future__ import annotations

import logging

from avdsession.adapters.command import CommandResult, CommandTimeout, run_command
from avdsession.shared.exceptions import AdbCommandError, AdbNotFoundError

logger = logging.getLogger(__name__)


class AdbClient:
    """Runs ``adb`` commands against emulator serials.

    Uses the ``adb`` CLI through async subprocess calls. Every command is
    addressed with ``-s <device_id>`` except device enumeration.
    """

    def __init__(self, *, adb_bin: str = "adb", timeout: float = 30) -> None:
        self.adb_bin = adb_bin
        self._timeout = timeout

    async def devices(self) -> list[str]:
        """List serials reported by ``adb devices``, in any state.

        Raises:
            AdbNotFoundError: If the adb binary is missing.
            AdbCommandError: If adb fails.
        """
        result = await self._run("devices")
        if not result.ok:
            raise AdbCommandError(f"adb devices failed ({result.describe()})")
        serials = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line or line.startswith("List of devices") or line.startswith("*"):
                continue
            serials.append(line.split()[0])
        return serials

    async def shell(self, device_id: str, cmd: str, *, timeout: float | None = None) -> str:
        """Execute a shell command on the device.

        Args:
            device_id: adb serial, e.g. ``emulator-5554``.
            cmd: Shell command line.
            timeout: Seconds before the command is abandoned.

        Returns:
            Command output (stdout).

        Raises:
            AdbCommandError: If the command fails or times out.
        """
        result = await self._run("-s", device_id, "shell", cmd, timeout=timeout)
        if not result.ok:
            raise AdbCommandError(
                f"adb shell failed ({result.describe()})",
                context={"device_id": device_id, "command": cmd},
            )
        return result.stdout

    async def su(self, device_id: str, cmd: str, *, timeout: float | None = None) -> str:
        """Execute ``cmd`` as root through ``su -c``."""
        escaped = cmd.replace("'", "'\\''")
        return await self.shell(device_id, f"su -c '{escaped}'", timeout=timeout)

    async def push(self, device_id: str, local: str, remote: str, *, timeout: float | None = None) -> None:
        """Push a local file to the device.

        Raises:
            AdbCommandError: If the push fails.
        """
        result = await self._run("-s", device_id, "push", local, remote, timeout=timeout)
        if not result.ok:
            raise AdbCommandError(
                f"adb push failed ({result.describe()})",
                context={"device_id": device_id, "local": local, "remote": remote},
            )
        logger.info("pushed %s → %s on %s", local, remote, device_id)

    async def getprop(self, device_id: str, prop: str) -> str:
        return (await self.shell(device_id, f"getprop {prop}")).strip()

    async def reboot(self, device_id: str) -> None:
        result = await self._run("-s", device_id, "reboot", timeout=10)
        if not result.ok:
            raise AdbCommandError(f"adb reboot failed ({result.describe()})", context={"device_id": device_id})

    async def _run(self, *args: str, timeout: float | None = None) -> CommandResult:
        """Run an ADB command and return its captured result."""
        cmd = [self.adb_bin, *args]
        try:
            return await run_command(cmd, timeout=timeout or self._timeout)
        except CommandTimeout as exc:
            raise AdbCommandError(f"ADB command timed out: {' '.join(cmd)}") from exc
        except FileNotFoundError as exc:
            raise AdbNotFoundError(f"ADB not found at: {self.adb_bin}", context={"path": self.adb_bin}) from exc
