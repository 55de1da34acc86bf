"""Android emulator process control and device-level operations."""

from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path
from typing import IO

from avdsession.adapters.adb import AdbClient
from avdsession.adapters.command import CommandTimeout, run_command
from avdsession.config import Settings
from avdsession.core.port_finder import PortFinder
from avdsession.core.process_supervisor import ProcessSupervisor
from avdsession.shared.exceptions import (
    AdbCommandError,
    AdbNotFoundError,
    AvdSessionError,
    BootTimeoutError,
    EmulatorBinaryNotFoundError,
    ImageNotFoundError,
    InternalError,
    InvalidArgumentError,
    PortExhaustedError,
    ProxyConfigError,
    StartFailedError,
)
from avdsession.shared.models import EmulatorStartResult, device_id_for

logger = logging.getLogger(__name__)

DNS_SERVER = "8.8.8.8"
DEFAULT_MITM_CERT = Path.home() / ".mitmproxy" / "mitmproxy-ca-cert.pem"
USER_CACERTS_DIR = "/data/misc/user/0/cacerts-added"
_DEVICE_TMP_DIR = "/data/local/tmp"
_MODULE_DOWNLOAD_DIR = "/sdcard/Download"


class EmulatorAdapter:
    """Starts emulator processes and drives the device once it is up.

    Ports are reserved through the shared :class:`PortFinder` and released
    again by :meth:`stop` or when a launch attempt fails.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        supervisor: ProcessSupervisor,
        port_finder: PortFinder,
        adb: AdbClient,
        settle_seconds: float = 1.0,
        device_poll_seconds: float = 1.0,
        reboot_settle_seconds: float = 5.0,
    ) -> None:
        self._settings = settings
        self._supervisor = supervisor
        self._ports = port_finder
        self._adb = adb
        self._settle_seconds = settle_seconds
        self._device_poll_seconds = device_poll_seconds
        self._reboot_settle_seconds = reboot_settle_seconds
        self._ports_by_pid: dict[int, int] = {}
        self._logs_by_pid: dict[int, IO[bytes]] = {}

    @property
    def emulator_bin(self) -> str:
        return self._settings.emulator_bin

    async def list_avds(self) -> list[str]:
        """List AVD names known to the emulator binary.

        Raises:
            EmulatorBinaryNotFoundError: If the emulator binary is missing.
            StartFailedError: If listing fails for any other reason.
        """
        cmd = [self.emulator_bin, "-list-avds"]
        try:
            result = await run_command(cmd, timeout=self._settings.command_timeout_seconds)
        except FileNotFoundError as exc:
            raise EmulatorBinaryNotFoundError(
                f"Emulator not found at: {self.emulator_bin}", context={"path": self.emulator_bin}
            ) from exc
        except CommandTimeout as exc:
            raise StartFailedError(f"Failed to list AVDs: {exc}", context={"command": " ".join(cmd)}) from exc
        if not result.ok:
            raise StartFailedError(
                f"Failed to list AVDs ({result.describe()})", context={"command": " ".join(cmd)}
            )
        # The emulator prints INFO lines on some hosts; AVD names never contain spaces.
        return [line.strip() for line in result.stdout.splitlines() if line.strip() and " " not in line.strip()]

    async def start(
        self,
        avd_name: str,
        *,
        log_file: str | Path,
        port: int | None = None,
        headless: bool = True,
        read_only: bool = False,
    ) -> EmulatorStartResult:
        """Launch ``avd_name`` on the first free even console port.

        An odd ``port`` is rounded up. If the process dies during the settle
        delay the pair is released and the next pair is tried, up to
        ``port_retry_attempts`` launches. ``read_only`` lets a further
        instance run an AVD that another emulator already holds.

        Raises:
            ImageNotFoundError: If the AVD does not exist.
            PortExhaustedError: If no port pair is free.
            EmulatorBinaryNotFoundError: If the emulator binary is missing.
            StartFailedError: If the emulator cannot be kept running.
        """
        avds = await self.list_avds()
        if avd_name not in avds:
            raise ImageNotFoundError(f"AVD '{avd_name}' not found", context={"available_avds": avds})

        requested = port or self._settings.default_emulator_port
        if requested % 2 != 0:
            requested += 1
        max_port = self._settings.max_emulator_port

        search_from = requested
        attempts = max(1, self._settings.port_retry_attempts)
        last_error: StartFailedError | None = None
        for attempt in range(1, attempts + 1):
            try:
                console_port = await self._ports.reserve_even(search_from, max_port)
            except PortExhaustedError as exc:
                raise PortExhaustedError(
                    f"No available emulator ports in range {requested}-{max_port}",
                    context={"start": requested, "end": max_port},
                ) from exc

            try:
                pid = await self._launch(
                    avd_name, console_port, headless=headless, read_only=read_only, log_file=Path(log_file)
                )
            except StartFailedError as exc:
                self._ports.release(console_port)
                last_error = exc
                search_from = console_port + 2
                logger.warning("emulator launch attempt %d on port %d failed: %s", attempt, console_port, exc)
                continue
            except BaseException:
                self._ports.release(console_port)
                raise

            self._ports_by_pid[pid] = console_port
            adb_port = console_port + 1
            logger.info(
                "emulator started (pid=%d, console=%d, adb=%d, avd=%s)", pid, console_port, adb_port, avd_name
            )
            return EmulatorStartResult(pid=pid, console_port=console_port, adb_port=adb_port)

        raise StartFailedError(
            f"Emulator could not be kept running after {attempts} attempts: {last_error}",
            context={"avd_name": avd_name, "attempts": attempts},
        ) from last_error

    async def _launch(
        self, avd_name: str, console_port: int, *, headless: bool, read_only: bool, log_file: Path
    ) -> int:
        args = [
            "-avd",
            avd_name,
            "-port",
            str(console_port),
            "-no-snapshot-save",
            "-dns-server",
            DNS_SERVER,
        ]
        if headless:
            args.append("-no-window")
        if read_only:
            args.append("-read-only")

        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            log_stream = log_file.open("ab")
        except OSError as exc:
            raise StartFailedError(f"Failed to create log file: {log_file}", context={"error": str(exc)}) from exc

        def _write(chunk: bytes) -> None:
            log_stream.write(chunk)
            log_stream.flush()

        try:
            handle = await self._supervisor.spawn(self.emulator_bin, args, on_stdout=_write, on_stderr=_write)
        except FileNotFoundError as exc:
            log_stream.close()
            raise EmulatorBinaryNotFoundError(
                f"Emulator not found at: {self.emulator_bin}", context={"path": self.emulator_bin}
            ) from exc
        except OSError as exc:
            log_stream.close()
            raise StartFailedError(f"Failed to start emulator: {exc}", context={"avd_name": avd_name}) from exc

        try:
            await asyncio.sleep(self._settle_seconds)
            if not self._supervisor.is_running(handle.pid):
                raise StartFailedError(
                    "Emulator process exited immediately",
                    context={"avd_name": avd_name, "port": console_port, "returncode": handle.returncode},
                )
        except BaseException:
            await self._supervisor.kill(handle.pid)
            log_stream.close()
            raise

        self._logs_by_pid[handle.pid] = log_stream
        return handle.pid

    async def stop(self, pid: int) -> None:
        """Kill the emulator and release its port pair. Safe on dead pids."""
        await self._supervisor.kill(pid)
        port = self._ports_by_pid.pop(pid, None)
        if port is not None:
            self._ports.release(port)
        log_stream = self._logs_by_pid.pop(pid, None)
        if log_stream is not None:
            log_stream.close()
        logger.info("emulator stopped (pid=%d)", pid)

    async def wait_for_boot(self, adb_port: int, timeout: float | None = None) -> None:
        """Wait until the device is listed by adb and reports boot completion.

        Both phases share one deadline measured from the call.

        Raises:
            BootTimeoutError: If the deadline passes first.
            AdbNotFoundError: If the adb binary is missing.
        """
        timeout = timeout if timeout is not None else self._settings.boot_timeout_seconds
        device_id = device_id_for(adb_port)
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = started + timeout

        logger.info("waiting for emulator boot (device=%s, timeout=%.0fs)", device_id, timeout)
        await self._wait_for_device(device_id, deadline, timeout)

        poll = self._settings.boot_poll_interval_seconds
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                value = await asyncio.wait_for(self._adb.getprop(device_id, "sys.boot_completed"), timeout=remaining)
                if value == "1":
                    logger.info("emulator boot completed (device=%s, %.1fs)", device_id, loop.time() - started)
                    return
            except asyncio.TimeoutError:
                break
            except AdbCommandError:
                pass  # device not ready yet
            await asyncio.sleep(max(0.0, min(poll, deadline - loop.time())))

        raise BootTimeoutError(
            f"Emulator boot timed out after {timeout:g}s",
            context={"device_id": device_id, "timeout": timeout},
        )

    async def _wait_for_device(self, device_id: str, deadline: float, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                serials = await asyncio.wait_for(self._adb.devices(), timeout=remaining)
                if device_id in serials:
                    logger.info("device %s appeared in adb", device_id)
                    return
            except asyncio.TimeoutError:
                break
            except AdbCommandError as exc:
                logger.debug("adb devices failed: %s", exc)
            await asyncio.sleep(max(0.0, min(self._device_poll_seconds, deadline - loop.time())))

        raise BootTimeoutError(
            f"Device {device_id} not found in ADB within timeout",
            context={"device_id": device_id, "timeout": timeout},
        )

    async def set_proxy(self, adb_port: int, host: str, port: int) -> None:
        """Point the device's global HTTP proxy at ``host:port``.

        Raises:
            InvalidArgumentError: If host or port are unusable.
            ProxyConfigError: If the settings command fails.
        """
        device_id = device_id_for(adb_port)
        if not host or not 0 < port < 65536:
            raise InvalidArgumentError(f"invalid proxy {host}:{port}", context={"host": host, "port": port})
        try:
            await self._adb.shell(device_id, f"settings put global http_proxy {host}:{port}")
        except (AdbCommandError, AdbNotFoundError) as exc:
            raise ProxyConfigError(
                f"Failed to configure proxy: {exc.message}",
                context={"device_id": device_id, "host": host, "port": port},
            ) from exc
        logger.info("proxy configured on %s → %s:%d", device_id, host, port)

    async def clear_proxy(self, adb_port: int) -> bool:
        """Clear the global HTTP proxy. Never raises; returns whether it worked."""
        device_id = device_id_for(adb_port)
        try:
            await self._adb.shell(device_id, "settings put global http_proxy :0")
        except AvdSessionError as exc:
            logger.warning("clearing proxy on %s failed: %s", device_id, exc)
            return False
        logger.info("proxy cleared on %s", device_id)
        return True

    async def check_root_status(self, adb_port: int) -> bool:
        """True only if ``su -c id`` reports uid 0. Failures mean not rooted."""
        device_id = device_id_for(adb_port)
        try:
            output = await self._adb.su(device_id, "id", timeout=10)
        except AvdSessionError as exc:
            logger.warning("root check failed on %s, treating as not rooted: %s", device_id, exc)
            return False
        is_rooted = "uid=0" in output
        logger.info("root status on %s: rooted=%s (%s)", device_id, is_rooted, output.strip())
        return is_rooted

    async def install_magisk_module(self, adb_port: int, module_path: str | Path) -> None:
        """Push a Magisk module zip and install it with ``magisk --install-module``.

        Raises:
            InternalError: If the push or install fails.
        """
        device_id = device_id_for(adb_port)
        module_name = Path(module_path).name or "module.zip"
        remote_path = f"{_MODULE_DOWNLOAD_DIR}/{module_name}"

        logger.info("installing Magisk module %s on %s", module_path, device_id)
        try:
            await self._adb.push(device_id, str(module_path), remote_path, timeout=30)
            output = await self._adb.su(device_id, f"magisk --install-module {remote_path}", timeout=60)
        except (AdbCommandError, AdbNotFoundError) as exc:
            raise InternalError(
                f"Failed to install Magisk module: {exc.message}",
                context={"device_id": device_id, "module_path": str(module_path)},
            ) from exc
        logger.info("Magisk module %s installed on %s: %s", module_name, device_id, output.strip())

    async def install_mitm_certificate(self, adb_port: int, cert_path: str | Path | None = None) -> str:
        """Install a mitmproxy CA into the user-added trust store as ``<hash>.0``.

        Needs a rooted device; a trust-user-certs Magisk module mounts the
        directory into the system store.

        Returns:
            On-device path of the installed certificate.

        Raises:
            InternalError: If the certificate is missing or any step fails.
        """
        device_id = device_id_for(adb_port)
        cert = Path(cert_path) if cert_path else DEFAULT_MITM_CERT
        if not cert.is_file():
            raise InternalError(
                f"mitmproxy certificate not found at {cert}. Run mitmproxy once to generate it.",
                context={"cert_path": str(cert)},
            )

        cert_hash = await self._subject_hash(cert)
        cert_name = f"{cert_hash}.0"
        remote_tmp = f"{_DEVICE_TMP_DIR}/{cert_name}"
        installed = f"{USER_CACERTS_DIR}/{cert_name}"

        logger.info("installing mitm CA %s as %s on %s", cert, cert_name, device_id)
        try:
            with tempfile.TemporaryDirectory(prefix="avdsession-certs-") as tmp_dir:
                staged = Path(tmp_dir) / cert_name
                shutil.copyfile(cert, staged)
                await self._adb.push(device_id, str(staged), remote_tmp, timeout=30)
            await self._adb.su(device_id, f"mkdir -p {USER_CACERTS_DIR}")
            await self._adb.su(device_id, f"mv {remote_tmp} {installed}")
            await self._adb.su(device_id, f"chmod 644 {installed}")
        except (AdbCommandError, AdbNotFoundError, OSError) as exc:
            raise InternalError(
                f"Failed to install mitmproxy certificate: {exc}", context={"device_id": device_id}
            ) from exc

        logger.info("mitm CA installed on %s at %s", device_id, installed)
        return installed

    async def _subject_hash(self, cert: Path) -> str:
        openssl = self._settings.openssl_path
        try:
            result = await run_command(
                [openssl, "x509", "-inform", "PEM", "-subject_hash_old", "-in", str(cert)],
                timeout=10,
            )
        except FileNotFoundError as exc:
            raise InternalError(f"openssl not found at: {openssl}", context={"path": openssl}) from exc
        except CommandTimeout as exc:
            raise InternalError(str(exc)) from exc
        lines = result.stdout.splitlines()
        if not result.ok or not lines:
            raise InternalError(
                f"openssl could not hash {cert} ({result.describe()})", context={"cert_path": str(cert)}
            )
        return lines[0].strip()

    async def reboot(self, adb_port: int, timeout: float | None = None) -> None:
        """Reboot the device and wait for it to finish booting again.

        Raises:
            BootTimeoutError: If the device does not come back in time.
            InternalError: If the reboot command fails.
        """
        device_id = device_id_for(adb_port)
        logger.info("rebooting %s", device_id)
        try:
            await self._adb.reboot(device_id)
            await asyncio.sleep(self._reboot_settle_seconds)
            await self.wait_for_boot(adb_port, timeout)
        except BootTimeoutError:
            raise
        except AvdSessionError as exc:
            raise InternalError(f"Failed to reboot emulator: {exc.message}", context={"device_id": device_id}) from exc
        logger.info("%s rebooted", device_id)
