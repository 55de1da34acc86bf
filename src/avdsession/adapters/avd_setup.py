"""Managed AVD provisioning: create, root, verify and self-heal."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from avdsession.adapters.command import CommandResult, CommandTimeout, run_command
from avdsession.adapters.emulator import EmulatorAdapter
from avdsession.config import Settings
from avdsession.shared.exceptions import (
    AvdSetupError,
    BootTimeoutError,
    RootVerificationError,
    StartFailedError,
)
from avdsession.shared.models import AvdSetupResult

logger = logging.getLogger(__name__)


class AvdSetupAdapter:
    """Guarantees the managed AVD exists and has working root.

    Calls for the same AVD name are coalesced: while one setup sequence is in
    flight, other callers await that same sequence and see its outcome, so
    the destructive delete-and-recreate path can never run twice at once.
    """

    def __init__(self, settings: Settings, *, emulator: EmulatorAdapter) -> None:
        self._settings = settings
        self._emulator = emulator
        self._inflight: dict[str, asyncio.Task[AvdSetupResult]] = {}

    async def ensure_avd(
        self, name: str | None = None, *, live_adb_port: int | None = None, in_use: bool = False
    ) -> AvdSetupResult:
        """Make sure ``name`` (default: the managed AVD) exists and is rooted.

        Args:
            name: AVD name, defaults to ``settings.avd_name``.
            live_adb_port: adb port of a booted emulator already running this
                AVD. The root check then runs on that device instead of
                booting a setup emulator, and a failure is not healed.
            in_use: Another emulator holds the AVD but has not booted yet.
                The root check then boots a ``-read-only`` setup emulator,
                and a failure is not healed.

        Raises:
            AvdSetupError: If creating, rooting or recreating the AVD fails.
            RootVerificationError: If root is still missing after setup or the
                single self-heal cycle.
        """
        name = name or self._settings.avd_name
        task = self._inflight.get(name)
        if task is None:
            task = asyncio.create_task(self._ensure(name, live_adb_port, in_use=in_use))
            self._inflight[name] = task
            task.add_done_callback(lambda t, n=name: self._clear_inflight(n, t))
        else:
            logger.info("joining in-flight setup of AVD %s", name)
        return await asyncio.shield(task)

    def _clear_inflight(self, name: str, task: asyncio.Task[AvdSetupResult]) -> None:
        if self._inflight.get(name) is task:
            del self._inflight[name]

    def is_in_flight(self, name: str | None = None) -> bool:
        return (name or self._settings.avd_name) in self._inflight

    async def _ensure(self, name: str, live_adb_port: int | None, *, in_use: bool) -> AvdSetupResult:
        system_image = self._settings.system_image
        was_created = was_rooted = False

        if name not in await self.list_avds():
            logger.info("AVD %s missing, creating from %s", name, system_image)
            await self._create(name)
            await self._root(name)
            was_created = was_rooted = True
        elif live_adb_port is not None:
            if not await self._emulator.check_root_status(live_adb_port):
                raise RootVerificationError(
                    f"AVD '{name}' is in use and lost root; stop its sessions to let it be rebuilt",
                    context={"avd_name": name, "adb_port": live_adb_port},
                )
            return AvdSetupResult(avd_name=name, system_image=system_image)
        elif in_use:
            if not await self._verify_root(name, first_boot=False, read_only=True):
                raise RootVerificationError(
                    f"AVD '{name}' is in use and failed the root check; stop its sessions to let it be rebuilt",
                    context={"avd_name": name, "phase": "shared"},
                )
            return AvdSetupResult(avd_name=name, system_image=system_image)

        if await self._verify_root(name, first_boot=was_created):
            return AvdSetupResult(
                avd_name=name, was_created=was_created, was_rooted=was_rooted, system_image=system_image
            )

        if was_created:
            raise RootVerificationError(
                f"AVD '{name}' failed the root check right after rooting", context={"avd_name": name}
            )

        logger.warning("AVD %s lost root, deleting and recreating it", name)
        try:
            await self.delete_avd(name)
            await self._create(name)
            await self._root(name)
        except AvdSetupError as exc:
            raise AvdSetupError(
                f"Self-heal of AVD '{name}' failed while recreating: {exc.message}",
                context={**exc.context, "avd_name": name, "phase": "recreate"},
            ) from exc

        if not await self._verify_root(name, first_boot=True):
            raise RootVerificationError(
                f"AVD '{name}' is still not rooted after self-heal",
                context={"avd_name": name, "phase": "recheck"},
            )
        logger.info("AVD %s healed", name)
        return AvdSetupResult(
            avd_name=name, was_created=True, was_rooted=True, healed=True, system_image=system_image
        )

    async def list_avds(self) -> list[str]:
        result = await self._tool(
            [self._settings.avdmanager_bin, "list", "avd", "-c"], timeout=self._settings.command_timeout_seconds
        )
        if not result.ok:
            raise AvdSetupError(f"avdmanager list failed ({result.describe()})")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def delete_avd(self, name: str) -> None:
        result = await self._tool(
            [self._settings.avdmanager_bin, "delete", "avd", "-n", name],
            timeout=self._settings.command_timeout_seconds,
        )
        if not result.ok:
            raise AvdSetupError(f"failed to delete AVD '{name}' ({result.describe()})", context={"avd_name": name})
        logger.info("deleted AVD %s", name)

    async def _create(self, name: str) -> None:
        settings = self._settings
        install = await self._tool(
            [settings.sdkmanager_bin, "--install", settings.system_image],
            timeout=settings.sdk_install_timeout_seconds,
            stdin_data=b"y\n" * 8,
        )
        if not install.ok:
            raise AvdSetupError(
                f"failed to install system image {settings.system_image} ({install.describe()})",
                context={"system_image": settings.system_image},
            )

        create = await self._tool(
            [
                settings.avdmanager_bin,
                "create",
                "avd",
                "-n",
                name,
                "-k",
                settings.system_image,
                "-d",
                settings.device_profile,
                "--force",
            ],
            timeout=settings.command_timeout_seconds * 4,
            stdin_data=b"no\n",
        )
        if not create.ok:
            raise AvdSetupError(f"failed to create AVD '{name}' ({create.describe()})", context={"avd_name": name})
        logger.info("created AVD %s (%s)", name, settings.system_image)

    async def _root(self, name: str) -> None:
        """Patch the system image ramdisk with Magisk through the rooting script.

        The script talks to the one running emulator and shuts it down when
        done; the setup emulator is stopped regardless.
        """
        script = Path(self._settings.rootavd_path).expanduser()
        if not script.is_file():
            raise AvdSetupError(f"rooting script not found at {script}", context={"path": str(script)})

        async with self._booted(name, purpose="root"):
            result = await self._tool(
                ["bash", str(script), self._settings.ramdisk_relpath],
                timeout=self._settings.rooting_timeout_seconds,
                cwd=str(script.parent),
                env={"ANDROID_HOME": str(self._settings.sdk_root)},
            )
        if not result.ok:
            raise AvdSetupError(f"rooting script failed for '{name}' ({result.describe()})", context={"avd_name": name})
        logger.info("rooted AVD %s", name)

    async def _verify_root(self, name: str, *, first_boot: bool, read_only: bool = False) -> bool:
        """Boot the AVD and run the root check.

        On a first boot after rooting the configured Magisk modules are
        installed and the device rebooted before checking.
        """
        async with self._booted(name, purpose="verify", read_only=read_only) as adb_port:
            if first_boot and self._settings.magisk_module_paths:
                for module in self._settings.magisk_module_paths:
                    await self._emulator.install_magisk_module(adb_port, module)
                await self._emulator.reboot(adb_port, self._settings.boot_timeout_seconds)
            return await self._emulator.check_root_status(adb_port)

    @asynccontextmanager
    async def _booted(self, name: str, *, purpose: str, read_only: bool = False) -> AsyncIterator[int]:
        log_file = Path(self._settings.logs_dir).expanduser() / f"avd-setup-{name}.log"
        try:
            started = await self._emulator.start(name, log_file=log_file, headless=True, read_only=read_only)
        except StartFailedError as exc:
            raise AvdSetupError(
                f"setup emulator for '{name}' failed to start: {exc.message}",
                context={**exc.context, "avd_name": name, "purpose": purpose},
            ) from exc
        try:
            try:
                await self._emulator.wait_for_boot(started.adb_port, self._settings.boot_timeout_seconds)
            except BootTimeoutError as exc:
                raise AvdSetupError(
                    f"setup emulator for '{name}' did not boot: {exc.message}",
                    context={**exc.context, "avd_name": name, "purpose": purpose},
                ) from exc
            yield started.adb_port
        finally:
            await self._emulator.stop(started.pid)

    async def _tool(
        self,
        args: list[str],
        *,
        timeout: float,
        stdin_data: bytes | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
    ) -> CommandResult:
        try:
            return await run_command(args, timeout=timeout, stdin_data=stdin_data, cwd=cwd, env=env)
        except FileNotFoundError as exc:
            raise AvdSetupError(f"{args[0]} not found", context={"path": args[0]}) from exc
        except CommandTimeout as exc:
            raise AvdSetupError(str(exc), context={"command": " ".join(args)}) from exc
