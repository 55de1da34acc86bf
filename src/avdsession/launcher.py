"""Wire the runtime from settings and run one session until signalled."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass

from avdsession.adapters.adb import AdbClient
from avdsession.adapters.avd_setup import AvdSetupAdapter
from avdsession.adapters.emulator import EmulatorAdapter
from avdsession.config import Settings, get_settings
from avdsession.core.port_finder import PortFinder
from avdsession.core.process_supervisor import ProcessSupervisor
from avdsession.core.session_manager import SessionManager
from avdsession.core.workspace import WorkspaceManager
from avdsession.shared.log import configure_logging
from avdsession.tools.device import DeviceTools
from avdsession.tools.lifecycle import SessionTools

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Runtime:
    """Everything a transport needs to expose the tools."""

    manager: SessionManager
    sessions: SessionTools
    devices: DeviceTools
    supervisor: ProcessSupervisor


def build_runtime(settings: Settings) -> Runtime:
    supervisor = ProcessSupervisor()
    adb = AdbClient(adb_bin=settings.adb_bin, timeout=settings.command_timeout_seconds)
    emulator = EmulatorAdapter(settings, supervisor=supervisor, port_finder=PortFinder(), adb=adb)
    manager = SessionManager(
        settings,
        avd_setup=AvdSetupAdapter(settings, emulator=emulator),
        emulator=emulator,
        workspace=WorkspaceManager(settings.workspaces_dir),
    )
    return Runtime(
        manager=manager,
        sessions=SessionTools(manager),
        devices=DeviceTools(manager, adb=adb, emulator=emulator),
        supervisor=supervisor,
    )


async def run_from_settings(settings: Settings, *, stop_event: asyncio.Event | None = None) -> int:
    """Start one session, print its payload, hold it until stopped."""
    runtime = build_runtime(settings)
    stop_event = stop_event or asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - non-unix loops
            pass

    try:
        payload = await runtime.sessions.start(headless=settings.headless)
        print(json.dumps(payload, indent=2), flush=True)
        if not payload["ok"]:
            return 1
        logger.info("session %s running; send SIGINT/SIGTERM to stop", payload["session_id"])
        await stop_event.wait()
        return 0
    finally:
        await runtime.manager.stop_all()
        await runtime.supervisor.kill_all()


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    sys.exit(asyncio.run(run_from_settings(settings)))


if __name__ == "__main__":
    main()
