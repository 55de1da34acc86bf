"""Session orchestration: start protocol, rollback, stop and lookup."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from avdsession.config import Settings
from avdsession.core.interfaces import AvdProvisioner, EmulatorController, StateObserver, Workspaces
from avdsession.core.registry import SessionRegistry
from avdsession.shared.enums import SessionState
from avdsession.shared.exceptions import (
    AvdSessionError,
    InternalError,
    InvalidArgumentError,
    SessionNotFoundError,
)
from avdsession.shared.log import SessionLogHandler, session_log_handler
from avdsession.shared.models import (
    AvdSetupResult,
    Session,
    SessionStartResult,
    StartOptions,
    generate_session_id,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

EMULATOR_LOG = "emulator.log"

StateEvent = tuple[str, SessionState]


class SessionManager:
    """Drive ``SETUP_AVD → CREATE_WORKSPACE → START_EMULATOR → WAIT_BOOT → READY``.

    A start either reaches READY with every resource live, or rolls back:
    the emulator is killed, ``meta.json`` is marked ERROR (the workspace is
    kept for inspection) and the registry entry is dropped. AVD setup is
    never rolled back; the rooted AVD is reused by later sessions.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        avd_setup: AvdProvisioner,
        emulator: EmulatorController,
        workspace: Workspaces,
        registry: SessionRegistry | None = None,
        log_handler: SessionLogHandler | None = None,
    ) -> None:
        self._settings = settings
        self._avd_setup = avd_setup
        self._emulator = emulator
        self._workspace = workspace
        self._registry = registry if registry is not None else SessionRegistry()
        self._log_handler = log_handler if log_handler is not None else session_log_handler()
        self._observers: list[StateObserver] = []
        self._queues: list[asyncio.Queue[StateEvent]] = []
        self._starting = 0
        self._setup_lock = asyncio.Lock()
        self._holders: dict[str, str] = {}
        self._stop_requests: dict[str, asyncio.Event] = {}

    # ── observers ──────────────────────────────────────────────

    def subscribe(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: StateObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def subscribe_queue(self, maxsize: int = 0) -> asyncio.Queue[StateEvent]:
        """Return a queue receiving ``(session_id, state)`` for every transition."""
        queue: asyncio.Queue[StateEvent] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def _notify(self, session_id: str, state: SessionState) -> None:
        logger.info("session %s → %s", session_id, state.value, extra={"session_id": session_id})
        for observer in list(self._observers):
            try:
                observer.on_state_change(session_id, state)
            except Exception as exc:
                logger.warning("state observer %r failed: %s", observer, exc)
        for queue in self._queues:
            try:
                queue.put_nowait((session_id, state))
            except asyncio.QueueFull:
                logger.warning("state queue full, dropped %s for %s", state.value, session_id)

    # ── lifecycle ──────────────────────────────────────────────

    async def start_session(self, options: StartOptions | None = None) -> SessionStartResult:
        """Create a session and return once the emulator has booted.

        Raises:
            InvalidArgumentError: If the session ceiling is reached.
            SessionNotFoundError: If the session is stopped before it is ready.
            AvdSessionError: Typed failure of any step; the session is rolled back.
            InternalError: Any unexpected failure, wrapped.
        """
        options = options or StartOptions()
        session_id = generate_session_id()
        boot_timeout = options.boot_timeout or self._settings.boot_timeout_seconds

        active = len(self._registry) + self._starting
        if active >= self._settings.max_sessions:
            raise InvalidArgumentError(
                f"session limit reached ({self._settings.max_sessions})",
                context={"max_sessions": self._settings.max_sessions, "session_id": session_id},
            )
        self._starting += 1

        registered = False
        launched_pid: int | None = None
        log = _session_log(session_id)
        log.info("starting session %s (headless=%s, port=%s)", session_id, options.headless, options.emulator_port)

        try:
            self._notify(session_id, SessionState.SETUP_AVD)
            avd_setup = await self._claim_avd(session_id)
            avd_name = avd_setup.avd_name

            self._notify(session_id, SessionState.CREATE_WORKSPACE)
            paths = await self._workspace.create(session_id)
            await self._registry.insert(
                Session(
                    session_id=session_id,
                    avd_name=avd_name,
                    workspace_path=paths.path,
                    state=SessionState.CREATE_WORKSPACE,
                )
            )
            registered = True
            self._stop_requests[session_id] = asyncio.Event()
            self._log_handler.register(session_id, paths.logs_dir)

            await self._advance(session_id, state=SessionState.START_EMULATOR)
            started = await self._emulator.start(
                avd_name,
                log_file=Path(paths.logs_dir) / EMULATOR_LOG,
                port=options.emulator_port,
                headless=options.headless,
                read_only=self._avd_held(avd_name, exclude=session_id),
            )
            launched_pid = started.pid
            await self._advance(
                session_id,
                emulator_port=started.console_port,
                adb_port=started.adb_port,
                emulator_pid=started.pid,
            )

            await self._advance(session_id, state=SessionState.WAIT_BOOT)
            await self._wait_for_boot(session_id, started.adb_port, boot_timeout)

            session = await self._advance(session_id, state=SessionState.READY)
            await self._workspace.update_meta(session_id, session.meta())
        except asyncio.CancelledError:
            await self._rollback(session_id, launched_pid, registered=registered, error="cancelled")
            raise
        except Exception as exc:
            log.error("session %s start failed, rolling back: %s", session_id, exc)
            await self._rollback(session_id, launched_pid, registered=registered, error=str(exc))
            if isinstance(exc, AvdSessionError):
                raise
            raise InternalError(f"Session start failed: {exc}", context={"session_id": session_id}) from exc
        finally:
            self._starting -= 1
            self._stop_requests.pop(session_id, None)
            if session_id not in self._registry:
                self._holders.pop(session_id, None)

        log.info("session %s ready (console=%d, adb=%d)", session_id, session.emulator_port, session.adb_port)
        return SessionStartResult(
            session_id=session_id,
            workspace_path=session.workspace_path,
            emulator_port=session.emulator_port,
            adb_port=session.adb_port,
            device_id=session.device_id,
            state=SessionState.READY,
            avd_setup=avd_setup,
        )

    async def _advance(self, session_id: str, **changes: Any) -> Session:
        state = changes.get("state")
        if state is not None:
            self._notify(session_id, state)
        session = await self._registry.update(session_id, **changes)
        if session is None:
            raise SessionNotFoundError(
                f"Session '{session_id}' was stopped while starting", context={"session_id": session_id}
            )
        return session

    async def _claim_avd(self, session_id: str) -> AvdSetupResult:
        """Verify the managed AVD and record this session as holding it.

        Setups run one at a time, so a writable setup emulator never boots an
        AVD that a session emulator holds. A booted holder lends its device
        to the root check; a holder still booting makes the check read-only.
        """
        name = self._settings.avd_name
        async with self._setup_lock:
            live_adb_port = self._live_adb_port(name)
            avd_setup = await self._avd_setup.ensure_avd(
                name,
                live_adb_port=live_adb_port,
                in_use=live_adb_port is None and self._avd_held(name),
            )
            self._holders[session_id] = avd_setup.avd_name
        return avd_setup

    def _avd_held(self, avd_name: str, *, exclude: str | None = None) -> bool:
        return any(held == avd_name and sid != exclude for sid, held in self._holders.items())

    def _live_adb_port(self, avd_name: str) -> int | None:
        for session in self._registry.values():
            if session.avd_name == avd_name and session.state == SessionState.READY:
                return session.adb_port
        return None

    async def _wait_for_boot(self, session_id: str, adb_port: int, timeout: float) -> None:
        """Wait for boot, giving up as soon as the session is stopped.

        Raises:
            SessionNotFoundError: If ``stop_session`` ran during the wait.
        """
        boot = asyncio.ensure_future(self._emulator.wait_for_boot(adb_port, timeout))
        stopped = asyncio.ensure_future(self._stop_requests[session_id].wait())
        try:
            await asyncio.wait({boot, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            boot.cancel()
            stopped.cancel()
            await asyncio.gather(boot, stopped, return_exceptions=True)

        if stopped.done() and not stopped.cancelled():
            raise SessionNotFoundError(
                f"Session '{session_id}' was stopped while booting", context={"session_id": session_id}
            )
        boot.result()

    async def _rollback(self, session_id: str, pid: int | None, *, registered: bool, error: str) -> None:
        """Undo a failed start. Every step is attempted; none raises."""
        self._notify(session_id, SessionState.ERROR)
        if pid is not None:
            try:
                await self._emulator.stop(pid)
            except Exception as exc:
                logger.error("failed to stop emulator %d during rollback: %s", pid, exc)

        if registered and session_id in self._registry:
            try:
                await self._workspace.update_meta(
                    session_id,
                    {"state": SessionState.ERROR.value, "error": error, "failed_at": utc_now_iso()},
                )
            except Exception as exc:
                logger.warning("failed to mark workspace of %s as ERROR: %s", session_id, exc)

        self._log_handler.unregister(session_id)
        await self._registry.remove(session_id)
        logger.info("rolled back session %s", session_id)

    async def stop_session(self, session_id: str) -> None:
        """Stop the emulator, delete the workspace and forget the session.

        Raises:
            SessionNotFoundError: If no live session has this id.
        """
        session = self._registry.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found", context={"session_id": session_id})

        log = _session_log(session_id)
        log.info("stopping session %s", session_id)

        if session.emulator_pid is not None:
            try:
                await self._emulator.stop(session.emulator_pid)
            except Exception as exc:
                log.warning("emulator %d did not stop cleanly: %s", session.emulator_pid, exc)

        self._log_handler.unregister(session_id)
        try:
            await self._workspace.cleanup(session_id)
        except OSError as exc:
            logger.error("failed to remove workspace of %s: %s", session_id, exc)

        await self._registry.remove(session_id)
        stop_request = self._stop_requests.get(session_id)
        if stop_request is not None:
            stop_request.set()
        else:
            self._holders.pop(session_id, None)
        logger.info("session %s stopped", session_id)

    async def stop_all(self) -> None:
        for session in self._registry.values():
            try:
                await self.stop_session(session.session_id)
            except SessionNotFoundError:
                continue

    def get_session(self, session_id: str) -> Session | None:
        return self._registry.get(session_id)

    def list_sessions(self) -> list[Session]:
        return self._registry.values()


def _session_log(session_id: str) -> logging.LoggerAdapter[logging.Logger]:
    """Tag records with ``session_id`` so they also reach the session log file."""
    return logging.LoggerAdapter(logger, {"session_id": session_id})
