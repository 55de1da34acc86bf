"""Even/odd emulator port pair allocation."""

from __future__ import annotations

import asyncio
import logging
import socket

from avdsession.shared.exceptions import PortExhaustedError

logger = logging.getLogger(__name__)


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """Bind check: True when nothing is listening on ``host:port``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortFinder:
    """Finds free console ports (even) whose adb companion (odd) is free too.

    ``reserve_even`` hands out pairs under a lock and remembers them until
    ``release`` so two concurrently starting emulators never share a pair,
    even before either has bound its ports.
    """

    def __init__(self, *, host: str = "127.0.0.1") -> None:
        self._host = host
        self._reserved: set[int] = set()
        self._lock = asyncio.Lock()

    def _pair_free(self, port: int) -> bool:
        if port in self._reserved:
            return False
        return is_port_free(port, self._host) and is_port_free(port + 1, self._host)

    async def find_available_even(self, start: int, end: int) -> int:
        """Return the first free even port in ``[start, end]``.

        Raises:
            PortExhaustedError: If every candidate is taken.
        """
        first = start if start % 2 == 0 else start + 1
        for port in range(first, end + 1, 2):
            if self._pair_free(port):
                return port
        raise PortExhaustedError(
            f"no available emulator ports in range {start}-{end}",
            context={"start": start, "end": end},
        )

    async def reserve_even(self, start: int, end: int) -> int:
        async with self._lock:
            port = await self.find_available_even(start, end)
            self._reserved.add(port)
        logger.debug("reserved port pair %d/%d", port, port + 1)
        return port

    def release(self, port: int) -> None:
        self._reserved.discard(port)

    @property
    def reserved(self) -> frozenset[int]:
        return frozenset(self._reserved)
