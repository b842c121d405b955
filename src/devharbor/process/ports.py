"""Loopback port probing and allocation."""

from __future__ import annotations

import asyncio
import logging as py_logging
import socket
from collections.abc import Callable

from devharbor.errors import NoPortAvailableError

logger = py_logging.getLogger(__name__)

MAX_PORT = 65535
LOOPBACK_HOST = "127.0.0.1"

PortProbe = Callable[[int], bool]


def probe_port(port: int, *, host: str = LOOPBACK_HOST) -> bool:
    """Return True when a bind on ``host:port`` succeeds; the socket is released immediately."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind((host, port))
    except OSError:
        return False
    finally:
        sock.close()
    return True


class PortAllocator:
    def __init__(self, probe: PortProbe | None = None, *, max_port: int = MAX_PORT) -> None:
        self._probe = probe or probe_port
        self.max_port = max_port

    async def allocate(self, preferred: int) -> int:
        if preferred < 1 or preferred > self.max_port:
            raise NoPortAvailableError(
                f"Invalid preferred port: {preferred}",
                hint=f"Use a port between 1 and {self.max_port}.",
            )
        for candidate in range(preferred, self.max_port + 1):
            if self._probe(candidate):
                if candidate != preferred:
                    logger.debug("Port %s busy; allocated %s", preferred, candidate)
                return candidate
            await asyncio.sleep(0)
        raise NoPortAvailableError(
            f"No free port at or above {preferred}",
            hint="Stop another local server or choose a lower port.",
        )
