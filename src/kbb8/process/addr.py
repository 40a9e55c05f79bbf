"""Free local listen address allocation.

Asks the OS for an ephemeral port by binding to port 0, then remembers the
port for a while so that concurrently starting services never receive the
same suggestion twice.
"""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass

from ..errors import ResourceAllocationError

DEFAULT_HOST = "localhost"

# Ports handed out recently are not suggested again within this window
RESERVATION_SECONDS = 60.0
MAX_ATTEMPTS = 10

_lock = threading.Lock()
_reserved: dict[int, float] = {}


@dataclass(frozen=True)
class ServiceEndpoint:
    """A listen address allocated to one process."""

    scheme: str
    host: str
    port: int

    @property
    def host_port(self) -> str:
        """host:port, with IPv6 literals bracketed."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host_port}"


def _is_reserved(port: int, now: float) -> bool:
    for reserved_port, expires in list(_reserved.items()):
        if expires <= now:
            del _reserved[reserved_port]
    return port in _reserved


def suggest(host: str = "") -> tuple[int, str]:
    """Suggest a free port on the given host.

    Args:
        host: Host name or IP to bind (default: localhost)

    Returns:
        Tuple of (port, resolved host IP).

    Raises:
        ResourceAllocationError: If no unreserved free port can be found
    """
    host = host or DEFAULT_HOST
    last_error: str | None = None

    for _ in range(MAX_ATTEMPTS):
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
                sock.bind((host, 0))
                resolved_host, port = sock.getsockname()[:2]
        except OSError as e:
            last_error = str(e)
            continue

        with _lock:
            now = time.monotonic()
            if _is_reserved(port, now):
                last_error = f"port {port} already suggested"
                continue
            _reserved[port] = now + RESERVATION_SECONDS
        return port, resolved_host

    raise ResourceAllocationError(
        f"unable to find a free port on {host} after {MAX_ATTEMPTS} attempts: {last_error}"
    )


def allocate(scheme: str, host: str = "") -> ServiceEndpoint:
    """Allocate a ServiceEndpoint with a free port.

    Args:
        scheme: URL scheme (http, https)
        host: Host name or IP to bind

    Returns:
        ServiceEndpoint for the allocated address.
    """
    port, resolved_host = suggest(host)
    return ServiceEndpoint(scheme=scheme, host=resolved_host, port=port)
