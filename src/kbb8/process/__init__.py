"""Process supervision package.

Spawns, probes and terminates the external binaries kbb8 is made of, and
allocates the local addresses they listen on.
"""

from .addr import ServiceEndpoint, allocate, suggest
from .state import HealthCheck, ProcessState
from .wait import DEFAULT_POLL_INTERVAL, poll_immediate

__all__ = [
    "ServiceEndpoint",
    "allocate",
    "suggest",
    "HealthCheck",
    "ProcessState",
    "DEFAULT_POLL_INTERVAL",
    "poll_immediate",
]
