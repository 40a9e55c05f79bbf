"""etcd: the key-value store backing the API server."""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import IO, Any

from ..process import (
    DEFAULT_POLL_INTERVAL,
    HealthCheck,
    ProcessState,
    ServiceEndpoint,
    allocate,
    poll_immediate,
)
from ..shared.logging import get_logger
from ..shared.paths import DEFAULT_WORK_DIR, KUBERNETES_SUBSYSTEM, ensure_dir, open_log, service_dir

logger = get_logger(__name__)

ETCD_NAME = "etcd"
HEALTH_PATH = "/health"


class Etcd:
    """Single-member etcd listening on a local port, with an ephemeral data dir."""

    def __init__(
        self,
        path: str | Path,
        work_dir: Path = DEFAULT_WORK_DIR,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ready_timeout: float | None = None,
    ):
        """Initialize etcd.

        Args:
            path: Path to the etcd binary.
            work_dir: Base work directory.
            poll_interval: Seconds between health checks.
            ready_timeout: Health wait timeout (None = until cancelled).
        """
        self.path = Path(path)
        self.work_dir = work_dir
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

        self.endpoint: ServiceEndpoint | None = None
        self.data_dir: Path | None = None
        self.process: ProcessState | None = None
        self._log: IO[Any] | None = None

    @property
    def url(self) -> str | None:
        return self.endpoint.url if self.endpoint else None

    def _prepare(self) -> None:
        directory = service_dir(self.work_dir, KUBERNETES_SUBSYSTEM, ETCD_NAME)
        self._log = open_log(directory, ETCD_NAME)

        # Leftovers of a previous run are never reused
        data_dir = directory / "data"
        if data_dir.exists():
            shutil.rmtree(data_dir)
        self.data_dir = ensure_dir(data_dir)

        self.endpoint = allocate("http")
        peer = allocate("http", self.endpoint.host)

        # TODO: serve etcd over TLS once the API server gets an etcd client cert
        args = [
            f"--listen-client-urls={self.endpoint.url}",
            f"--advertise-client-urls={self.endpoint.url}",
            f"--listen-peer-urls={peer.url}",
            f"--data-dir={self.data_dir}",
        ]

        self.process = ProcessState(
            path=self.path,
            args=args,
            health_check=HealthCheck(url=self.endpoint.url, path=HEALTH_PATH),
        )
        self.process.init()

    async def start(self) -> None:
        """Spawn etcd and wait until it reports healthy."""
        self._prepare()
        await self.process.start(self._log, self._log)
        await poll_immediate(
            self.process.check_health,
            interval=self.poll_interval,
            timeout=self.ready_timeout,
            description=f"etcd ({self.path})",
        )
        logger.info("etcd_ready", url=self.url)

    async def stop(self) -> None:
        """Stop etcd, close its log and delete the data directory."""
        try:
            if self.process is not None:
                await self.process.stop()
        finally:
            if self._log is not None:
                self._log.flush()
                self._log.close()
                self._log = None
            if self.data_dir is not None and self.data_dir.exists():
                shutil.rmtree(self.data_dir)
