"""kube-apiserver: the TLS front-end of the control plane."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from ..certs import TinyCA
from ..errors import ResourceAllocationError
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

API_SERVER_NAME = "api-server"
HEALTH_PATH = "/readyz"
SERVICE_CLUSTER_IP_RANGE = "10.0.0.0/24"
AUTHORIZATION_MODE = "RBAC"
CLUSTER_DOMAIN = "cluster.local"


@dataclass
class APIServerPKI:
    """Certificate files of the API server."""

    ca: TinyCA
    ca_file: Path
    cert_file: Path
    key_file: Path
    sa_cert_file: Path
    sa_key_file: Path


def _write(path: Path, data: bytes, mode: int) -> None:
    try:
        path.write_bytes(data)
        os.chmod(path, mode)
    except OSError as e:
        raise ResourceAllocationError(f"unable to write {path}: {e}") from e


def setup_pki(directory: Path, host: str) -> APIServerPKI:
    """Generate the serving CA/cert and the service-account signer.

    Certificates are always regenerated; nothing is reused across runs.
    """
    ca_dir = ensure_dir(directory / "ca")

    ca = TinyCA()
    cert_data, key_data = ca.new_serving_cert(host).as_bytes()

    ca_file = ca_dir / "ca.crt"
    cert_file = ca_dir / "tls.crt"
    key_file = ca_dir / "tls.key"
    _write(ca_file, ca.cert_bytes(), 0o640)
    _write(cert_file, cert_data, 0o640)
    _write(key_file, key_data, 0o600)

    sa_cert, sa_key = TinyCA().ca.as_bytes()
    sa_cert_file = ca_dir / "sa-signer.crt"
    sa_key_file = ca_dir / "sa-signer.key"
    _write(sa_cert_file, sa_cert, 0o640)
    _write(sa_key_file, sa_key, 0o600)

    return APIServerPKI(
        ca=ca,
        ca_file=ca_file,
        cert_file=cert_file,
        key_file=key_file,
        sa_cert_file=sa_cert_file,
        sa_key_file=sa_key_file,
    )


class APIServer:
    """kube-apiserver bound to a local secure port and backed by etcd."""

    def __init__(
        self,
        path: str | Path,
        etcd_url: str,
        work_dir: Path = DEFAULT_WORK_DIR,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ready_timeout: float | None = None,
    ):
        """Initialize API server.

        Args:
            path: Path to the kube-apiserver binary.
            etcd_url: Client URL of the etcd it stores objects in.
            work_dir: Base work directory.
            poll_interval: Seconds between readiness checks.
            ready_timeout: Readiness wait timeout (None = until cancelled).
        """
        self.path = Path(path)
        self.etcd_url = etcd_url
        self.work_dir = work_dir
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

        self.endpoint: ServiceEndpoint | None = None
        self.pki: APIServerPKI | None = None
        self.process: ProcessState | None = None
        self._log: IO[Any] | None = None

    @property
    def url(self) -> str | None:
        return self.endpoint.url if self.endpoint else None

    @property
    def ca(self) -> TinyCA | None:
        return self.pki.ca if self.pki else None

    def build_args(self) -> list[str]:
        """kube-apiserver arguments for the allocated endpoint and PKI."""
        return [
            f"--advertise-address={self.endpoint.host}",
            f"--secure-port={self.endpoint.port}",
            f"--client-ca-file={self.pki.ca_file}",
            f"--tls-cert-file={self.pki.cert_file}",
            f"--tls-private-key-file={self.pki.key_file}",
            f"--service-cluster-ip-range={SERVICE_CLUSTER_IP_RANGE}",
            f"--authorization-mode={AUTHORIZATION_MODE}",
            f"--service-account-key-file={self.pki.sa_cert_file}",
            f"--service-account-signing-key-file={self.pki.sa_key_file}",
            f"--service-account-issuer=https://kubernetes.default.svc.{CLUSTER_DOMAIN}",
            f"--etcd-servers={self.etcd_url}",
        ]

    async def _prepare(self) -> None:
        directory = service_dir(self.work_dir, KUBERNETES_SUBSYSTEM, API_SERVER_NAME)
        self._log = open_log(directory, API_SERVER_NAME)

        self.endpoint = allocate("https")
        # Key generation runs off the event loop
        self.pki = await asyncio.to_thread(setup_pki, directory, self.endpoint.host)

        self.process = ProcessState(
            path=self.path,
            args=self.build_args(),
            health_check=HealthCheck(
                url=self.endpoint.url, path=HEALTH_PATH, ca_data=self.pki.ca.cert_bytes()
            ),
        )
        self.process.init()

    async def start(self) -> None:
        """Spawn the API server and wait until /readyz succeeds."""
        await self._prepare()
        await self.process.start(self._log, self._log)
        await poll_immediate(
            self.process.check_health,
            interval=self.poll_interval,
            timeout=self.ready_timeout,
            description=f"API server ({self.path})",
        )
        logger.info("api_server_ready", url=self.url)

    async def stop(self) -> None:
        """Stop the API server and close its log."""
        try:
            if self.process is not None:
                await self.process.stop()
        finally:
            if self._log is not None:
                self._log.flush()
                self._log.close()
                self._log = None
