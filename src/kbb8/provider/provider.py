"""A provider: one controller process with its own webhook identity.

Starting a provider is strictly sequential: allocate ports, issue a fresh
webhook CA and serving certificate, reconcile the provider's CRDs and
webhook configurations, spawn the ``manager`` binary and wait for its health
endpoint.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any

from ..certs import TinyCA
from ..errors import ProcessLifecycleError, ResourceAllocationError
from ..kube import KubeClient
from ..process import (
    DEFAULT_POLL_INTERVAL,
    HealthCheck,
    ProcessState,
    ServiceEndpoint,
    allocate,
    poll_immediate,
)
from ..shared.logging import get_logger
from ..shared.paths import DEFAULT_WORK_DIR, PROVIDER_SUBSYSTEM, ensure_dir, open_log, service_dir
from .manifest import WebhookTarget
from .reconciler import ManifestReconciler

logger = get_logger(__name__)

BINARY_NAME = "manager"
MANIFEST_NAME = "components.yaml"
PACKAGE_PREFIX = "bootstrap-"
HEALTH_PATH = "/healthz"

ClientFactory = Callable[[Path], KubeClient]


def provider_name(package_path: str | Path) -> str:
    """Derive a provider name from its package path.

    ``./packages/bootstrap-capi`` becomes ``CAPI``.
    """
    base = Path(package_path).name
    if base.startswith(PACKAGE_PREFIX):
        base = base[len(PACKAGE_PREFIX):]
    return base.upper()


@dataclass
class ProviderSpec:
    """What to run: a provider package and extra manager arguments."""

    package_path: Path
    args: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.package_path = Path(self.package_path)

    @property
    def name(self) -> str:
        return provider_name(self.package_path)


@dataclass
class ProviderPKI:
    """Webhook serving certificate files of a provider."""

    cert_dir: Path
    ca_data: bytes


def setup_pki(directory: Path, host: str) -> ProviderPKI:
    """Issue a fresh webhook CA and serving certificate, and write them to disk.

    Raises:
        ResourceAllocationError: If the certificate files cannot be written.
    """
    cert_dir = ensure_dir(directory / "certs")

    ca = TinyCA()
    cert_data, key_data = ca.new_serving_cert("localhost", host).as_bytes()

    try:
        (cert_dir / "tls.crt").write_bytes(cert_data)
        key_file = cert_dir / "tls.key"
        key_file.write_bytes(key_data)
        os.chmod(key_file, 0o600)
    except OSError as e:
        raise ResourceAllocationError(f"unable to write webhook serving certs to {cert_dir}: {e}") from e

    return ProviderPKI(cert_dir=cert_dir, ca_data=ca.cert_bytes())


class Provider:
    """Lifecycle of one provider."""

    def __init__(
        self,
        spec: ProviderSpec,
        work_dir: Path = DEFAULT_WORK_DIR,
        client_factory: ClientFactory = KubeClient.from_kubeconfig,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ready_timeout: float | None = None,
    ):
        """Initialize provider.

        Args:
            spec: Provider package and extra args.
            work_dir: Base work directory.
            client_factory: Builds an API client from the kubeconfig path.
            poll_interval: Seconds between readiness checks.
            ready_timeout: Timeout of each readiness wait (None = until cancelled).
        """
        self.spec = spec
        self.work_dir = work_dir
        self.client_factory = client_factory
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

        self.process: ProcessState | None = None
        self.webhook_endpoint: ServiceEndpoint | None = None
        self.health_endpoint: ServiceEndpoint | None = None
        self.pki: ProviderPKI | None = None
        self._log: IO[Any] | None = None

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def started(self) -> bool:
        """Whether the manager process was spawned."""
        return self.process is not None and self.process.started

    @property
    def ready(self) -> bool:
        return self.process is not None and self.process.ready

    @property
    def binary_path(self) -> Path:
        return self.spec.package_path / BINARY_NAME

    @property
    def manifest_path(self) -> Path:
        return self.spec.package_path / MANIFEST_NAME

    def build_args(self, kubeconfig: Path) -> list[str]:
        """Manager arguments: extra args followed by the kbb8 wiring flags."""
        if self.pki is None or self.webhook_endpoint is None or self.health_endpoint is None:
            raise ProcessLifecycleError(f"provider {self.name} has no ports or certificates yet")
        return [
            *self.spec.args,
            f"--kubeconfig={kubeconfig}",
            f"--webhook-cert-dir={self.pki.cert_dir}",
            f"--webhook-port={self.webhook_endpoint.port}",
            f"--health-addr={self.health_endpoint.host_port}",
            "--metrics-bind-addr=0",
        ]

    async def start(self, kubeconfig: str | Path) -> None:
        """Run the full startup sequence and wait until the provider is ready."""
        kubeconfig = Path(kubeconfig)
        directory = service_dir(self.work_dir, PROVIDER_SUBSYSTEM, self.name.lower())
        self._log = open_log(directory, self.name.lower())

        self.webhook_endpoint = allocate("https")
        self.health_endpoint = allocate("http", self.webhook_endpoint.host)
        logger.debug(
            "provider_ports",
            provider=self.name,
            webhook=self.webhook_endpoint.host_port,
            health=self.health_endpoint.host_port,
        )

        self.pki = await asyncio.to_thread(setup_pki, directory, self.webhook_endpoint.host)

        target = WebhookTarget(endpoint=self.webhook_endpoint, ca_data=self.pki.ca_data)
        async with self.client_factory(kubeconfig) as client:
            reconciler = ManifestReconciler(
                client, poll_interval=self.poll_interval, timeout=self.ready_timeout
            )
            objects = await reconciler.reconcile(self.manifest_path, target)
        logger.info("provider_objects_ready", provider=self.name, objects=len(objects))

        self.process = ProcessState(
            path=self.binary_path,
            args=self.build_args(kubeconfig),
            health_check=HealthCheck(url=self.health_endpoint.url, path=HEALTH_PATH),
        )
        self.process.init()
        await self.process.start(self._log, self._log)

        await poll_immediate(
            self.process.check_health,
            interval=self.poll_interval,
            timeout=self.ready_timeout,
            description=f"provider {self.name} ({self.binary_path})",
        )
        logger.info("provider_ready", provider=self.name)

    async def stop(self) -> None:
        """Stop the manager process and close the log file. Safe to call at any point."""
        try:
            if self.process is not None:
                await self.process.stop()
        finally:
            if self._log is not None:
                self._log.flush()
                self._log.close()
                self._log = None
