"""The control plane: etcd, the API server and the kubeconfig entry pointing at it."""

from __future__ import annotations

import asyncio
from enum import Enum
from pathlib import Path

from .. import kubeconfig
from ..errors import ProcessLifecycleError
from ..process import DEFAULT_POLL_INTERVAL
from ..shared.logging import get_logger
from ..shared.paths import DEFAULT_WORK_DIR
from .apiserver import APIServer
from .etcd import Etcd
from .stages import Stage, StageSequence

logger = get_logger(__name__)

ETCD_BINARY = "etcd"
API_SERVER_BINARY = "kube-apiserver"
DEFAULT_CLUSTER_NAME = "bootstrap"

STORE_STAGE = "store"
API_SERVER_STAGE = "api-server"
CREDENTIALS_STAGE = "credentials"


class ControlPlaneState(Enum):
    """Lifecycle state of the control plane."""

    NOT_STARTED = "not_started"
    STORE_READY = "store_ready"
    API_SERVER_READY = "api_server_ready"
    READY = "ready"  # Credentials published
    CREDENTIALS_REMOVED = "credentials_removed"
    API_SERVER_STOPPED = "api_server_stopped"
    STOPPED = "stopped"


_STARTED_STATES = {
    STORE_STAGE: ControlPlaneState.STORE_READY,
    API_SERVER_STAGE: ControlPlaneState.API_SERVER_READY,
    CREDENTIALS_STAGE: ControlPlaneState.READY,
}
_STOPPED_STATES = {
    CREDENTIALS_STAGE: ControlPlaneState.CREDENTIALS_REMOVED,
    API_SERVER_STAGE: ControlPlaneState.API_SERVER_STOPPED,
    STORE_STAGE: ControlPlaneState.STOPPED,
}


class ControlPlane:
    """Start etcd, then the API server, then publish credentials; stop in reverse."""

    def __init__(
        self,
        package_path: str | Path,
        cluster_name: str = DEFAULT_CLUSTER_NAME,
        work_dir: Path = DEFAULT_WORK_DIR,
        kubeconfig_path: str | Path | None = None,
        key_prefix: str = kubeconfig.DEFAULT_KEY_PREFIX,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        ready_timeout: float | None = None,
    ):
        """Initialize control plane.

        Args:
            package_path: Directory holding the etcd and kube-apiserver binaries.
            cluster_name: Name the kubeconfig keys are derived from.
            work_dir: Base work directory.
            kubeconfig_path: Kubeconfig override (default: $KUBECONFIG / ~/.kube/config).
            key_prefix: Prefix of the kubeconfig keys.
            poll_interval: Seconds between readiness checks.
            ready_timeout: Timeout of each readiness wait (None = until cancelled).
        """
        self.package_path = Path(package_path)
        self.cluster_name = cluster_name
        self.work_dir = work_dir
        self.kubeconfig_path = kubeconfig_path
        self.key_prefix = key_prefix
        self.poll_interval = poll_interval
        self.ready_timeout = ready_timeout

        self.etcd: Etcd | None = None
        self.api_server: APIServer | None = None
        self.kubeconfig_file: Path | None = None
        self.kubeconfig_context: str | None = None
        self.state = ControlPlaneState.NOT_STARTED

        self._stages = StageSequence(
            [
                Stage(STORE_STAGE, self._start_store, self._stop_store),
                Stage(API_SERVER_STAGE, self._start_api_server, self._stop_api_server),
                Stage(CREDENTIALS_STAGE, self._publish_credentials, self._remove_credentials),
            ]
        )

    @property
    def stages(self) -> StageSequence:
        return self._stages

    @property
    def url(self) -> str | None:
        return self.api_server.url if self.api_server else None

    async def _start_store(self) -> None:
        self.etcd = Etcd(
            self.package_path / ETCD_BINARY,
            work_dir=self.work_dir,
            poll_interval=self.poll_interval,
            ready_timeout=self.ready_timeout,
        )
        await self.etcd.start()

    async def _stop_store(self) -> None:
        if self.etcd is not None:
            await self.etcd.stop()

    async def _start_api_server(self) -> None:
        if self.etcd is None or self.etcd.url is None:
            raise ProcessLifecycleError("etcd must be running before the API server")
        self.api_server = APIServer(
            self.package_path / API_SERVER_BINARY,
            etcd_url=self.etcd.url,
            work_dir=self.work_dir,
            poll_interval=self.poll_interval,
            ready_timeout=self.ready_timeout,
        )
        await self.api_server.start()

    async def _stop_api_server(self) -> None:
        if self.api_server is not None:
            await self.api_server.stop()

    async def _publish_credentials(self) -> None:
        if self.api_server is None or self.api_server.ca is None or self.url is None:
            raise ProcessLifecycleError("the API server must be running before publishing credentials")
        # The kubeconfig lock blocks, and so does issuing the admin key
        self.kubeconfig_file, self.kubeconfig_context = await asyncio.to_thread(
            kubeconfig.create_or_merge,
            self.api_server.ca,
            self.url,
            self.cluster_name,
            explicit_path=self.kubeconfig_path,
            prefix=self.key_prefix,
        )

    async def _remove_credentials(self) -> None:
        await asyncio.to_thread(
            kubeconfig.remove, self.cluster_name, self.kubeconfig_path, prefix=self.key_prefix
        )

    def _on_started(self, stage: str) -> None:
        self.state = _STARTED_STATES[stage]

    def _on_stopped(self, stage: str) -> None:
        self.state = _STOPPED_STATES[stage]

    async def start(self) -> None:
        """Run the startup stages in order.

        Fails fast without rolling back; call ``stop()`` on error.
        """
        logger.info("control_plane_starting", package=str(self.package_path))
        await self._stages.start(on_stage_complete=self._on_started)
        logger.info(
            "control_plane_ready",
            url=self.url,
            kubeconfig=str(self.kubeconfig_file),
            context=self.kubeconfig_context,
        )

    async def stop(self) -> None:
        """Roll back every stage that was entered, in reverse order.

        Raises:
            TeardownError: If one or more steps failed (all are attempted).
        """
        await self._stages.stop(on_stage_stopped=self._on_stopped)
        self.state = ControlPlaneState.STOPPED
        logger.info("control_plane_stopped")
