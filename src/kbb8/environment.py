"""The whole bootstrap environment: control plane first, then providers.

Teardown runs in reverse: providers are stopped before the credentials
entry, the API server and etcd go away.
"""

from __future__ import annotations

import asyncio
import signal
from collections.abc import Callable

from .config import Kbb8Config
from .controlplane import ControlPlane
from .errors import ProcessLifecycleError, ReadinessTimeoutError, TeardownError
from .kube import KubeClient
from .provider import OrchestrationResult, Provider, ProviderOrchestrator
from .provider.provider import ClientFactory
from .shared.logging import get_logger

logger = get_logger(__name__)


class Environment:
    """Coordinates the control plane and the provider orchestrator."""

    def __init__(
        self,
        config: Kbb8Config,
        client_factory: ClientFactory = KubeClient.from_kubeconfig,
    ):
        """Initialize environment.

        Args:
            config: Loaded kbb8 configuration.
            client_factory: Builds the API client providers reconcile with.
        """
        self.config = config
        self.control_plane = ControlPlane(
            config.kubernetes_package,
            cluster_name=config.cluster_name,
            work_dir=config.work_dir,
            kubeconfig_path=config.kubeconfig,
            key_prefix=config.key_prefix,
            poll_interval=config.poll_interval,
            ready_timeout=config.ready_timeout,
        )
        self.providers = [
            Provider(
                spec,
                work_dir=config.work_dir,
                client_factory=client_factory,
                poll_interval=config.poll_interval,
                ready_timeout=config.ready_timeout,
            )
            for spec in config.providers
        ]
        self.orchestrator = ProviderOrchestrator(self.providers)
        self.result: OrchestrationResult | None = None

    @property
    def context(self) -> str | None:
        """Kubeconfig context of the running control plane."""
        return self.control_plane.kubeconfig_context

    async def start(self) -> OrchestrationResult:
        """Start the control plane, then every provider concurrently.

        Control-plane failures raise immediately; provider failures are
        reported in the returned result. Call ``stop()`` in both cases.

        Returns:
            OrchestrationResult with one entry per provider.
        """
        await self.control_plane.start()
        if self.control_plane.kubeconfig_file is None:
            raise ProcessLifecycleError("control plane did not publish credentials")

        self.result = await self.orchestrator.start(self.control_plane.kubeconfig_file)
        if self.result.ready:
            logger.info("environment_ready", context=self.context)
        else:
            logger.warning(
                "environment_partially_ready",
                ready=self.result.ready_names,
                failed=[f.name for f in self.result.failures],
            )
        return self.result

    async def stop(self) -> None:
        """Stop providers, then the control plane.

        Raises:
            TeardownError: With every failed step, after all were attempted.
        """
        errors: list[tuple[str, BaseException]] = []
        try:
            await self.orchestrator.stop()
        except TeardownError as e:
            errors.extend(e.errors)
        try:
            await self.control_plane.stop()
        except TeardownError as e:
            errors.extend(e.errors)

        if errors:
            raise TeardownError(errors)
        logger.info("environment_stopped")


async def run(
    environment: Environment,
    startup_timeout: float | None = None,
    on_ready: Callable[[Environment], None] | None = None,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Start the environment, block until shutdown is requested, then tear down.

    SIGINT and SIGTERM request shutdown; during startup they cancel it.
    Teardown always runs, whatever happened during startup.

    Raises:
        ReadinessTimeoutError: If startup took longer than startup_timeout.
        ProviderStartupError: If any provider failed to become ready.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()
    startup = asyncio.create_task(environment.start(), name="environment-start")

    def signal_handler() -> None:
        logger.info("shutdown_signal_received")
        shutdown_event.set()
        startup.cancel()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        try:
            result = await asyncio.wait_for(startup, timeout=startup_timeout)
        except asyncio.TimeoutError as e:
            raise ReadinessTimeoutError(
                f"environment not ready after {startup_timeout}s"
            ) from e
        result.raise_for_failures()

        if on_ready is not None:
            on_ready(environment)
        await shutdown_event.wait()
    except asyncio.CancelledError:
        # Startup interrupted by a shutdown signal
        if not shutdown_event.is_set():
            raise
    finally:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
        await environment.stop()
