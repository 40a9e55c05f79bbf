"""Concurrent startup of independent providers.

Each provider runs as its own asyncio task and hands back a ProviderResult
through its future; the coordinating task aggregates the results once every
unit has finished. A failing provider never cancels its siblings.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

from ..errors import ProviderStartupError, TeardownError
from ..shared.logging import get_logger
from .provider import Provider

logger = get_logger(__name__)


@dataclass
class ProviderResult:
    """Outcome of one provider's startup."""

    name: str
    ready: bool
    error: BaseException | None = None
    elapsed_seconds: float = 0.0


@dataclass
class OrchestrationResult:
    """Aggregated outcome of a provider orchestration run."""

    results: list[ProviderResult] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        """True only when every provider is ready."""
        return all(r.ready for r in self.results)

    @property
    def ready_names(self) -> list[str]:
        return [r.name for r in self.results if r.ready]

    @property
    def failures(self) -> list[ProviderResult]:
        return [r for r in self.results if not r.ready]

    def raise_for_failures(self) -> None:
        """All-or-nothing view of the result.

        Raises:
            ProviderStartupError: If any provider failed.
        """
        failures = self.failures
        if failures:
            raise ProviderStartupError(failures)


class ProviderOrchestrator:
    """Start and stop a set of providers."""

    def __init__(self, providers: list[Provider]):
        """Initialize orchestrator.

        Args:
            providers: Providers to run; each must have a distinct name.
        """
        self.providers = providers

    async def _run_unit(self, provider: Provider, kubeconfig: Path) -> ProviderResult:
        loop = asyncio.get_running_loop()
        started_at = loop.time()
        logger.info("provider_starting", provider=provider.name)
        try:
            await provider.start(kubeconfig)
        except Exception as e:
            logger.error("provider_failed", provider=provider.name, error=str(e))
            return ProviderResult(
                name=provider.name,
                ready=False,
                error=e,
                elapsed_seconds=loop.time() - started_at,
            )
        return ProviderResult(
            name=provider.name, ready=True, elapsed_seconds=loop.time() - started_at
        )

    async def start(self, kubeconfig: str | Path) -> OrchestrationResult:
        """Start every provider concurrently and wait for all of them to finish.

        Args:
            kubeconfig: Kubeconfig the providers (and reconciliation) use.

        Returns:
            OrchestrationResult with one entry per provider, in input order.
        """
        kubeconfig = Path(kubeconfig)
        tasks = [
            asyncio.create_task(self._run_unit(p, kubeconfig), name=f"provider-{p.name}")
            for p in self.providers
        ]
        try:
            results = await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        result = OrchestrationResult(results=list(results))
        logger.info(
            "providers_finished",
            ready=result.ready_names,
            failed=[f.name for f in result.failures],
        )
        return result

    async def stop(self) -> None:
        """Stop every provider; all of them are attempted even if some fail.

        Raises:
            TeardownError: If stopping one or more providers failed.
        """
        outcomes = await asyncio.gather(
            *(p.stop() for p in self.providers), return_exceptions=True
        )
        errors = [
            (f"provider {p.name}", outcome)
            for p, outcome in zip(self.providers, outcomes)
            if isinstance(outcome, BaseException)
        ]
        if errors:
            raise TeardownError(errors)
