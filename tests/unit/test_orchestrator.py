"""Unit tests for ProviderOrchestrator."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from kbb8.errors import ProcessLifecycleError, ProviderStartupError, TeardownError
from kbb8.provider import (
    OrchestrationResult,
    Provider,
    ProviderOrchestrator,
    ProviderResult,
    ProviderSpec,
)
from tests.mocks.fake_binaries import CRASHING_MANAGER, provider_package


def mock_provider(name, start=None, stop=None):
    provider = MagicMock(spec=Provider)
    provider.name = name
    provider.start = start or AsyncMock()
    provider.stop = stop or AsyncMock()
    return provider


class TestOrchestrationResult:
    """Tests for OrchestrationResult."""

    def test_all_ready(self):
        """Test ready only when every provider is ready."""
        result = OrchestrationResult([ProviderResult("CAPI", True), ProviderResult("KCP", True)])
        assert result.ready
        assert result.ready_names == ["CAPI", "KCP"]
        result.raise_for_failures()

    def test_partial(self):
        """Test partial success is distinguishable from total success."""
        error = RuntimeError("boom")
        result = OrchestrationResult([ProviderResult("CAPI", True), ProviderResult("KCP", False, error)])
        assert not result.ready
        assert result.ready_names == ["CAPI"]
        assert [f.name for f in result.failures] == ["KCP"]
        with pytest.raises(ProviderStartupError, match="KCP: boom"):
            result.raise_for_failures()

    def test_empty(self):
        """Test no providers means trivially ready."""
        assert OrchestrationResult().ready


class TestProviderOrchestrator:
    """Tests for ProviderOrchestrator with mock providers."""

    @pytest.mark.asyncio
    async def test_failure_does_not_cancel_siblings(self):
        """Test a failing provider leaves the others running to completion."""
        finished = []

        async def slow_start(kubeconfig):
            await asyncio.sleep(0.1)
            finished.append("CAPD")

        providers = [
            mock_provider("CAPI"),
            mock_provider("CABPK", start=AsyncMock(side_effect=ProcessLifecycleError("died"))),
            mock_provider("CAPD", start=slow_start),
        ]
        result = await ProviderOrchestrator(providers).start("/tmp/kubeconfig")

        assert [r.name for r in result.results] == ["CAPI", "CABPK", "CAPD"]
        assert result.ready_names == ["CAPI", "CAPD"]
        assert isinstance(result.failures[0].error, ProcessLifecycleError)
        assert finished == ["CAPD"]
        providers[0].start.assert_awaited_once_with(Path("/tmp/kubeconfig"))

    @pytest.mark.asyncio
    async def test_runs_concurrently(self):
        """Test providers start at the same time instead of one after another."""
        running = 0
        peak = 0

        async def start(kubeconfig):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.05)
            running -= 1

        providers = [mock_provider(f"P{i}", start=start) for i in range(4)]
        result = await ProviderOrchestrator(providers).start("/tmp/kubeconfig")

        assert result.ready
        assert peak == 4

    @pytest.mark.asyncio
    async def test_cancellation_cancels_every_unit(self):
        """Test cancelling the orchestration cancels all provider tasks."""
        cancelled = []

        async def hang(kubeconfig, name):
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.append(name)
                raise

        providers = [
            mock_provider(name, start=lambda k, n=name: hang(k, n)) for name in ("CAPI", "KCP")
        ]
        task = asyncio.create_task(ProviderOrchestrator(providers).start("/tmp/kubeconfig"))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert sorted(cancelled) == ["CAPI", "KCP"]

    @pytest.mark.asyncio
    async def test_stop_attempts_all(self):
        """Test stop reaches every provider even if one fails."""
        providers = [
            mock_provider("CAPI"),
            mock_provider("KCP", stop=AsyncMock(side_effect=ProcessLifecycleError("stuck"))),
            mock_provider("CAPD"),
        ]
        with pytest.raises(TeardownError, match="provider KCP: stuck"):
            await ProviderOrchestrator(providers).stop()

        for provider in providers:
            provider.stop.assert_awaited_once()


class TestOrchestratorWithProcesses:
    """Three real (fake-binary) providers, the second one crashing."""

    @pytest.mark.asyncio
    async def test_one_of_three_fails(self, tmp_path, work_dir, fake_apiserver):
        """Test the failing provider is reported and the other two become ready."""
        packages = [
            provider_package(tmp_path / "bootstrap-capi"),
            provider_package(tmp_path / "bootstrap-cabpk", manager=CRASHING_MANAGER),
            provider_package(tmp_path / "bootstrap-kcp"),
        ]
        providers = [
            Provider(
                ProviderSpec(package),
                work_dir=work_dir,
                client_factory=lambda _: fake_apiserver.client(),
                poll_interval=0.05,
                ready_timeout=30.0,
            )
            for package in packages
        ]
        orchestrator = ProviderOrchestrator(providers)

        try:
            result = await orchestrator.start(tmp_path / "kubeconfig")
        finally:
            await orchestrator.stop()

        assert not result.ready
        assert result.ready_names == ["CAPI", "KCP"]
        assert [f.name for f in result.failures] == ["CABPK"]
        assert "exited with code 3" in str(result.failures[0].error)

        # Each provider got its own ports
        ports = {p.webhook_endpoint.port for p in providers} | {p.health_endpoint.port for p in providers}
        assert len(ports) == 6

        assert sorted(fake_apiserver.names("mutatingwebhookconfigurations")) == [
            "cabpk-mutating",
            "capi-mutating",
            "kcp-mutating",
        ]
        assert not any(p.ready for p in providers)
