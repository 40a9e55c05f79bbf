"""Unit tests for a single provider."""

import asyncio
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from kbb8.errors import ConfigurationError, ProcessLifecycleError
from kbb8.provider import Provider, ProviderSpec, provider_name
from kbb8.provider.provider import setup_pki
from tests.mocks.fake_binaries import CRASHING_MANAGER, provider_package


class TestProviderName:
    """Tests for provider name derivation."""

    def test_strips_prefix_and_uppercases(self):
        """Test bootstrap-capi becomes CAPI."""
        assert provider_name("./test/packages/bootstrap-capi") == "CAPI"

    def test_without_prefix(self):
        """Test a package without the prefix is just uppercased."""
        assert provider_name("/opt/providers/capd") == "CAPD"

    def test_spec_name(self):
        """Test ProviderSpec exposes the derived name."""
        spec = ProviderSpec(Path("packages/bootstrap-kcp"), ["--feature-gates=ClusterTopology=true"])
        assert spec.name == "KCP"


class TestProviderArgs:
    """Tests for manager arguments."""

    def test_args_require_setup(self, work_dir):
        """Test arguments cannot be built before ports and certs exist."""
        provider = Provider(ProviderSpec(Path("bootstrap-capi")), work_dir=work_dir)
        with pytest.raises(ProcessLifecycleError):
            provider.build_args(Path("/tmp/kubeconfig"))

    def test_paths(self, work_dir):
        """Test binary and manifest locations inside the package."""
        provider = Provider(ProviderSpec(Path("/pkgs/bootstrap-capi")), work_dir=work_dir)
        assert provider.binary_path == Path("/pkgs/bootstrap-capi/manager")
        assert provider.manifest_path == Path("/pkgs/bootstrap-capi/components.yaml")
        assert not provider.started
        assert not provider.ready


class TestProviderStart:
    """Tests for Provider.start against the fake API server."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, tmp_path, work_dir, fake_apiserver):
        """Test a provider reconciles its objects, spawns and becomes ready."""
        package = provider_package(tmp_path / "bootstrap-capi")
        spec = ProviderSpec(package, ["--feature-gates=MachinePool=true"])
        kubeconfig = tmp_path / "kubeconfig"
        provider = Provider(
            spec,
            work_dir=work_dir,
            client_factory=lambda _: fake_apiserver.client(),
            poll_interval=0.05,
            ready_timeout=30.0,
        )

        try:
            await provider.start(kubeconfig)
            assert provider.started
            assert provider.ready

            args = provider.build_args(kubeconfig)
            assert args[0] == "--feature-gates=MachinePool=true"
            assert f"--kubeconfig={kubeconfig}" in args
            assert f"--webhook-port={provider.webhook_endpoint.port}" in args
            assert f"--health-addr={provider.health_endpoint.host_port}" in args
            assert "--metrics-bind-addr=0" in args
            assert provider.webhook_endpoint.port != provider.health_endpoint.port
        finally:
            await provider.stop()

        provider_dir = work_dir / "provider" / "capi"
        assert (provider_dir / "capi.log").exists()
        assert (provider_dir / "certs" / "tls.crt").exists()
        assert (provider_dir / "certs" / "tls.key").stat().st_mode & 0o777 == 0o600

        webhook = fake_apiserver.get("validatingwebhookconfigurations", "capi-validating")
        url = webhook["webhooks"][0]["clientConfig"]["url"]
        assert url == f"{provider.webhook_endpoint.url}/validate-widget"
        assert not provider.ready

    @pytest.mark.asyncio
    async def test_invalid_manifest_does_not_spawn(self, tmp_path, work_dir, fake_apiserver):
        """Test the manager is never started when reconciliation fails."""
        package = provider_package(tmp_path / "bootstrap-capi")
        (package / "components.yaml").write_text(
            "apiVersion: apiextensions.k8s.io/v1beta1\n"
            "kind: CustomResourceDefinition\n"
            "metadata:\n  name: old.example.com\n"
        )
        provider = Provider(
            ProviderSpec(package),
            work_dir=work_dir,
            client_factory=lambda _: fake_apiserver.client(),
        )

        with pytest.raises(ConfigurationError):
            await provider.start(tmp_path / "kubeconfig")
        assert not provider.started
        await provider.stop()

    @pytest.mark.asyncio
    async def test_crashing_manager(self, tmp_path, work_dir, fake_apiserver):
        """Test a manager that exits early fails the start with its exit code."""
        package = provider_package(tmp_path / "bootstrap-cabpk", manager=CRASHING_MANAGER)
        provider = Provider(
            ProviderSpec(package),
            work_dir=work_dir,
            client_factory=lambda _: fake_apiserver.client(),
            poll_interval=0.05,
            ready_timeout=30.0,
        )

        with pytest.raises(ProcessLifecycleError, match="exited with code 3"):
            await provider.start(tmp_path / "kubeconfig")
        await provider.stop()

        log = (work_dir / "provider" / "cabpk" / "cabpk.log").read_bytes()
        assert b"fatal error" in log

    @pytest.mark.asyncio
    async def test_pki_setup_does_not_block_event_loop(self, tmp_path, work_dir):
        """Test concurrent providers issue certificates without stalling other tasks."""
        loop = asyncio.get_running_loop()
        gaps = []

        async def ticker():
            last = loop.time()
            while True:
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        def slow_setup_pki(directory, host):
            time.sleep(0.5)
            return setup_pki(directory, host)

        def no_api_server(_):
            raise RuntimeError("no API server")

        providers = [
            Provider(
                ProviderSpec(provider_package(tmp_path / f"bootstrap-p{i}")),
                work_dir=work_dir,
                client_factory=no_api_server,
            )
            for i in range(4)
        ]

        ticking = asyncio.create_task(ticker())
        try:
            with patch("kbb8.provider.provider.setup_pki", slow_setup_pki):
                outcomes = await asyncio.gather(
                    *(p.start(tmp_path / "kubeconfig") for p in providers),
                    return_exceptions=True,
                )
        finally:
            ticking.cancel()
            for p in providers:
                await p.stop()

        assert all(isinstance(o, RuntimeError) for o in outcomes)
        assert all(p.pki is not None and (p.pki.cert_dir / "tls.key").exists() for p in providers)
        assert gaps
        assert max(gaps) < 0.25
