"""Unit tests for ProcessState and HealthCheck."""

import ssl

import pytest

from kbb8.errors import ConfigurationError, ProcessLifecycleError
from kbb8.process import HealthCheck, ProcessState, allocate, poll_immediate
from tests.mocks.fake_binaries import CRASHING_MANAGER, FAKE_MANAGER, write_executable

SLEEPER = """
import signal, sys, time
signal.signal(signal.SIGTERM, signal.SIG_IGN)
sys.stdout.write("ignoring SIGTERM\\n")
sys.stdout.flush()
time.sleep(60)
"""


class TestHealthCheck:
    """Tests for HealthCheck."""

    def test_endpoint_joins_path(self):
        """Test URL and path are joined with a single slash."""
        assert HealthCheck("http://127.0.0.1:2379/", "/health").endpoint == "http://127.0.0.1:2379/health"
        assert HealthCheck("http://127.0.0.1:2379", "readyz").endpoint == "http://127.0.0.1:2379/readyz"

    def test_verify_without_ca(self):
        """Test default verification when no CA bundle is given."""
        assert HealthCheck("http://127.0.0.1:1").verify() is True

    def test_verify_with_ca(self):
        """Test an SSL context is built from the CA bundle."""
        from kbb8.certs import TinyCA

        check = HealthCheck("https://127.0.0.1:1", ca_data=TinyCA().cert_bytes())
        assert isinstance(check.verify(), ssl.SSLContext)


class TestProcessStateInit:
    """Tests for ProcessState.init validation."""

    def test_missing_path(self):
        """Test an empty path is rejected."""
        state = ProcessState("", health_check=HealthCheck("http://127.0.0.1:1"))
        with pytest.raises(ConfigurationError, match="path must be set"):
            state.init()

    def test_missing_health_url(self, tmp_path):
        """Test a missing health check URL is rejected."""
        binary = write_executable(tmp_path / "etcd", "")
        with pytest.raises(ConfigurationError, match="health check URL"):
            ProcessState(binary).init()
        with pytest.raises(ConfigurationError, match="health check URL"):
            ProcessState(binary, health_check=HealthCheck("")).init()

    def test_missing_executable(self, tmp_path):
        """Test a path that does not exist is rejected."""
        state = ProcessState(tmp_path / "nope", health_check=HealthCheck("http://127.0.0.1:1"))
        with pytest.raises(ConfigurationError, match="does not exist"):
            state.init()

    def test_valid(self, tmp_path):
        """Test a valid configuration passes without side effects."""
        binary = write_executable(tmp_path / "etcd", "")
        state = ProcessState(binary, health_check=HealthCheck("http://127.0.0.1:1"))
        state.init()
        assert not state.started
        assert state.pid is None


class TestProcessStateLifecycle:
    """Tests for start / check_health / stop."""

    @pytest.mark.asyncio
    async def test_stop_never_started(self):
        """Test stop is a no-op on a never-started handle."""
        state = ProcessState("/bin/true", health_check=HealthCheck("http://127.0.0.1:1"))
        await state.stop()
        await state.stop()
        assert not state.ready

    @pytest.mark.asyncio
    async def test_check_health_never_started(self):
        """Test a never-started process is not healthy."""
        state = ProcessState("/bin/true", health_check=HealthCheck("http://127.0.0.1:1"))
        assert await state.check_health() is False

    @pytest.mark.asyncio
    async def test_start_probe_stop(self, tmp_path):
        """Test a healthy process becomes ready and is terminated by stop."""
        health = allocate("http")
        binary = write_executable(tmp_path / "manager", FAKE_MANAGER)
        args = [
            "--kubeconfig=/dev/null",
            f"--webhook-cert-dir={tmp_path}",
            "--webhook-port=1",
            f"--health-addr={health.host_port}",
        ]
        state = ProcessState(binary, args, HealthCheck(health.url, "/healthz"))
        state.init()

        with open(tmp_path / "manager.log", "ab") as log:
            await state.start(log, log)
            try:
                await poll_immediate(state.check_health, interval=0.05, timeout=30.0)
                assert state.ready
                assert state.pid is not None
            finally:
                await state.stop()

        assert not state.ready
        assert state.returncode is not None
        assert b"serving on" in (tmp_path / "manager.log").read_bytes()

    @pytest.mark.asyncio
    async def test_double_start(self, tmp_path):
        """Test a handle cannot be started twice."""
        health = allocate("http")
        binary = write_executable(tmp_path / "sleeper", SLEEPER)
        state = ProcessState(binary, health_check=HealthCheck(health.url), stop_timeout=0.5)
        await state.start(None, None)
        try:
            with pytest.raises(ProcessLifecycleError, match="already started"):
                await state.start(None, None)
        finally:
            await state.stop()

    @pytest.mark.asyncio
    async def test_early_exit_is_reported(self, tmp_path):
        """Test a process that dies before readiness fails the wait with its exit code."""
        health = allocate("http")
        binary = write_executable(tmp_path / "manager", CRASHING_MANAGER)
        state = ProcessState(binary, health_check=HealthCheck(health.url))
        state.init()

        with open(tmp_path / "manager.log", "ab") as log:
            await state.start(log, log)
            with pytest.raises(ProcessLifecycleError, match="exited with code 3"):
                await poll_immediate(state.check_health, interval=0.05, timeout=30.0)

        assert b"fatal error" in (tmp_path / "manager.log").read_bytes()
        await state.stop()

    @pytest.mark.asyncio
    async def test_stop_kills_after_timeout(self, tmp_path):
        """Test a process ignoring SIGTERM is killed after stop_timeout."""
        health = allocate("http")
        binary = write_executable(tmp_path / "sleeper", SLEEPER)
        state = ProcessState(binary, health_check=HealthCheck(health.url), stop_timeout=0.5)

        with open(tmp_path / "sleeper.log", "ab") as log:
            await state.start(log, log)
            # Wait until the SIGTERM handler is installed
            async def announced():
                return b"ignoring" in (tmp_path / "sleeper.log").read_bytes()

            await poll_immediate(announced, interval=0.05, timeout=30.0)
            await state.stop()

        assert state.returncode == -9

    @pytest.mark.asyncio
    async def test_spawn_failure(self, tmp_path):
        """Test an executable that cannot be run raises ProcessLifecycleError."""
        binary = tmp_path / "not-executable"
        binary.write_text("plain text")
        state = ProcessState(binary, health_check=HealthCheck("http://127.0.0.1:1"))
        with pytest.raises(ProcessLifecycleError, match="unable to start"):
            await state.start(None, None)
