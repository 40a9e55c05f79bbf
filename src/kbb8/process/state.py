"""Supervision of one external executable.

ProcessState owns the lifecycle of a single supervised binary: it validates
its configuration, spawns it with stdout/stderr redirected to the caller's
sinks, probes its HTTP health endpoint on request and terminates it.

Waiting for readiness is the caller's job (see ``wait.poll_immediate``);
``check_health`` performs exactly one probe.
"""

from __future__ import annotations

import asyncio
import os
import ssl
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

import httpx

from ..errors import ConfigurationError, ProcessLifecycleError
from ..shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_STOP_TIMEOUT = 20.0
DEFAULT_PROBE_TIMEOUT = 1.0


@dataclass
class HealthCheck:
    """Where and how to probe a process for readiness."""

    url: str
    path: str = "/healthz"
    ca_data: bytes | None = None

    @property
    def endpoint(self) -> str:
        return self.url.rstrip("/") + "/" + self.path.lstrip("/")

    def verify(self) -> ssl.SSLContext | bool:
        """TLS verification setting for the probe."""
        if self.ca_data:
            return ssl.create_default_context(cadata=self.ca_data.decode())
        return True


class ProcessState:
    """Lifecycle of one supervised process."""

    def __init__(
        self,
        path: str | Path,
        args: list[str] | None = None,
        health_check: HealthCheck | None = None,
        stop_timeout: float = DEFAULT_STOP_TIMEOUT,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        """Initialize process state.

        Args:
            path: Path to the executable.
            args: Command-line arguments.
            health_check: Health endpoint used to decide readiness.
            stop_timeout: Seconds to wait after SIGTERM before SIGKILL.
            probe_timeout: Timeout of each health probe request.
        """
        self.path = str(path) if path else ""
        self.args = list(args or [])
        self.health_check = health_check
        self.stop_timeout = stop_timeout
        self.probe_timeout = probe_timeout

        self._process: asyncio.subprocess.Process | None = None
        self._ready = False

    @property
    def ready(self) -> bool:
        """Whether the last health probe succeeded."""
        return self._ready

    @property
    def started(self) -> bool:
        return self._process is not None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    def init(self) -> None:
        """Validate configuration. Has no side effects.

        Raises:
            ConfigurationError: If the path or health check URL is missing,
                or the executable does not exist.
        """
        if not self.path:
            raise ConfigurationError("process path must be set")
        if self.health_check is None or not self.health_check.url:
            raise ConfigurationError(f"health check URL must be set for {self.path}")
        if not os.path.isfile(self.path):
            raise ConfigurationError(f"executable {self.path} does not exist")

    async def start(self, stdout: IO[Any] | int | None, stderr: IO[Any] | int | None) -> None:
        """Spawn the process without waiting for readiness.

        Args:
            stdout: Sink for the process stdout (owned by the caller).
            stderr: Sink for the process stderr (owned by the caller).

        Raises:
            ProcessLifecycleError: If the process was already started or cannot be spawned.
        """
        if self._process is not None:
            raise ProcessLifecycleError(f"{self.path} was already started")

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.path,
                *self.args,
                stdin=subprocess.DEVNULL,
                stdout=stdout,
                stderr=stderr,
            )
        except OSError as e:
            raise ProcessLifecycleError(f"unable to start {self.path}: {e}") from e

        logger.debug("process_started", path=self.path, pid=self._process.pid)

    async def check_health(self) -> bool:
        """Probe the health endpoint once and record the outcome.

        Returns:
            True if the endpoint answered with a success status.

        Raises:
            ProcessLifecycleError: If the process has already exited.
        """
        if self._process is None or self.health_check is None:
            self._ready = False
            return False

        if self._process.returncode is not None:
            self._ready = False
            raise ProcessLifecycleError(
                f"{self.path} exited with code {self._process.returncode} before becoming ready"
            )

        try:
            async with httpx.AsyncClient(
                timeout=self.probe_timeout,
                verify=self.health_check.verify(),
                trust_env=False,
            ) as client:
                response = await client.get(self.health_check.endpoint)
            self._ready = response.is_success
        except httpx.HTTPError:
            self._ready = False

        return self._ready

    async def stop(self) -> None:
        """Terminate the process and wait for it to exit.

        Safe to call on a never-started handle and more than once.

        Raises:
            ProcessLifecycleError: If the process cannot be signalled.
        """
        process = self._process
        self._ready = False
        if process is None or process.returncode is not None:
            return

        try:
            process.terminate()
        except ProcessLookupError:
            return
        except OSError as e:
            raise ProcessLifecycleError(f"unable to stop {self.path}: {e}") from e

        try:
            await asyncio.wait_for(process.wait(), timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("process_kill", path=self.path, pid=process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

        logger.debug("process_stopped", path=self.path, returncode=process.returncode)
