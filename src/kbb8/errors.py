"""Error taxonomy for kbb8.

Every failure raised by the bootstrap engine is a Kbb8Error subclass, so the
command line can decide in one place whether a failure ends the run.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .provider.orchestrator import ProviderResult


class Kbb8Error(Exception):
    """Base error class for kbb8 errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ConfigurationError(Kbb8Error):
    """Invalid configuration: unsupported object apiVersion, missing executable, bad config value."""


class ResourceAllocationError(Kbb8Error):
    """No free port, or a working directory/file could not be created."""


class ReadinessTimeoutError(Kbb8Error):
    """A health or object-readiness poll gave up before success."""


class ReconciliationError(Kbb8Error):
    """An object could not be applied, or vanished while waiting for it."""


class ProcessLifecycleError(Kbb8Error):
    """A supervised process could not be spawned, died early or could not be stopped."""


class ProviderStartupError(Kbb8Error):
    """One or more providers failed to become ready."""

    def __init__(self, failures: list[ProviderResult]):
        self.failures = failures
        details = "; ".join(f"{f.name}: {f.error}" for f in failures)
        super().__init__(f"{len(failures)} provider(s) failed to start: {details}")


class TeardownError(Kbb8Error):
    """One or more teardown steps failed; every step was still attempted."""

    def __init__(self, errors: list[tuple[str, BaseException]]):
        self.errors = errors
        details = "; ".join(f"{step}: {err}" for step, err in errors)
        super().__init__(f"teardown failed: {details}")
