"""Named startup stages with per-stage rollback."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ..errors import TeardownError
from ..shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Stage:
    """One step of a linear startup sequence and its rollback."""

    name: str
    start: Callable[[], Awaitable[None]]
    stop: Callable[[], Awaitable[None]]


class StageSequence:
    """Run stages in order; roll back every entered stage in reverse.

    A stage counts as entered before its start action runs, so a stage that
    fails halfway (e.g. a process that spawned but never became healthy) is
    still rolled back.
    """

    def __init__(self, stages: list[Stage]):
        self.stages = stages
        self._entered: list[Stage] = []
        self._completed: list[str] = []

    @property
    def entered(self) -> list[str]:
        return [s.name for s in self._entered]

    @property
    def completed(self) -> list[str]:
        return list(self._completed)

    async def start(
        self, on_stage_complete: Callable[[str], None] | None = None
    ) -> None:
        """Run every stage in order; the first failure propagates."""
        for stage in self.stages:
            if stage.name in self._completed:
                continue
            self._entered.append(stage)
            logger.debug("stage_entered", stage=stage.name)
            await stage.start()
            self._completed.append(stage.name)
            logger.info("stage_completed", stage=stage.name)
            if on_stage_complete:
                on_stage_complete(stage.name)

    async def stop(
        self, on_stage_stopped: Callable[[str], None] | None = None
    ) -> None:
        """Roll back entered stages in reverse order.

        Every rollback is attempted even if an earlier one fails.

        Raises:
            TeardownError: If one or more rollbacks failed.
        """
        errors: list[tuple[str, BaseException]] = []
        while self._entered:
            stage = self._entered.pop()
            if stage.name in self._completed:
                self._completed.remove(stage.name)
            try:
                await stage.stop()
                logger.info("stage_stopped", stage=stage.name)
            except Exception as e:
                logger.error("stage_stop_failed", stage=stage.name, error=str(e))
                errors.append((stage.name, e))
            if on_stage_stopped:
                on_stage_stopped(stage.name)

        if errors:
            raise TeardownError(errors)
