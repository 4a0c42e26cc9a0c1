"""Trace sinks: where the session reports stage start/finish. No effect on control flow."""

import logging
import time
from dataclasses import replace
from typing import Protocol

from spec_council.models import StageMetadata, StageTrace

logger = logging.getLogger(__name__)


class TraceSink(Protocol):
    def stage_started(self, round_number: int, stage: str) -> None:
        ...

    def stage_finished(
        self,
        round_number: int,
        stage: str,
        status: str,
        model: str | None,
        metadata: StageMetadata | None,
    ) -> None:
        ...


class NullTraceSink:
    def stage_started(self, round_number: int, stage: str) -> None:
        pass

    def stage_finished(self, round_number, stage, status, model, metadata) -> None:
        pass


class LoggingTraceSink:
    """Logs each stage transition at INFO."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def stage_started(self, round_number: int, stage: str) -> None:
        self._log.info("Round %d: %s started", round_number, stage)

    def stage_finished(self, round_number, stage, status, model, metadata) -> None:
        if metadata is None:
            self._log.info("Round %d: %s %s", round_number, stage, status)
            return
        self._log.info(
            "Round %d: %s %s in %.1fs ($%.4f, model %s)",
            round_number,
            stage,
            status,
            metadata.duration_sec,
            metadata.cost,
            model or "-",
        )


class RecordingTraceSink:
    """Keeps a PipelineTrace in memory: one StageTrace per stage run."""

    def __init__(self) -> None:
        self.trace: list[StageTrace] = []

    def stage_started(self, round_number: int, stage: str) -> None:
        self.trace.append(StageTrace(round_number=round_number, stage=stage, started_at=time.time()))

    def stage_finished(self, round_number, stage, status, model, metadata) -> None:
        for i in range(len(self.trace) - 1, -1, -1):
            entry = self.trace[i]
            if entry.round_number == round_number and entry.stage == stage and entry.ended_at is None:
                self.trace[i] = replace(entry, ended_at=time.time(), status=status, model=model)
                return
        logger.debug("stage_finished without stage_started: round %d %s", round_number, stage)


PipelineTrace = list[StageTrace]
