"""Data models used by the run loop."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal

from autoloop.assistant.stream import CompletionSignal

OutcomeStatus = Literal["completed", "exhausted", "stalled"]


@dataclass(slots=True, frozen=True)
class RunRecord:
    """Captured data for a single assistant invocation."""

    sequence: int
    started_at: datetime
    log_path: Path
    returncode: int
    signal: CompletionSignal | None = None
    duration_seconds: float = 0.0


@dataclass(slots=True, frozen=True)
class TerminationOutcome:
    """How a loop run ended and the records of every iteration it performed."""

    status: OutcomeStatus
    iterations: int
    max_runs: int
    records: tuple[RunRecord, ...] = ()

    @property
    def last_record(self) -> RunRecord | None:
        return self.records[-1] if self.records else None
