"""Error taxonomy shared by the run loop, the audit mode and the hook."""

from __future__ import annotations

from pathlib import Path


class AutoloopError(Exception):
    """Base class for errors reported to the operator."""


class ConfigurationError(AutoloopError):
    """Missing or invalid input detected before any assistant run."""


class InvalidResponse(AutoloopError):
    """The assistant's reply did not have the expected structure."""


class ProcessFailure(AutoloopError):
    """The assistant process exited with a non-zero status."""

    def __init__(
        self,
        returncode: int,
        *,
        run: int | None = None,
        log_path: Path | None = None,
        remaining_runs: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.returncode = returncode
        self.run = run
        self.log_path = log_path
        self.remaining_runs = remaining_runs
        self.detail = detail
        super().__init__(self._build_message())

    @property
    def resume_hint(self) -> str | None:
        if self.remaining_runs is None or self.remaining_runs <= 0:
            return None
        return f"autoloop --max-runs {self.remaining_runs}"

    def _build_message(self) -> str:
        subject = f"Run {self.run}" if self.run is not None else "Assistant process"
        message = f"{subject} exited with code {self.returncode}"
        if self.log_path is not None:
            message = f"{message}. Check log: {self.log_path}"
        if self.detail:
            message = f"{message}. {self.detail}"
        return message
