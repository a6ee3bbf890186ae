"""Bounded retry loop that re-runs the assistant until it reports DONE."""

from __future__ import annotations

import json
import logging
import subprocess
import time
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from autoloop.assistant.stream import EmitText, LogTailer, read_completion_signal
from autoloop.errors import ConfigurationError, ProcessFailure
from autoloop.loop.models import RunRecord, TerminationOutcome

LOGGER = logging.getLogger(__name__)

COMPLETION_KEYWORD = "DONE"
COMPLETION_INSTRUCTIONS = (
    "When you are completely finished, output DONE as the very last line.\n"
    "If there is still work to do, output CONTINUE as the very last line."
)
TERMINATE_TIMEOUT_SECONDS = 10.0


class AssistantProcess(Protocol):
    def wait(self, timeout: float | None = None) -> int: ...

    def poll(self) -> int | None: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...


class StreamingAssistant(Protocol):
    command: str

    def start_stream(self, prompt: str, log_path: Path) -> AssistantProcess: ...


TailerFactory = Callable[[Path, EmitText], LogTailer]


def augment_prompt(prompt: str) -> str:
    """Append the DONE/CONTINUE instructions unless the prompt already mentions DONE."""
    if COMPLETION_KEYWORD in prompt:
        return prompt
    return f"{prompt}\n\n{COMPLETION_INSTRUCTIONS}"


def load_prompt(inline_prompt: str | None, prompt_file: str | Path | None) -> str:
    """Resolve the task prompt; a prompt file takes precedence over inline text."""
    if prompt_file:
        path = Path(prompt_file).expanduser()
        try:
            prompt = path.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"Cannot read prompt file {path}: {exc.strerror or exc}"
            raise ConfigurationError(msg) from exc
        if not prompt.strip():
            msg = f"Prompt file {path} is empty."
            raise ConfigurationError(msg)
        return prompt
    if inline_prompt and inline_prompt.strip():
        return inline_prompt
    msg = "No prompt provided. Use --prompt or --prompt-file."
    raise ConfigurationError(msg)


class RunLoop:
    """Invokes the assistant up to ``max_runs`` times, stopping on DONE."""

    def __init__(
        self,
        *,
        client: StreamingAssistant,
        log_dir: str | Path,
        max_runs: int = 20,
        reader_grace_seconds: float = 1.0,
        stop_on_missing_signal: bool = False,
        emit: EmitText = print,
        tailer_factory: TailerFactory = LogTailer,
    ) -> None:
        self.client = client
        self.log_dir = Path(log_dir)
        self.max_runs = max_runs
        self.reader_grace_seconds = reader_grace_seconds
        self.stop_on_missing_signal = stop_on_missing_signal
        self.emit = emit
        self.tailer_factory = tailer_factory

    def run(self, prompt: str) -> TerminationOutcome:
        if not prompt.strip():
            msg = "Task prompt must not be empty."
            raise ConfigurationError(msg)
        if self.max_runs <= 0:
            msg = f"max_runs must be a positive integer, got {self.max_runs}."
            raise ConfigurationError(msg)

        task_prompt = augment_prompt(prompt)
        records: list[RunRecord] = []
        for run in range(1, self.max_runs + 1):
            record = self._run_once(task_prompt, run)
            records.append(record)
            self._append_summary(record)

            if record.returncode != 0:
                raise ProcessFailure(
                    record.returncode,
                    run=run,
                    log_path=record.log_path,
                    remaining_runs=self.max_runs - run,
                )

            if record.signal == "DONE":
                LOGGER.info("loop_completed", extra={"run": run, "max_runs": self.max_runs})
                return TerminationOutcome(
                    status="completed",
                    iterations=run,
                    max_runs=self.max_runs,
                    records=tuple(records),
                )

            if record.signal is None:
                LOGGER.warning(
                    "completion_signal_missing",
                    extra={"run": run, "log_path": str(record.log_path)},
                )
                if self.stop_on_missing_signal:
                    return TerminationOutcome(
                        status="stalled",
                        iterations=run,
                        max_runs=self.max_runs,
                        records=tuple(records),
                    )

        LOGGER.warning("loop_exhausted", extra={"max_runs": self.max_runs})
        return TerminationOutcome(
            status="exhausted",
            iterations=self.max_runs,
            max_runs=self.max_runs,
            records=tuple(records),
        )

    def _run_once(self, prompt: str, run: int) -> RunRecord:
        started_at = datetime.now()
        log_path = self._log_path(run, started_at)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._print_banner(run, log_path)

        started = time.monotonic()
        process = self.client.start_stream(prompt, log_path)
        tailer = self.tailer_factory(log_path, self.emit)
        tailer.start()
        try:
            returncode = process.wait()
        finally:
            if process.poll() is None:
                _terminate(process)
            if not tailer.stop(self.reader_grace_seconds):
                # Aborted; at most the in-flight emit is left.
                tailer.join()

        signal = read_completion_signal(log_path) if returncode == 0 else None
        return RunRecord(
            sequence=run,
            started_at=started_at,
            log_path=log_path,
            returncode=returncode,
            signal=signal,
            duration_seconds=time.monotonic() - started,
        )

    def _log_path(self, run: int, started_at: datetime) -> Path:
        return self.log_dir / f"run_{run}_{started_at:%Y%m%d_%H%M%S}.log"

    def _print_banner(self, run: int, log_path: Path) -> None:
        self.emit("=" * 40)
        self.emit(f"Run {run}/{self.max_runs}")
        self.emit(f"   Log: {log_path}")
        self.emit("=" * 40)

    def _append_summary(self, record: RunRecord) -> None:
        summary_file = (
            self.log_dir / f"loop-{datetime.now(timezone.utc).date().isoformat()}.log"
        )
        entry = {
            "log_version": 1,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "command": getattr(self.client, "command", None),
            "run": record.sequence,
            "max_runs": self.max_runs,
            "started_at": record.started_at.isoformat(),
            "log_file": str(record.log_path),
            "returncode": record.returncode,
            "signal": record.signal,
            "duration": round(record.duration_seconds, 4),
        }
        with summary_file.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry) + "\n")


def _terminate(process: AssistantProcess) -> None:
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        LOGGER.warning("assistant_force_killed")
        process.kill()
        process.wait()
