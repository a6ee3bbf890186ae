"""Parsing and live display of the assistant's line-delimited JSON stream."""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Literal, TextIO

LOGGER = logging.getLogger(__name__)

CompletionSignal = Literal["DONE", "CONTINUE"]
EmitText = Callable[[str], None]

# Whole words only: ALL_DONE or CONTINUE_LATER is not a signal, unlike a
# plain substring match.
_SIGNAL_PATTERN = re.compile(r"\b(DONE|CONTINUE)\b")


def parse_stream_line(line: str) -> dict[str, object] | None:
    """Decode one stream line; anything that is not a JSON object yields ``None``."""
    stripped = line.strip()
    if not stripped:
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(key): value for key, value in parsed.items()}


def render_record(record: dict[str, object]) -> list[str]:
    """Human-readable text carried by an ``assistant`` or ``result`` record."""
    record_type = record.get("type")
    if record_type == "assistant":
        message = record.get("message")
        if not isinstance(message, dict):
            return []
        content = message.get("content")
        if not isinstance(content, list):
            return []
        return [
            part["text"]
            for part in content
            if isinstance(part, dict)
            and part.get("type") == "text"
            and isinstance(part.get("text"), str)
        ]
    if record_type == "result":
        result = record.get("result")
        if isinstance(result, str) and result:
            return [result]
    return []


def read_result_texts(log_path: Path) -> list[str]:
    """Collect the ``result`` text of every result record in a run log."""
    if not log_path.exists():
        return []
    results: list[str] = []
    with log_path.open("r", encoding="utf-8", errors="replace") as handle:
        for line in handle:
            record = parse_stream_line(line)
            if record is None or record.get("type") != "result":
                continue
            result = record.get("result")
            if isinstance(result, str):
                results.append(result)
    return results


def find_completion_signal(text: str) -> CompletionSignal | None:
    """Return the last whole-word DONE or CONTINUE in ``text``."""
    matches = _SIGNAL_PATTERN.findall(text)
    if not matches:
        return None
    return "DONE" if matches[-1] == "DONE" else "CONTINUE"


def read_completion_signal(log_path: Path) -> CompletionSignal | None:
    return find_completion_signal("\n".join(read_result_texts(log_path)))


class LogTailer:
    """Follows a growing run log on a background thread and echoes its text.

    The tailer is best-effort: parse and display errors are logged, never
    raised. ``stop`` sets the cancellation event and the thread drains the
    rest of the file. A tailer still draining after the grace period is
    aborted: it drops whatever it has not shown yet and exits after the
    current ``emit`` call returns.
    """

    def __init__(
        self,
        log_path: Path,
        emit: EmitText,
        *,
        poll_interval: float = 0.1,
    ) -> None:
        self.log_path = log_path
        self.emit = emit
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._abort_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"log-tailer-{log_path.name}",
            daemon=True,
        )

    @property
    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def start(self) -> None:
        self._thread.start()

    def stop(self, grace_seconds: float) -> bool:
        """Cancel the tailer and wait for it; returns ``True`` once it has exited."""
        self._stop_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=grace_seconds)
        if self._thread.is_alive():
            self._abort_event.set()
            LOGGER.warning(
                "log_tailer_aborted",
                extra={"log_path": str(self.log_path), "grace_seconds": grace_seconds},
            )
            self._thread.join(timeout=grace_seconds)
        stopped = not self._thread.is_alive()
        if not stopped:
            LOGGER.warning(
                "log_tailer_still_running",
                extra={"log_path": str(self.log_path), "grace_seconds": grace_seconds},
            )
        return stopped

    def join(self, timeout: float | None = None) -> bool:
        self._thread.join(timeout=timeout)
        return not self._thread.is_alive()

    def _run(self) -> None:
        try:
            handle = self._wait_for_file()
            if handle is None:
                return
            with handle:
                self._follow(handle)
        except OSError as exc:
            LOGGER.warning(
                "log_tailer_failed",
                extra={"log_path": str(self.log_path), "error": str(exc)},
            )

    def _wait_for_file(self) -> TextIO | None:
        while True:
            try:
                return self.log_path.open("r", encoding="utf-8", errors="replace")
            except FileNotFoundError:
                if self._stop_event.is_set():
                    return None
                self._stop_event.wait(self.poll_interval)

    def _follow(self, handle: TextIO) -> None:
        pending = ""
        while not self._abort_event.is_set():
            chunk = handle.readline()
            if chunk:
                pending += chunk
                if pending.endswith("\n"):
                    self._display(pending)
                    pending = ""
                continue
            if self._stop_event.is_set():
                if pending:
                    self._display(pending)
                return
            self._stop_event.wait(self.poll_interval)

    def _display(self, line: str) -> None:
        record = parse_stream_line(line)
        if record is None:
            return
        for text in render_record(record):
            if self._abort_event.is_set():
                return
            try:
                self.emit(text)
            except (OSError, ValueError) as exc:
                LOGGER.debug("log_tailer_emit_failed", extra={"error": str(exc)})
