"""Thin wrapper around the external coding-assistant CLI."""

from __future__ import annotations

import json
import locale
import logging
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

from autoloop.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

STREAM_OUTPUT_ARGS = ("--output-format", "stream-json", "--verbose")
JSON_OUTPUT_ARGS = ("--output-format", "json")


@dataclass(slots=True, frozen=True)
class AssistantReply:
    """Normalized result of a single non-interactive assistant call."""

    returncode: int
    text: str
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class AssistantClient:
    """Spawns the assistant process for streamed runs and one-shot questions."""

    def __init__(self, command: str = "claude") -> None:
        self.command = command
        self.argv = shlex.split(command)
        if not self.argv:
            msg = "Assistant command must not be empty"
            raise ValueError(msg)

    def build_stream_command(self, prompt: str) -> list[str]:
        return [*self.argv, "-p", prompt, *STREAM_OUTPUT_ARGS]

    def build_ask_command(self, prompt: str) -> list[str]:
        return [*self.argv, "-p", prompt, *JSON_OUTPUT_ARGS]

    def start_stream(self, prompt: str, log_path: Path) -> subprocess.Popen[bytes]:
        """Start a streamed run whose stdout and stderr go straight into ``log_path``.

        The child keeps its own handle on the log, so the parent closes its copy
        as soon as the process is spawned.
        """
        log_path.parent.mkdir(parents=True, exist_ok=True)
        command = self.build_stream_command(prompt)
        LOGGER.info(
            "assistant_stream_started",
            extra={"executable": command[0], "log_path": str(log_path)},
        )
        try:
            with log_path.open("wb") as log_handle:
                return subprocess.Popen(
                    command,
                    stdin=subprocess.DEVNULL,
                    stdout=log_handle,
                    stderr=subprocess.STDOUT,
                )
        except FileNotFoundError as exc:
            log_path.unlink(missing_ok=True)
            LOGGER.error("assistant_executable_missing", extra={"executable": command[0]})
            msg = f"Assistant executable not found: {command[0]}"
            raise ConfigurationError(msg) from exc

    def ask(self, prompt: str, *, timeout: float | None = None) -> AssistantReply:
        """Run the assistant once and return the text of its final result."""
        command = self.build_ask_command(prompt)
        started = time.monotonic()
        LOGGER.debug(
            "assistant_ask_prepared",
            extra={"executable": command[0], "prompt_chars": len(prompt), "timeout": timeout},
        )
        try:
            process = subprocess.run(
                command,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                timeout=timeout,
                check=False,
                text=False,
            )
        except FileNotFoundError:
            LOGGER.error("assistant_executable_missing", extra={"executable": command[0]})
            return AssistantReply(
                returncode=127,
                text="",
                stderr=f"Assistant executable not found: {command[0]}",
                duration_seconds=time.monotonic() - started,
            )
        except subprocess.TimeoutExpired as exc:
            LOGGER.error(
                "assistant_ask_timeout",
                extra={"executable": command[0], "timeout_seconds": timeout},
            )
            return AssistantReply(
                returncode=124,
                text=_normalize_output(exc.stdout),
                stderr=_normalize_output(exc.stderr),
                timed_out=True,
                duration_seconds=time.monotonic() - started,
            )

        reply = AssistantReply(
            returncode=process.returncode,
            text=extract_result_text(_normalize_output(process.stdout)),
            stderr=_normalize_output(process.stderr),
            duration_seconds=time.monotonic() - started,
        )
        LOGGER.info(
            "assistant_ask_result",
            extra={
                "returncode": reply.returncode,
                "duration_seconds": round(reply.duration_seconds, 4),
                "text_length": len(reply.text),
                "stderr_length": len(reply.stderr),
            },
        )
        return reply


def extract_result_text(stdout: str) -> str:
    """Return the ``result`` field of a JSON envelope, or the raw output."""
    stripped = stdout.strip()
    if not stripped:
        return ""
    try:
        envelope = json.loads(stripped)
    except json.JSONDecodeError:
        return stripped
    if isinstance(envelope, dict) and isinstance(envelope.get("result"), str):
        return envelope["result"]
    return stripped


def parse_json_object(text: str) -> dict[str, object] | None:
    """Parse the outermost ``{...}`` in a reply, tolerating fences and prose."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return {str(key): value for key, value in parsed.items()}


def _normalize_output(payload: bytes | str | None) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")
