"""Persisted permission grants and the assistant-driven audit of them."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from autoloop.assistant.client import parse_json_object
from autoloop.errors import ConfigurationError, InvalidResponse, ProcessFailure
from autoloop.permissions.adjudicator import AskingAssistant
from autoloop.permissions.models import GrantAudit

LOGGER = logging.getLogger(__name__)


def validate_grant_list(value: object) -> list[str]:
    """Return ``value`` as a list of grant identifiers or raise ``InvalidResponse``."""
    if not isinstance(value, list):
        msg = f"Grant list must be a JSON array, got {type(value).__name__}."
        raise InvalidResponse(msg)
    grants: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            msg = f"Grant #{index + 1} is not a non-empty string: {item!r}"
            raise InvalidResponse(msg)
        if "\n" in item or "\r" in item:
            msg = f"Grant #{index + 1} spans multiple lines."
            raise InvalidResponse(msg)
        grants.append(item.strip())
    return grants


def _dedupe(grants: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for grant in grants:
        if grant not in seen:
            seen.add(grant)
            unique.append(grant)
    return unique


class GrantStore:
    """Reads and writes ``permissions.allow`` in a JSON settings file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def read(self) -> list[str]:
        settings = self._read_settings()
        permissions = settings.get("permissions", {})
        if not isinstance(permissions, dict):
            msg = f"{self.path}: 'permissions' must be an object."
            raise ConfigurationError(msg)
        allow = permissions.get("allow", [])
        try:
            return validate_grant_list(allow)
        except InvalidResponse as exc:
            msg = f"{self.path}: invalid 'permissions.allow': {exc}"
            raise ConfigurationError(msg) from exc

    def write(self, grants: Iterable[str]) -> list[str]:
        """Replace the grant list, keeping every other setting; returns what was stored."""
        settings = self._read_settings()
        permissions = settings.get("permissions")
        if not isinstance(permissions, dict):
            permissions = {}
        stored = _dedupe(grants)
        permissions["allow"] = stored
        settings["permissions"] = permissions
        self._write_settings(settings)
        LOGGER.info("grants_written", extra={"path": str(self.path), "grant_count": len(stored)})
        return stored

    def _read_settings(self) -> dict[str, object]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                parsed = json.load(fh)
        except json.JSONDecodeError as exc:
            msg = f"{self.path} is not valid JSON: {exc}"
            raise ConfigurationError(msg) from exc
        except OSError as exc:
            msg = f"Cannot read {self.path}: {exc.strerror or exc}"
            raise ConfigurationError(msg) from exc
        if not isinstance(parsed, dict):
            msg = f"{self.path} must contain a JSON object."
            raise ConfigurationError(msg)
        return parsed

    def _write_settings(self, settings: dict[str, object]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(settings, handle, indent=2)
                handle.write("\n")
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def build_report_prompt(task_prompt: str, grants: list[str]) -> str:
    return "\n".join(
        [
            "You are auditing the permission allow-list of a coding assistant before it",
            "works on the task below without supervision.",
            "",
            "Currently allowed operations (JSON):",
            json.dumps(grants, indent=2),
            "",
            "Task:",
            task_prompt,
            "",
            "List the permission identifiers the task will need that are not allowed yet,",
            'in the same format (for example "Bash(npm test:*)" or "Edit").',
            'Reply with only a JSON object: {"missing": ["..."]}',
        ]
    )


def build_apply_prompt(task_prompt: str, grants: list[str]) -> str:
    return "\n".join(
        [
            "You are maintaining the permission allow-list of a coding assistant before it",
            "works on the task below without supervision.",
            "",
            "Currently allowed operations (JSON):",
            json.dumps(grants, indent=2),
            "",
            "Task:",
            task_prompt,
            "",
            "Return the complete updated allow-list: keep the existing entries and add the",
            "ones the task needs. Never add destructive or system-wide operations.",
            'Reply with only a JSON object: {"allow": ["..."]}',
        ]
    )


class GrantAuditor:
    """Asks the assistant which grants a task is missing, optionally applying them."""

    def __init__(
        self,
        *,
        client: AskingAssistant,
        store: GrantStore,
        timeout: float | None = 300.0,
    ) -> None:
        self.client = client
        self.store = store
        self.timeout = timeout

    def report(self, task_prompt: str) -> GrantAudit:
        previous = self.store.read()
        payload = self._ask(build_report_prompt(task_prompt, previous))
        missing = validate_grant_list(payload.get("missing"))
        return GrantAudit(
            previous=tuple(previous),
            missing=tuple(grant for grant in _dedupe(missing) if grant not in previous),
        )

    def apply(self, task_prompt: str) -> GrantAudit:
        previous = self.store.read()
        payload = self._ask(build_apply_prompt(task_prompt, previous))
        candidate = validate_grant_list(payload.get("allow"))
        stored = self.store.write(candidate)
        return GrantAudit(
            previous=tuple(previous),
            missing=tuple(grant for grant in stored if grant not in previous),
            updated=tuple(stored),
        )

    def _ask(self, prompt: str) -> dict[str, object]:
        reply = self.client.ask(prompt, timeout=self.timeout)
        if reply.timed_out:
            raise ProcessFailure(
                reply.returncode, detail=f"Timed out after {self.timeout}s"
            )
        if reply.returncode != 0:
            raise ProcessFailure(reply.returncode, detail=reply.stderr.strip() or None)
        payload = parse_json_object(reply.text)
        if payload is None:
            msg = "Assistant reply is not a JSON object."
            raise InvalidResponse(msg)
        return payload
