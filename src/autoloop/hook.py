"""PreToolUse hook: reads a tool call on stdin, writes an allow/deny verdict on stdout."""

from __future__ import annotations

import json
import logging
import sys
from typing import TextIO

from .assistant.client import AssistantClient
from .config import AppConfig
from .permissions.adjudicator import (
    PermissionAdjudicator,
    failed_decision,
    render_hook_output,
    request_from_hook_input,
)
from .permissions.models import PermissionDecision

LOGGER = logging.getLogger(__name__)


def evaluate(raw_input: str, config: AppConfig) -> PermissionDecision:
    try:
        payload = json.loads(raw_input)
    except json.JSONDecodeError:
        return failed_decision("hook input is not valid JSON")

    request = request_from_hook_input(payload)
    adjudicator = PermissionAdjudicator(
        client=AssistantClient(config.assistant_command),
        timeout=config.adjudicator_timeout,
    )
    return adjudicator.adjudicate_request(request)


def main(stdin: TextIO | None = None, stdout: TextIO | None = None) -> int:
    source = stdin if stdin is not None else sys.stdin
    sink = stdout if stdout is not None else sys.stdout

    try:
        config = AppConfig.from_env()
        logging.basicConfig(level=config.log_level, stream=sys.stderr)
        decision = evaluate(source.read(), config)
    except Exception as exc:  # noqa: BLE001 - every failure must become a deny
        LOGGER.exception("hook_evaluation_failed")
        decision = failed_decision(f"{type(exc).__name__}: {exc}")

    sink.write(json.dumps(render_hook_output(decision)) + "\n")
    sink.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
