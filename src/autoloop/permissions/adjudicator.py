"""Fail-closed permission checks delegated to the assistant."""

from __future__ import annotations

import json
import logging
from typing import Protocol

from autoloop.assistant.client import AssistantReply, parse_json_object
from autoloop.permissions.models import (
    DecisionReply,
    MalformedReply,
    ParsedDecision,
    PermissionDecision,
    PermissionRequest,
)

LOGGER = logging.getLogger(__name__)

EVALUATION_FAILED_REASON = "Permission evaluation failed"
DEFAULT_DENY_REASON = "Denied by permission policy."
MAX_TOOL_INPUT_CHARS = 8000

POLICY_RULES = [
    "ALLOW common development operations:",
    "- reading, listing and searching files",
    "- creating and editing files inside the current project directory",
    "- running tests, builds, linters, formatters and type checkers",
    "- installing dependencies into the project (lockfile or virtualenv scoped)",
    "- read-only git operations and ordinary commits on the current branch",
    "DENY:",
    "- destructive operations outside the project directory (rm -rf on other paths, disk tools)",
    "- modifying system files or system configuration (/etc, /usr, registry, shell profiles)",
    "- uncontrolled global installs (sudo installs, npm -g, pip outside a virtualenv)",
    "- sending project data, credentials or secrets to external hosts",
    "When the operation is ambiguous, DENY.",
]


class AskingAssistant(Protocol):
    def ask(self, prompt: str, *, timeout: float | None = None) -> AssistantReply: ...


def request_from_hook_input(payload: object) -> PermissionRequest:
    """Extract the tool call from hook input, treating missing fields as empty."""
    if not isinstance(payload, dict):
        return PermissionRequest(tool_name="")
    tool_name = payload.get("tool_name")
    tool_input = payload.get("tool_input")
    return PermissionRequest(
        tool_name=tool_name if isinstance(tool_name, str) else "",
        tool_input=(
            {str(key): value for key, value in tool_input.items()}
            if isinstance(tool_input, dict)
            else {}
        ),
    )


def build_adjudication_prompt(request: PermissionRequest) -> str:
    tool_input = json.dumps(request.tool_input, indent=2, ensure_ascii=False, default=str)
    if len(tool_input) > MAX_TOOL_INPUT_CHARS:
        tool_input = f"{tool_input[:MAX_TOOL_INPUT_CHARS]}\n... (truncated)"
    return "\n".join(
        [
            "You are a security reviewer deciding whether a coding assistant may run a tool.",
            "",
            f"Tool: {request.tool_name or '(unknown)'}",
            "Tool input:",
            tool_input,
            "",
            "Policy:",
            *POLICY_RULES,
            "",
            "Reply with only a JSON object and no other text:",
            '{"decision": "allow"} or {"decision": "deny", "reason": "<short reason>"}',
        ]
    )


def parse_decision_reply(text: str) -> DecisionReply:
    parsed = parse_json_object(text)
    if parsed is None:
        return MalformedReply("reply is not a JSON object")

    decision = parsed.get("decision")
    if not isinstance(decision, str):
        return MalformedReply("reply has no decision field")
    normalized = decision.strip().lower()
    reason = parsed.get("reason")
    reason_text = reason.strip() if isinstance(reason, str) and reason.strip() else None

    if normalized == "allow":
        return ParsedDecision(PermissionDecision(decision="allow", reason=reason_text))
    if normalized == "deny":
        return ParsedDecision(
            PermissionDecision(decision="deny", reason=reason_text or DEFAULT_DENY_REASON)
        )
    return MalformedReply(f"unknown decision {decision!r}")


def failed_decision(detail: str) -> PermissionDecision:
    return PermissionDecision(decision="deny", reason=f"{EVALUATION_FAILED_REASON}: {detail}")


def render_hook_output(decision: PermissionDecision) -> dict[str, object]:
    """Shape a decision the way the PreToolUse hook protocol expects it."""
    output: dict[str, object] = {
        "hookEventName": "PreToolUse",
        "permissionDecision": decision.decision,
    }
    if decision.reason:
        output["permissionDecisionReason"] = decision.reason
    return {"hookSpecificOutput": output}


class PermissionAdjudicator:
    """Asks the assistant for a single allow/deny verdict."""

    def __init__(self, *, client: AskingAssistant, timeout: float | None = 30.0) -> None:
        self.client = client
        self.timeout = timeout

    def adjudicate(self, tool_name: str, tool_input: dict[str, object]) -> PermissionDecision:
        request = PermissionRequest(tool_name=tool_name, tool_input=dict(tool_input))
        return self.adjudicate_request(request)

    def adjudicate_request(self, request: PermissionRequest) -> PermissionDecision:
        reply = self.client.ask(build_adjudication_prompt(request), timeout=self.timeout)
        if reply.timed_out:
            decision = failed_decision(f"assistant timed out after {self.timeout}s")
        elif reply.returncode != 0:
            decision = failed_decision(f"assistant exited with code {reply.returncode}")
        else:
            parsed = parse_decision_reply(reply.text)
            if isinstance(parsed, MalformedReply):
                LOGGER.warning(
                    "adjudication_reply_malformed",
                    extra={"tool_name": request.tool_name, "detail": parsed.detail},
                )
                decision = failed_decision(parsed.detail)
            else:
                decision = parsed.decision

        LOGGER.info(
            "adjudication_decided",
            extra={"tool_name": request.tool_name, "decision": decision.decision},
        )
        return decision
