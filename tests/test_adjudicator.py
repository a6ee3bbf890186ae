from __future__ import annotations

import pytest

from autoloop.assistant.client import AssistantReply
from autoloop.permissions.adjudicator import (
    PermissionAdjudicator,
    build_adjudication_prompt,
    parse_decision_reply,
    render_hook_output,
    request_from_hook_input,
)
from autoloop.permissions.models import (
    MalformedReply,
    ParsedDecision,
    PermissionDecision,
    PermissionRequest,
)


class FakeClient:
    def __init__(self, reply: AssistantReply) -> None:
        self.reply = reply
        self.prompts: list[str] = []
        self.timeouts: list[float | None] = []

    def ask(self, prompt: str, *, timeout: float | None = None) -> AssistantReply:
        self.prompts.append(prompt)
        self.timeouts.append(timeout)
        return self.reply


def test_allow_reply_is_passed_through() -> None:
    client = FakeClient(AssistantReply(returncode=0, text='{"decision": "allow"}'))
    adjudicator = PermissionAdjudicator(client=client, timeout=12.0)

    decision = adjudicator.adjudicate("Bash", {"command": "pytest -q"})

    assert decision == PermissionDecision(decision="allow")
    assert client.timeouts == [12.0]
    assert "Tool: Bash" in client.prompts[0]
    assert '"command": "pytest -q"' in client.prompts[0]


def test_deny_reply_keeps_reason() -> None:
    reply = AssistantReply(
        returncode=0,
        text='```json\n{"decision": "deny", "reason": "Writes to /etc/hosts"}\n```',
    )
    adjudicator = PermissionAdjudicator(client=FakeClient(reply))

    decision = adjudicator.adjudicate("Write", {"file_path": "/etc/hosts"})

    assert decision.decision == "deny"
    assert decision.reason == "Writes to /etc/hosts"
    assert decision.allowed is False


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Sure, that looks fine to me.",
        '{"decision": "maybe"}',
        '{"verdict": "allow"}',
        '["allow"]',
        '{"decision": true}',
    ],
)
def test_malformed_reply_is_denied(text: str) -> None:
    adjudicator = PermissionAdjudicator(client=FakeClient(AssistantReply(returncode=0, text=text)))

    decision = adjudicator.adjudicate("Bash", {"command": "ls"})

    assert decision.decision == "deny"
    assert decision.reason


def test_process_failure_and_timeout_are_denied() -> None:
    failing = FakeClient(AssistantReply(returncode=1, text='{"decision": "allow"}'))
    timed_out = FakeClient(AssistantReply(returncode=124, text="", timed_out=True))

    for client in (failing, timed_out):
        decision = PermissionAdjudicator(client=client).adjudicate("Bash", {"command": "ls"})
        assert decision.decision == "deny"
        assert decision.reason is not None
        assert decision.reason.startswith("Permission evaluation failed")


def test_deny_without_reason_gets_default_reason() -> None:
    parsed = parse_decision_reply('{"decision": "DENY"}')

    assert isinstance(parsed, ParsedDecision)
    assert parsed.decision.decision == "deny"
    assert parsed.decision.reason


def test_parse_decision_reply_reports_malformed_detail() -> None:
    parsed = parse_decision_reply("nothing useful")

    assert isinstance(parsed, MalformedReply)
    assert "JSON" in parsed.detail


def test_request_from_hook_input_tolerates_missing_fields() -> None:
    assert request_from_hook_input({}) == PermissionRequest(tool_name="", tool_input={})
    assert request_from_hook_input("not a dict") == PermissionRequest(tool_name="")
    assert request_from_hook_input({"tool_name": 3, "tool_input": ["x"]}) == PermissionRequest(
        tool_name="", tool_input={}
    )
    request = request_from_hook_input(
        {"session_id": "abc", "tool_name": "Edit", "tool_input": {"file_path": "a.py"}}
    )
    assert request == PermissionRequest(tool_name="Edit", tool_input={"file_path": "a.py"})


def test_prompt_embeds_policy_rules() -> None:
    prompt = build_adjudication_prompt(PermissionRequest(tool_name="", tool_input={}))

    assert "Tool: (unknown)" in prompt
    assert "When the operation is ambiguous, DENY." in prompt
    assert "global installs" in prompt
    assert '{"decision": "allow"}' in prompt


def test_render_hook_output_shapes_decision() -> None:
    assert render_hook_output(PermissionDecision(decision="allow")) == {
        "hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "allow",
        }
    }
    denied = render_hook_output(PermissionDecision(decision="deny", reason="nope"))
    assert denied["hookSpecificOutput"]["permissionDecisionReason"] == "nope"
