"""Data models for permission adjudication and grant audits."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

DecisionKind = Literal["allow", "deny"]


@dataclass(slots=True, frozen=True)
class PermissionRequest:
    """A proposed tool call awaiting a verdict."""

    tool_name: str
    tool_input: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class PermissionDecision:
    """Verdict for one permission request."""

    decision: DecisionKind
    reason: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision == "allow"


@dataclass(slots=True, frozen=True)
class ParsedDecision:
    decision: PermissionDecision


@dataclass(slots=True, frozen=True)
class MalformedReply:
    detail: str


DecisionReply = ParsedDecision | MalformedReply


@dataclass(slots=True, frozen=True)
class GrantAudit:
    """Result of asking the assistant which grants a task needs."""

    previous: tuple[str, ...]
    missing: tuple[str, ...] = ()
    updated: tuple[str, ...] | None = None

    @property
    def applied(self) -> bool:
        return self.updated is not None

    @property
    def added(self) -> tuple[str, ...]:
        if self.updated is None:
            return ()
        return tuple(grant for grant in self.updated if grant not in self.previous)

    @property
    def removed(self) -> tuple[str, ...]:
        if self.updated is None:
            return ()
        return tuple(grant for grant in self.previous if grant not in self.updated)
