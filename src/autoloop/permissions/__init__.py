"""Permission adjudication and grant-list maintenance."""

from .adjudicator import PermissionAdjudicator, render_hook_output, request_from_hook_input
from .grants import GrantAuditor, GrantStore, validate_grant_list
from .models import GrantAudit, PermissionDecision, PermissionRequest

__all__ = [
    "GrantAudit",
    "GrantAuditor",
    "GrantStore",
    "PermissionAdjudicator",
    "PermissionDecision",
    "PermissionRequest",
    "render_hook_output",
    "request_from_hook_input",
    "validate_grant_list",
]
