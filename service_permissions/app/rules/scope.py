"""
Scope resolution for the Access Permissions engine.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from shared.logging import get_logger
from .models import Permission, PermissionContext, ScopeType

# Metadata keys consulted per scope dimension (snake_case first).
SCOPE_METADATA_KEYS: Dict[ScopeType, Tuple[str, ...]] = {
    ScopeType.ORGANIZATION: ("organization_id", "organizationId"),
    ScopeType.DEPARTMENT: ("department_id", "departmentId"),
    ScopeType.PROJECT: ("project_id", "projectId"),
    ScopeType.TEAM: ("team_id", "teamId"),
}

GLOBAL_SCOPE_VALUE = "global"


@dataclass
class ScopeDecision:
    """Outcome of a scope check."""
    allowed: bool
    reason: str
    value: Optional[str] = None


class ScopeResolver:
    """Checks a permission's scope against the evaluation context.

    Exclusions are checked before the allow-list, so a value listed in both
    is denied.
    """

    def __init__(self, default_scope: ScopeType = ScopeType.USER):
        self.default_scope = default_scope
        self.logger = get_logger("permissions.scope")

    def resolve(self, permission: Permission, context: PermissionContext) -> ScopeDecision:
        scope = permission.scope
        if scope is None:
            return ScopeDecision(allowed=True, reason="No scope restriction")

        scope_type = scope.type or self.default_scope
        value = self.extract_scope_value(scope_type, context)

        if not value:
            return ScopeDecision(
                allowed=False,
                reason=f"No scope information for {scope_type.value}"
            )

        if scope.excludes and value in scope.excludes:
            return ScopeDecision(
                allowed=False,
                reason=f"Scope excluded: {scope_type.value}={value}",
                value=value
            )

        if scope.values and value not in scope.values:
            return ScopeDecision(
                allowed=False,
                reason=f"Scope not allowed: {scope_type.value}={value}",
                value=value
            )

        return ScopeDecision(allowed=True, reason="Scope satisfied", value=value)

    def extract_scope_value(self, scope_type: ScopeType, context: PermissionContext) -> Optional[str]:
        """Pull the value for a scope dimension out of the context."""
        if scope_type == ScopeType.GLOBAL:
            return GLOBAL_SCOPE_VALUE

        if scope_type == ScopeType.USER:
            return context.user_id

        keys = SCOPE_METADATA_KEYS.get(scope_type)
        if keys is None:
            self.logger.warning("Unknown scope type", scope_type=str(scope_type))
            return None

        metadata = context.metadata or {}
        for key in keys:
            value: Any = metadata.get(key)
            if value is not None and value != "":
                return str(value)

        return None
