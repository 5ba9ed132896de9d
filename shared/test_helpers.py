"""
Test helper functions and factory methods for the Access Permissions engine.
"""

from typing import Dict, Any, Optional, List

from service_permissions.app.rules.models import (
    Condition, ConditionOperator, LogicalOperator, Permission, Role, Scope, ScopeType
)
from service_permissions.app.store import StaticPermissionLoader


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class PermissionDataFactory:
    """Factory for creating test permission data."""

    @staticmethod
    def permission(
        name: str,
        conditions: Optional[List[Condition]] = None,
        scope: Optional[Scope] = None,
        permission_id: Optional[str] = None
    ) -> Permission:
        """Build a permission from a ``resource.action`` name."""
        resource, _, action = name.partition(".")
        return Permission(
            id=permission_id or f"perm-{name}",
            name=name,
            resource=resource,
            action=action,
            conditions=list(conditions or []),
            scope=scope
        )

    @staticmethod
    def role(name: str, permissions: List[Permission], **kwargs) -> Role:
        return Role(id=f"role-{name}", name=name, permissions=permissions, **kwargs)

    @staticmethod
    def create_editor_role() -> Role:
        """Editor may read articles and publish drafts only."""
        return PermissionDataFactory.role("editor", [
            PermissionDataFactory.permission("article.read"),
            PermissionDataFactory.permission(
                "article.publish",
                conditions=[Condition("resource.status", ConditionOperator.EQ, "draft")]
            ),
        ])

    @staticmethod
    def create_team_permission(values: List[str], excludes: Optional[List[str]] = None) -> Permission:
        return PermissionDataFactory.permission(
            "report.view",
            scope=Scope(type=ScopeType.TEAM, values=values, excludes=excludes)
        )

    @staticmethod
    def create_office_hours_conditions() -> List[Condition]:
        """Country must be KE or UG, unless the address is blocked."""
        return [
            Condition("environment.location.country", ConditionOperator.EQ, "KE"),
            Condition("environment.location.country", ConditionOperator.EQ, "UG", LogicalOperator.OR),
            Condition("environment.ip", ConditionOperator.STARTS_WITH, "10.0.", LogicalOperator.NOT),
        ]

    @staticmethod
    def create_raw_role() -> Dict[str, Any]:
        """Role as a loader backed by JSON would hand it over."""
        return {
            "id": "role-auditor",
            "name": "auditor",
            "isSystem": True,
            "parentRole": "viewer",
            "permissions": [
                {
                    "id": "perm-audit-read",
                    "name": "audit.read",
                    "resource": "audit",
                    "action": "read",
                    "conditions": [
                        {"field": "resource.classification", "operator": "NIN", "value": ["secret"]}
                    ],
                    "scope": {"type": "organization", "values": ["org-1"]}
                }
            ]
        }


def create_static_loader(
    roles: Optional[Dict[str, List[Any]]] = None,
    permissions: Optional[Dict[str, List[Any]]] = None
) -> StaticPermissionLoader:
    """Create an in-memory loader."""
    return StaticPermissionLoader(roles=roles, permissions=permissions)


def create_context(
    user_id: Optional[str] = None,
    resource: Optional[Dict[str, Any]] = None,
    country: Optional[str] = None,
    ip: Optional[str] = None,
    **metadata
) -> Dict[str, Any]:
    """Create a plain-mapping evaluation context."""
    context: Dict[str, Any] = {"metadata": metadata}
    if user_id is not None:
        context["user_id"] = user_id
    if resource is not None:
        context["resource"] = resource
    if country is not None or ip is not None:
        context["environment"] = {
            "ip": ip,
            "location": {"country": country} if country is not None else {}
        }
    return context


# Global instances for easy access
permission_data_factory = PermissionDataFactory()
