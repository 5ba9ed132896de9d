"""
Helpers for building, inspecting and validating permission data.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import (
    Condition, ConditionOperator, ConditionValue, LogicalOperator,
    Permission, Role, ScopeType
)


@dataclass
class ValidationIssue:
    """A single validation error or warning."""
    code: str
    message: str
    field: Optional[str] = None
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of validating permissions or roles."""
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)


@dataclass
class PermissionSetDiff:
    """Difference between two permission sets, keyed by name."""
    added: List[Permission] = field(default_factory=list)
    removed: List[Permission] = field(default_factory=list)
    common: List[Permission] = field(default_factory=list)
    modified: List[Tuple[Permission, Permission]] = field(default_factory=list)


def create_permission_name(resource: str, action: str) -> str:
    return f"{resource}.{action}"


def parse_permission_name(permission_name: str) -> Optional[Tuple[str, str]]:
    """Split ``"<resource>.<action>"``; None when it is not exactly two parts."""
    parts = permission_name.split(".")
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def create_permission(
    permission_id: str,
    resource: str,
    action: str,
    conditions: Optional[List[Condition]] = None,
    **kwargs
) -> Permission:
    return Permission(
        id=permission_id,
        name=create_permission_name(resource, action),
        resource=resource,
        action=action,
        conditions=list(conditions or []),
        **kwargs
    )


def create_condition(
    field_path: str,
    operator: ConditionOperator,
    value: ConditionValue,
    logical_operator: Optional[LogicalOperator] = None
) -> Condition:
    return Condition(field=field_path, operator=operator, value=value, logical_operator=logical_operator)


def deduplicate_permissions(permissions: Iterable[Permission]) -> List[Permission]:
    """Keep the last permission seen for each name, in first-seen order."""
    unique: Dict[str, Permission] = {}
    for permission in permissions:
        unique[permission.name] = permission
    return list(unique.values())


def resolve_effective_permissions(direct_permissions: Iterable[Permission], roles: Iterable[Role]) -> List[Permission]:
    """Effective permission set: direct permissions first, then roles in order; first name wins."""
    effective: Dict[str, Permission] = {}
    for permission in direct_permissions:
        effective.setdefault(permission.name, permission)
    for role in roles:
        for permission in role.permissions:
            effective.setdefault(permission.name, permission)
    return list(effective.values())


def filter_permissions(
    permissions: Iterable[Permission],
    resource: Optional[str] = None,
    action: Optional[str] = None,
    has_conditions: Optional[bool] = None,
    scope: Optional[ScopeType] = None
) -> List[Permission]:
    result = []
    for permission in permissions:
        if resource and permission.resource != resource:
            continue
        if action and permission.action != action:
            continue
        if has_conditions is not None and bool(permission.conditions) != has_conditions:
            continue
        if scope and (permission.scope is None or permission.scope.type != scope):
            continue
        result.append(permission)
    return result


def group_permissions_by_resource(permissions: Iterable[Permission]) -> Dict[str, List[Permission]]:
    groups: Dict[str, List[Permission]] = {}
    for permission in permissions:
        groups.setdefault(permission.resource, []).append(permission)
    return groups


PERMISSION_SORT_KEYS = ("name", "resource", "action")


def sort_permissions(permissions: Iterable[Permission], sort_by: str = "name") -> List[Permission]:
    """Sorted copy by name, resource or action; any other key keeps the input order."""
    permissions = list(permissions)
    if sort_by not in PERMISSION_SORT_KEYS:
        return permissions
    return sorted(permissions, key=lambda permission: getattr(permission, sort_by))


def create_permission_hierarchy(permissions: Iterable[Permission]) -> Dict[str, Dict[str, Permission]]:
    """Index permissions as ``{resource: {action: permission}}``; later duplicates win."""
    hierarchy: Dict[str, Dict[str, Permission]] = {}
    for permission in permissions:
        hierarchy.setdefault(permission.resource, {})[permission.action] = permission
    return hierarchy


def validate_permissions(permissions: List[Permission]) -> ValidationResult:
    """Validate required fields, naming and conditions.

    A name that differs from ``<resource>.<action>`` is a warning, never an error.
    """
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    for index, permission in enumerate(permissions):
        for attr in ("id", "name", "resource", "action"):
            if not getattr(permission, attr, None):
                errors.append(ValidationIssue(
                    code=f"MISSING_{attr.upper()}",
                    message=f"Permission {attr} is missing (index: {index})",
                    field=attr
                ))

        if permission.name and permission.resource and permission.action:
            expected_name = create_permission_name(permission.resource, permission.action)
            if permission.name != expected_name:
                warnings.append(ValidationIssue(
                    code="NAME_MISMATCH",
                    message=f"Permission name {permission.name} does not match {expected_name}",
                    value=permission.name,
                    suggestion=f"Rename the permission to {expected_name}"
                ))

        for condition_index, condition in enumerate(permission.conditions or []):
            if not condition.field:
                errors.append(ValidationIssue(
                    code="MISSING_CONDITION_FIELD",
                    message=f"Condition field is missing (permission: {permission.name}, condition: {condition_index})",
                    field="conditions"
                ))
            if not isinstance(condition.operator, ConditionOperator):
                warnings.append(ValidationIssue(
                    code="UNKNOWN_CONDITION_OPERATOR",
                    message=f"Unknown operator {condition.operator!r} always evaluates to false "
                            f"(permission: {permission.name}, condition: {condition_index})",
                    field="conditions",
                    value=condition.operator
                ))
            if condition.value is None:
                warnings.append(ValidationIssue(
                    code="NULL_CONDITION_VALUE",
                    message=f"Condition value is null (permission: {permission.name}, condition: {condition_index})",
                    field="conditions",
                    suggestion="Set the condition value explicitly"
                ))

    counts: Dict[str, int] = {}
    for permission in permissions:
        counts[permission.name] = counts.get(permission.name, 0) + 1
    for name, count in counts.items():
        if count > 1:
            errors.append(ValidationIssue(
                code="DUPLICATE_PERMISSION",
                message=f"Duplicate permission: {name} ({count} occurrences)",
                value=name
            ))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def validate_roles(roles: List[Role]) -> ValidationResult:
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    for index, role in enumerate(roles):
        if not role.id:
            errors.append(ValidationIssue(code="MISSING_ID", message=f"Role id is missing (index: {index})", field="id"))
        if not role.name:
            errors.append(ValidationIssue(code="MISSING_NAME", message=f"Role name is missing (index: {index})", field="name"))

        nested = validate_permissions(role.permissions)
        for issue in nested.errors:
            issue.message = f"Role {role.name}: {issue.message}"
            errors.append(issue)
        for issue in nested.warnings:
            issue.message = f"Role {role.name}: {issue.message}"
            warnings.append(issue)

    counts: Dict[str, int] = {}
    for role in roles:
        counts[role.name] = counts.get(role.name, 0) + 1
    for name, count in counts.items():
        if count > 1:
            errors.append(ValidationIssue(
                code="DUPLICATE_ROLE",
                message=f"Duplicate role: {name} ({count} occurrences)",
                value=name
            ))

    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def compare_permission_sets(old: Iterable[Permission], new: Iterable[Permission]) -> PermissionSetDiff:
    old_by_name = {p.name: p for p in old}
    new_by_name = {p.name: p for p in new}
    diff = PermissionSetDiff()

    for name, permission in new_by_name.items():
        if name not in old_by_name:
            diff.added.append(permission)

    for name, old_permission in old_by_name.items():
        new_permission = new_by_name.get(name)
        if new_permission is None:
            diff.removed.append(old_permission)
        elif asdict(old_permission) == asdict(new_permission):
            diff.common.append(old_permission)
        else:
            diff.modified.append((old_permission, new_permission))

    return diff
