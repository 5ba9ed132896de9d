"""
Unit tests for permission helpers and validation.
"""

import pytest

from service_permissions.app.rules.helpers import (
    compare_permission_sets, create_condition, create_permission, create_permission_hierarchy,
    create_permission_name, deduplicate_permissions, filter_permissions, group_permissions_by_resource,
    parse_permission_name, resolve_effective_permissions, sort_permissions, validate_permissions,
    validate_roles
)
from service_permissions.app.rules.models import (
    Condition, ConditionOperator, LogicalOperator, Permission, Role, Scope, ScopeType
)
from shared.test_helpers import PermissionDataFactory


class TestPermissionNames:
    """Test cases for permission naming."""

    def test_create_permission_name(self):
        assert create_permission_name("article", "publish") == "article.publish"

    def test_parse_permission_name(self):
        assert parse_permission_name("article.publish") == ("article", "publish")
        assert parse_permission_name("article") is None
        assert parse_permission_name("a.b.c") is None
        assert parse_permission_name(".read") is None


class TestBuilders:
    """Test cases for permission builders."""

    def test_create_permission(self):
        condition = create_condition("resource.status", ConditionOperator.EQ, "draft", LogicalOperator.AND)

        permission = create_permission("p1", "article", "publish", [condition], description="Publish drafts")

        assert permission.name == "article.publish"
        assert permission.conditions == [condition]
        assert permission.description == "Publish drafts"

    def test_deduplicate_keeps_last(self):
        first = PermissionDataFactory.permission("a.read", permission_id="1")
        second = PermissionDataFactory.permission("a.read", permission_id="2")
        other = PermissionDataFactory.permission("b.read")

        result = deduplicate_permissions([first, other, second])

        assert [p.id for p in result] == ["2", other.id]

    def test_resolve_effective_permissions_direct_first(self):
        direct = PermissionDataFactory.permission("article.publish", permission_id="direct")
        role = PermissionDataFactory.create_editor_role()

        effective = resolve_effective_permissions([direct], [role])

        assert [p.name for p in effective] == ["article.publish", "article.read"]
        assert effective[0].id == "direct"

    def test_filter_and_group(self):
        scoped = PermissionDataFactory.create_team_permission(["T1"])
        role = PermissionDataFactory.create_editor_role()
        permissions = role.permissions + [scoped]

        assert [p.name for p in filter_permissions(permissions, resource="article", has_conditions=True)] == [
            "article.publish"
        ]
        assert filter_permissions(permissions, scope=ScopeType.TEAM) == [scoped]
        assert set(group_permissions_by_resource(permissions)) == {"article", "report"}

    def test_compare_permission_sets(self):
        read = PermissionDataFactory.permission("a.read")
        write = PermissionDataFactory.permission("a.write")
        changed_write = PermissionDataFactory.permission(
            "a.write", conditions=[Condition("resource.id", ConditionOperator.EQ, "x")]
        )
        delete = PermissionDataFactory.permission("a.delete")

        diff = compare_permission_sets([read, write], [read, changed_write, delete])

        assert diff.added == [delete]
        assert diff.removed == []
        assert diff.common == [read]
        assert diff.modified == [(write, changed_write)]

    def test_sort_permissions(self):
        publish = PermissionDataFactory.permission("article.publish")
        delete = PermissionDataFactory.permission("comment.delete")
        archive = PermissionDataFactory.permission("blog.archive")
        permissions = [publish, delete, archive]

        assert sort_permissions(permissions) == [publish, archive, delete]
        assert sort_permissions(permissions, "resource") == [publish, archive, delete]
        assert sort_permissions(permissions, "action") == [archive, delete, publish]
        assert sort_permissions(permissions, "id") == permissions
        assert permissions == [publish, delete, archive]

    def test_create_permission_hierarchy(self):
        read = PermissionDataFactory.permission("article.read")
        first_publish = PermissionDataFactory.permission("article.publish", permission_id="first")
        second_publish = PermissionDataFactory.permission("article.publish", permission_id="second")
        view = PermissionDataFactory.permission("report.view")

        hierarchy = create_permission_hierarchy([read, first_publish, view, second_publish])

        assert hierarchy == {
            "article": {"read": read, "publish": second_publish},
            "report": {"view": view},
        }
        assert create_permission_hierarchy([]) == {}


class TestValidation:
    """Test cases for permission and role validation."""

    def test_valid_permissions(self):
        result = validate_permissions(PermissionDataFactory.create_editor_role().permissions)

        assert result.is_valid is True
        assert result.errors == []

    def test_missing_fields(self):
        result = validate_permissions([Permission(id="", name="", resource="a", action="")])

        codes = {issue.code for issue in result.errors}
        assert {"MISSING_ID", "MISSING_NAME", "MISSING_ACTION"} <= codes
        assert result.is_valid is False

    def test_name_mismatch_is_warning(self):
        result = validate_permissions([Permission(id="p1", name="edit-article", resource="article", action="edit")])

        assert result.is_valid is True
        assert [issue.code for issue in result.warnings] == ["NAME_MISMATCH"]

    def test_condition_warnings(self):
        permission = PermissionDataFactory.permission("a.read", conditions=[
            Condition("resource.x", "approx", 1),
            Condition("resource.y", ConditionOperator.EQ, None),
        ])

        result = validate_permissions([permission])

        assert {issue.code for issue in result.warnings} == {"UNKNOWN_CONDITION_OPERATOR", "NULL_CONDITION_VALUE"}

    def test_duplicate_permissions(self):
        permission = PermissionDataFactory.permission("a.read")

        result = validate_permissions([permission, permission])

        assert [issue.code for issue in result.errors] == ["DUPLICATE_PERMISSION"]

    def test_validate_roles(self):
        bad_permission = Permission(id="p1", name="a.read", resource="a", action="")
        roles = [
            Role(id="", name="viewer", permissions=[bad_permission]),
            Role(id="r2", name="viewer"),
        ]

        result = validate_roles(roles)
        codes = [issue.code for issue in result.errors]

        assert "MISSING_ID" in codes
        assert "MISSING_ACTION" in codes
        assert "DUPLICATE_ROLE" in codes
        assert any(issue.message.startswith("Role viewer: ") for issue in result.errors)

    def test_scope_from_dict(self):
        scope = Scope.from_dict({"type": "TEAM", "values": ["T1"]})

        assert scope.type == ScopeType.TEAM
        assert scope.excludes is None
