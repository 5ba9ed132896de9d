"""
Permission data models for the Access Permissions engine.
"""

from typing import Dict, Any, Optional, List, Union, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ConditionOperator(str, Enum):
    """Condition operators."""
    EQ = "eq"
    NE = "ne"
    IN = "in"
    NIN = "nin"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"

    @classmethod
    def _missing_(cls, value):
        # Accept "EQ", "eq", "Starts_With"
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class LogicalOperator(str, Enum):
    """Positional operator joining a condition to the conditions before it."""
    AND = "and"
    OR = "or"
    NOT = "not"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class ScopeType(str, Enum):
    """Scope dimensions."""
    USER = "user"
    ORGANIZATION = "organization"
    DEPARTMENT = "department"
    PROJECT = "project"
    TEAM = "team"
    GLOBAL = "global"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class RoleSource(str, Enum):
    """Where a held role came from."""
    SYSTEM = "system"
    DIRECT = "direct"


class PermissionSource(str, Enum):
    """Where an effective permission came from."""
    DIRECT = "direct"
    ROLE = "role"


# Tagged literal carried by a condition: string | number | bool | list (or null).
ScalarValue = Union[str, int, float, bool, None]
ConditionValue = Union[ScalarValue, List[Any]]


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first present key; loaders may speak snake_case or camelCase."""
    for key in keys:
        if key in data:
            return data[key]
    return default


@dataclass
class Condition:
    """Predicate over the evaluation context.

    ``operator`` is coerced to :class:`ConditionOperator` when recognised; an
    unrecognised operator is kept verbatim and evaluates to False.
    """
    field: str
    operator: Union[ConditionOperator, str]
    value: ConditionValue = None
    logical_operator: Optional[Union[LogicalOperator, str]] = None
    description: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.operator, ConditionOperator):
            try:
                self.operator = ConditionOperator(self.operator)
            except ValueError:
                pass
        if self.logical_operator is not None and not isinstance(self.logical_operator, LogicalOperator):
            # Anything but OR/NOT folds as AND
            try:
                self.logical_operator = LogicalOperator(self.logical_operator)
            except ValueError:
                pass

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        return cls(
            field=data["field"],
            operator=data["operator"],
            value=data.get("value"),
            logical_operator=_pick(data, "logical_operator", "logicalOperator"),
            description=data.get("description"),
        )


@dataclass
class Scope:
    """Include/exclude membership restriction keyed by a dimension.

    A missing ``type`` is filled in with the manager's configured default scope.
    """
    type: Optional[ScopeType] = None
    values: List[str] = field(default_factory=list)
    excludes: Optional[List[str]] = None

    def __post_init__(self):
        if self.type is not None and not isinstance(self.type, ScopeType):
            self.type = ScopeType(self.type)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Scope":
        return cls(
            type=data.get("type"),
            values=list(data.get("values") or []),
            excludes=list(data["excludes"]) if data.get("excludes") is not None else None,
        )


@dataclass
class Permission:
    """Named grant for a resource+action."""
    id: str
    name: str
    resource: str
    action: str
    conditions: List[Condition] = field(default_factory=list)
    scope: Optional[Scope] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Permission":
        scope = data.get("scope")
        return cls(
            id=data["id"],
            name=data["name"],
            resource=data["resource"],
            action=data["action"],
            conditions=[
                c if isinstance(c, Condition) else Condition.from_dict(c)
                for c in data.get("conditions") or []
            ],
            scope=scope if scope is None or isinstance(scope, Scope) else Scope.from_dict(scope),
            description=data.get("description"),
        )


@dataclass
class Role:
    """Named bundle of permissions assignable to a principal.

    ``parent_role`` is informational: loaders hand over roles already flattened.
    """
    id: str
    name: str
    permissions: List[Permission] = field(default_factory=list)
    parent_role: Optional[str] = None
    is_system: bool = False
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Role":
        return cls(
            id=data["id"],
            name=data["name"],
            permissions=[
                p if isinstance(p, Permission) else Permission.from_dict(p)
                for p in data.get("permissions") or []
            ],
            parent_role=_pick(data, "parent_role", "parentRole"),
            is_system=bool(_pick(data, "is_system", "isSystem", default=False)),
            description=data.get("description"),
        )


@dataclass
class EnvironmentContext:
    """Request environment: client address, geo location, time."""
    ip: Optional[str] = None
    location: Dict[str, Any] = field(default_factory=dict)
    time: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EnvironmentContext":
        return cls(
            ip=_pick(data, "ip", "ip_address", "ipAddress"),
            location=dict(data.get("location") or {}),
            time=dict(data.get("time") or {}),
        )


@dataclass
class PermissionContext:
    """Per-call evaluation context."""
    user_id: Optional[str] = None
    resource: Optional[Dict[str, Any]] = None
    action: Optional[str] = None
    environment: Optional[EnvironmentContext] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PermissionContext":
        """Build a context from a plain mapping; unknown top-level keys land in metadata."""
        known = {"user_id", "userId", "resource", "action", "environment", "metadata"}
        metadata = dict(data.get("metadata") or {})
        for key, value in data.items():
            if key not in known:
                metadata.setdefault(key, value)

        environment = data.get("environment")
        if environment is not None and not isinstance(environment, EnvironmentContext):
            environment = EnvironmentContext.from_dict(environment)

        return cls(
            user_id=_pick(data, "user_id", "userId"),
            resource=data.get("resource"),
            action=data.get("action"),
            environment=environment,
            metadata=metadata,
        )


@dataclass
class ConditionResult:
    """Outcome of a single condition."""
    condition: Condition
    result: bool
    actual_value: Any = None
    reason: Optional[str] = None


@dataclass
class EvaluationResult:
    """Result of a permission evaluation.

    Cache hits carry only ``granted`` (``cache_hit`` is set, ``reason`` is None).
    """
    granted: bool
    reason: Optional[str] = None
    condition_results: Optional[List[ConditionResult]] = None
    cache_hit: bool = False
    evaluation_time_ms: float = 0.0


@dataclass
class LoadOptions:
    """Options forwarded to the loader and controlling post-load warmup."""
    warm_cache: bool = True
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class EvaluationOptions:
    """Per-call evaluation options."""
    use_cache: bool = True
    ttl: Optional[int] = None
    include_reasons: bool = False


class CacheInfo(BaseModel):
    """Snapshot of the decision cache."""
    size: int = Field(..., description="Entries currently held, expired or not")
    entries: int = Field(..., description="Entries that have not expired")
    hit_rate: float = Field(0.0, description="hits / (hits + misses)")
    max_size: int = Field(..., description="Capacity before LRU eviction")
    last_cleared: Optional[datetime] = Field(None, description="When the cache was last fully cleared")


class RoleSummary(BaseModel):
    """Role entry in a permission summary."""
    id: str
    name: str
    source: RoleSource
    inherited: bool
    permission_count: int


class PermissionSummaryEntry(BaseModel):
    """Effective permission entry in a permission summary."""
    name: str
    resource: str
    action: str
    source: PermissionSource
    inherited: bool = False
    has_conditions: bool = False
    scope: Optional[ScopeType] = None


class PermissionSummary(BaseModel):
    """Everything a principal currently holds."""
    user_id: str
    roles: List[RoleSummary]
    permissions: List[PermissionSummaryEntry]
    effective_permissions: List[str]
    scopes: List[ScopeType]
    last_updated: datetime
    cache_info: CacheInfo
