"""
Permission manager: the public decision API.

Ties together the permission store, condition evaluation, scope
resolution, the decision cache and the event dispatcher. The decision
path is synchronous; only loading suspends, on the injected loader.
"""

import os
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from prometheus_client import REGISTRY

from shared.errors import PermissionErrorCode, PermissionEvaluationError, PermissionLoadError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .cache.evaluation_cache import CacheStats, EvaluationCache, build_cache_key
from .cache.strategies import get_cache_strategy
from .config import PermissionManagerConfig
from .events import EventDispatcher, EventHandler, PermissionEvent, PermissionEventType
from .rules.conditions import ConditionEvaluator
from .rules.helpers import create_permission_name, validate_permissions, validate_roles
from .rules.models import (
    CacheInfo, EnvironmentContext, EvaluationOptions, EvaluationResult, LoadOptions,
    PermissionContext, PermissionSource, PermissionSummary, PermissionSummaryEntry,
    RoleSource, RoleSummary, ScopeType
)
from .rules.scope import ScopeResolver
from .store import PermissionLike, PermissionLoader, PermissionStore, PrincipalPermissions, RoleLike

ContextLike = Union[PermissionContext, Mapping[str, Any]]

REASON_GRANTED = "Permission granted"
REASON_CONDITIONS_MET = "All conditions satisfied"
REASON_CONDITIONS_NOT_MET = "Conditions not satisfied"
REASON_EVALUATION_ERROR = "Evaluation error"

ADMIN_ROLES = ("admin", "superAdmin")
SYSTEM_ROLE = "system"

LOCALTIME_PATH = "/etc/localtime"


def _is_zone_key(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def local_timezone_name() -> str:
    """IANA name of the host zone (e.g. "Europe/Berlin"), falling back to "UTC".

    Checks ``TZ`` first, then where ``/etc/localtime`` points inside a
    zoneinfo tree. Abbreviations such as "CEST" are never returned.
    """
    tz = os.environ.get("TZ", "").lstrip(":")
    if tz and "/" in tz and _is_zone_key(tz):
        return tz

    target = os.path.realpath(LOCALTIME_PATH)
    marker = "zoneinfo/"
    if marker in target:
        candidate = target.split(marker, 1)[1]
        if _is_zone_key(candidate):
            return candidate

    return "UTC"


class PermissionManager:
    """Authorization decisions for loaded principals.

    Cached decisions are keyed on a narrowed context (user, permission,
    resource id, action, ip, country). Contexts that differ only elsewhere
    share a cached decision; pass ``EvaluationOptions(use_cache=False)``
    when that approximation is not acceptable.

    Evaluations racing an in-flight ``load_user_permissions`` for the same
    principal may observe either the old or the new data.
    """

    def __init__(
        self,
        config: Optional[PermissionManagerConfig] = None,
        loader: Optional[PermissionLoader] = None,
        *,
        store: Optional[PermissionStore] = None,
        cache: Optional[EvaluationCache] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        scope_resolver: Optional[ScopeResolver] = None,
        events: Optional[EventDispatcher] = None,
        metrics: Optional[MetricsCollector] = None,
        logger=None,
    ):
        self.config = config or PermissionManagerConfig()
        self.logger = logger or get_logger("permissions.manager")
        # Only an exposed manager registers its metrics process-wide
        registry = REGISTRY if self.config.metrics_port else None
        self.metrics = metrics or MetricsCollector(self.config.service_name, registry)

        self.store = store or PermissionStore(loader)
        self.cache = cache or EvaluationCache(
            max_size=self.config.max_cache_size,
            default_ttl=self.config.cache_ttl_seconds,
            strategy=get_cache_strategy(self.config.cache_strategy),
            cleanup_interval=self.config.cleanup_interval_seconds,
            metrics=self.metrics,
        )
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.scope_resolver = scope_resolver or ScopeResolver(self.config.default_scope)
        self.events = events or EventDispatcher()

        self.logger.info(
            "PermissionManager initialized",
            cache_enabled=self.config.cache_enabled,
            cache_ttl_seconds=self.config.cache_ttl_seconds,
            max_cache_size=self.config.max_cache_size,
            strict_mode=self.config.strict_mode,
            default_scope=self.config.default_scope.value
        )

    async def start(self):
        """Start background cache maintenance and, if configured, the metrics endpoint."""
        if self.config.cache_enabled:
            await self.cache.start()
        if self.config.metrics_port:
            self.metrics.start_metrics_server(self.config.metrics_port)
            self.logger.info("Metrics endpoint started", port=self.config.metrics_port)

    async def stop(self):
        """Stop background cache maintenance."""
        await self.cache.stop()

    # ===== Loading =====

    async def load_user_permissions(
        self,
        user_id: str,
        options: Optional[LoadOptions] = None
    ) -> PrincipalPermissions:
        """Fetch and install a principal's roles and direct permissions.

        Raises PermissionLoadError (LOAD_FAILED) when the loader fails; the
        previously installed data, if any, is left untouched.
        """
        options = options or LoadOptions()
        self.logger.debug("Loading user permissions", user_id=user_id)

        try:
            record = await self.store.load(user_id, options)
        except PermissionLoadError:
            self.metrics.record_load("failed")
            self.metrics.record_error(PermissionErrorCode.LOAD_FAILED.value)
            raise

        self.metrics.record_load("success")
        self._after_install(record, options.warm_cache)
        return record

    def set_user_permissions(
        self,
        user_id: str,
        roles: Iterable[RoleLike] = (),
        permissions: Iterable[PermissionLike] = (),
        warm_cache: bool = True
    ) -> PrincipalPermissions:
        """Install roles and permissions handed over by the host, without a loader."""
        record = self.store.install(user_id, roles, permissions)
        self._after_install(record, warm_cache)
        return record

    def clear_user_permissions(self, user_id: str) -> None:
        """Forget a principal's data and every decision cached for it."""
        self.store.clear(user_id)
        removed = self.clear_user_cache(user_id)

        self._emit(PermissionEventType.CACHE_CLEARED, user_id, metadata={"removed_entries": removed})
        self.logger.debug("User permissions cleared", user_id=user_id)

    # ===== Checking =====

    def has_permission(self, user_id: str, permission_name: str, context: Optional[ContextLike] = None) -> bool:
        result = self.evaluate_permission(
            user_id,
            permission_name,
            context,
            EvaluationOptions(use_cache=self.config.cache_enabled, include_reasons=False)
        )
        return result.granted

    def has_role(self, user_id: str, role_name: str) -> bool:
        return self.store.has_role(user_id, role_name)

    def has_any_permission(
        self,
        user_id: str,
        permission_names: Iterable[str],
        context: Optional[ContextLike] = None
    ) -> bool:
        return any(self.has_permission(user_id, name, context) for name in permission_names)

    def has_all_permissions(
        self,
        user_id: str,
        permission_names: Iterable[str],
        context: Optional[ContextLike] = None
    ) -> bool:
        return all(self.has_permission(user_id, name, context) for name in permission_names)

    def check_permission(
        self,
        user_id: str,
        resource: str,
        action: str,
        context: Optional[ContextLike] = None
    ) -> bool:
        return self.has_permission(user_id, create_permission_name(resource, action), context)

    def is_admin(self, user_id: str) -> bool:
        return any(self.has_role(user_id, role) for role in ADMIN_ROLES)

    def is_system_user(self, user_id: str) -> bool:
        return self.has_role(user_id, SYSTEM_ROLE)

    def evaluate_permission(
        self,
        user_id: str,
        permission_name: str,
        context: Optional[ContextLike] = None,
        options: Optional[EvaluationOptions] = None
    ) -> EvaluationResult:
        """Decide one permission for one principal.

        Never fails open: an unexpected fault yields a denial, or raises
        PermissionEvaluationError (EVALUATION_FAILED) in strict mode.
        """
        options = options or EvaluationOptions()
        start_time = time.time()

        try:
            full_context = self._build_context(user_id, context)
            cache_key = build_cache_key(user_id, permission_name, full_context)

            if self.config.cache_enabled and options.use_cache:
                cached = self.cache.get(cache_key)
                if cached is not None:
                    duration = time.time() - start_time
                    self.metrics.record_permission_check("granted" if cached else "denied", duration)
                    return EvaluationResult(
                        granted=cached,
                        cache_hit=True,
                        evaluation_time_ms=duration * 1000
                    )

            result = self._evaluate_uncached(user_id, permission_name, full_context, options)

            if self.config.cache_enabled:
                self.cache.set(cache_key, result.granted, options.ttl, full_context)

        except Exception as e:
            return self._handle_evaluation_error(user_id, permission_name, e, start_time)

        duration = time.time() - start_time
        result.evaluation_time_ms = duration * 1000
        self.metrics.record_permission_check("granted" if result.granted else "denied", duration)

        self._emit(
            PermissionEventType.PERMISSION_GRANTED if result.granted else PermissionEventType.PERMISSION_DENIED,
            user_id,
            permission=permission_name,
            metadata={"reason": result.reason}
        )

        log = self.logger.info if self.config.enable_debug_mode else self.logger.debug
        log(
            "Permission evaluated",
            user_id=user_id,
            permission=permission_name,
            granted=result.granted,
            reason=result.reason
        )

        return result

    def evaluate_permissions(
        self,
        user_id: str,
        permission_names: Iterable[str],
        context: Optional[ContextLike] = None,
        options: Optional[EvaluationOptions] = None
    ) -> Dict[str, EvaluationResult]:
        """Evaluate several permissions under one context."""
        return {
            name: self.evaluate_permission(user_id, name, context, options)
            for name in permission_names
        }

    # ===== Summary =====

    def get_permission_summary(self, user_id: str) -> Optional[PermissionSummary]:
        """Roles and effective permissions held by a principal, or None if it holds nothing."""
        record = self.store.get(user_id)
        if record is None or (not record.roles and not record.permissions):
            return None

        entries: Dict[str, PermissionSummaryEntry] = {}
        scopes: List[ScopeType] = []

        def _add(permission, source: PermissionSource):
            if permission.name in entries:
                return
            scope_type = None
            if permission.scope is not None:
                scope_type = permission.scope.type or self.config.default_scope
                if scope_type not in scopes:
                    scopes.append(scope_type)
            entries[permission.name] = PermissionSummaryEntry(
                name=permission.name,
                resource=permission.resource,
                action=permission.action,
                source=source,
                inherited=False,
                has_conditions=bool(permission.conditions),
                scope=scope_type
            )

        for permission in record.permissions:
            _add(permission, PermissionSource.DIRECT)
        for role in record.roles:
            for permission in role.permissions:
                _add(permission, PermissionSource.ROLE)

        return PermissionSummary(
            user_id=user_id,
            roles=[
                RoleSummary(
                    id=role.id,
                    name=role.name,
                    source=RoleSource.SYSTEM if role.is_system else RoleSource.DIRECT,
                    inherited=role.parent_role is not None,
                    permission_count=len(role.permissions)
                )
                for role in record.roles
            ],
            permissions=list(entries.values()),
            effective_permissions=list(entries),
            scopes=scopes,
            last_updated=record.loaded_at,
            cache_info=self.get_cache_info()
        )

    # ===== Cache management =====

    def get_cache_info(self) -> CacheInfo:
        return self.cache.get_info()

    def get_stats(self) -> CacheStats:
        return self.cache.get_stats()

    def clear_cache(self) -> None:
        self.cache.clear()

    def clear_user_cache(self, user_id: str) -> int:
        removed = self.cache.delete_by_user_id(user_id)
        self.logger.debug("User cache cleared", user_id=user_id, removed=removed)
        return removed

    # ===== Events =====

    def add_event_listener(self, event_type: PermissionEventType, handler: EventHandler) -> None:
        self.events.subscribe(event_type, handler)

    def remove_event_listener(self, event_type: PermissionEventType, handler: EventHandler) -> bool:
        return self.events.unsubscribe(event_type, handler)

    # ===== Internals =====

    def _after_install(self, record: PrincipalPermissions, warm_cache: bool):
        self._log_validation_issues(record)

        if self.config.cache_enabled and warm_cache:
            self._warmup_user_cache(record.user_id)

        self._emit(
            PermissionEventType.PERMISSIONS_LOADED,
            record.user_id,
            metadata={"role_count": len(record.roles), "permission_count": len(record.permissions)}
        )

        self.logger.info(
            "User permissions loaded",
            user_id=record.user_id,
            role_count=len(record.roles),
            permission_count=len(record.permissions)
        )

    def _log_validation_issues(self, record: PrincipalPermissions):
        for validation in (validate_permissions(record.permissions), validate_roles(record.roles)):
            for issue in validation.errors + validation.warnings:
                self.logger.warning(
                    "Permission data issue",
                    user_id=record.user_id,
                    code=issue.code,
                    message=issue.message
                )

    def _warmup_user_cache(self, user_id: str):
        for permission_name in self.config.warmup_permissions:
            self.evaluate_permission(user_id, permission_name, None, EvaluationOptions(use_cache=False))

    def _evaluate_uncached(
        self,
        user_id: str,
        permission_name: str,
        context: PermissionContext,
        options: EvaluationOptions
    ) -> EvaluationResult:
        permission = self.store.find_permission(user_id, permission_name)
        if permission is None:
            return EvaluationResult(granted=False, reason=f"Permission not found: {permission_name}")

        scope_decision = self.scope_resolver.resolve(permission, context)
        if not scope_decision.allowed:
            return EvaluationResult(granted=False, reason=scope_decision.reason)

        if not permission.conditions:
            return EvaluationResult(granted=True, reason=REASON_GRANTED)

        granted, condition_results = self.condition_evaluator.evaluate(permission.conditions, context)
        if granted:
            reason = REASON_CONDITIONS_MET
        else:
            reason = self.condition_evaluator.explain_failure(condition_results) or REASON_CONDITIONS_NOT_MET

        return EvaluationResult(
            granted=granted,
            reason=reason,
            condition_results=condition_results if options.include_reasons else None
        )

    def _handle_evaluation_error(
        self,
        user_id: str,
        permission_name: str,
        error: Exception,
        start_time: float
    ) -> EvaluationResult:
        self.logger.error(
            "Permission evaluation failed",
            user_id=user_id,
            permission=permission_name,
            error=str(error)
        )
        self.metrics.record_error(PermissionErrorCode.EVALUATION_FAILED.value)
        self.metrics.record_permission_check("error", time.time() - start_time)

        if self.config.strict_mode:
            raise PermissionEvaluationError(
                f"Failed to evaluate permission {permission_name}: {error}",
                {"user_id": user_id, "permission": permission_name}
            ) from error

        return EvaluationResult(
            granted=False,
            reason=REASON_EVALUATION_ERROR,
            evaluation_time_ms=(time.time() - start_time) * 1000
        )

    def _build_context(self, user_id: str, context: Optional[ContextLike]) -> PermissionContext:
        """Copy the caller's context and merge in environment defaults."""
        if context is None:
            base = PermissionContext()
        elif isinstance(context, PermissionContext):
            base = context
        else:
            base = PermissionContext.from_dict(context)

        environment = base.environment or EnvironmentContext()
        time_info = {
            "timestamp": datetime.now(timezone.utc),
            "timezone": self._timezone_name(),
            **(environment.time or {}),
        }

        return replace(
            base,
            user_id=base.user_id or user_id,
            environment=replace(environment, time=time_info),
            metadata=dict(base.metadata or {})
        )

    def _timezone_name(self) -> str:
        if self.config.default_timezone:
            return self.config.default_timezone
        return local_timezone_name()

    def _emit(
        self,
        event_type: PermissionEventType,
        user_id: str,
        permission: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        self.events.emit(PermissionEvent(
            type=event_type,
            user_id=user_id,
            permission=permission,
            metadata=metadata or {}
        ))


def create_permission_manager(
    config: Optional[PermissionManagerConfig] = None,
    loader: Optional[PermissionLoader] = None,
    **overrides
) -> PermissionManager:
    """Build an explicitly owned manager; hosts wanting one shared instance keep the result."""
    if config is None:
        config = PermissionManagerConfig(**overrides)
    elif overrides:
        config = config.model_copy(update=overrides)
    return PermissionManager(config, loader)
