"""
Per-principal permission storage and the loader contract.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Union

from shared.errors import PermissionLoadError
from shared.logging import get_logger
from .rules.models import LoadOptions, Permission, Role

RoleLike = Union[Role, Mapping[str, Any]]
PermissionLike = Union[Permission, Mapping[str, Any]]


class PermissionLoader(Protocol):
    """Backend that supplies roles and direct permissions for a principal.

    Both calls are asynchronous and may raise; the engine does not care
    where the data lives. Roles must arrive flattened: parent-role
    permissions are not merged by the engine.
    """

    async def load_roles(self, user_id: str, options: LoadOptions) -> Iterable[RoleLike]:
        ...

    async def load_direct_permissions(self, user_id: str, options: LoadOptions) -> Iterable[PermissionLike]:
        ...


@dataclass
class PrincipalPermissions:
    """Roles and direct permissions held by one principal."""
    user_id: str
    roles: List[Role] = field(default_factory=list)
    permissions: List[Permission] = field(default_factory=list)
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _coerce_roles(roles: Iterable[RoleLike]) -> List[Role]:
    return [role if isinstance(role, Role) else Role.from_dict(role) for role in roles or []]


def _coerce_permissions(permissions: Iterable[PermissionLike]) -> List[Permission]:
    return [
        permission if isinstance(permission, Permission) else Permission.from_dict(permission)
        for permission in permissions or []
    ]


class PermissionStore:
    """In-memory holder of loaded roles and direct permissions.

    Each principal's record is replaced wholesale: a load builds the new
    record completely, then swaps it in with a single assignment. Readers
    racing an in-flight load see either the old or the new record.
    """

    def __init__(self, loader: Optional[PermissionLoader] = None):
        self.loader = loader
        self.logger = get_logger("permissions.store")
        self._records: Dict[str, PrincipalPermissions] = {}

    async def load(self, user_id: str, options: Optional[LoadOptions] = None) -> PrincipalPermissions:
        """Fetch roles and direct permissions concurrently, then install them."""
        options = options or LoadOptions()

        if self.loader is None:
            raise PermissionLoadError(
                "No permission loader configured",
                {"user_id": user_id}
            )

        start_time = time.time()
        try:
            roles, permissions = await asyncio.gather(
                self.loader.load_roles(user_id, options),
                self.loader.load_direct_permissions(user_id, options),
            )
            record = PrincipalPermissions(
                user_id=user_id,
                roles=_coerce_roles(roles),
                permissions=_coerce_permissions(permissions),
            )
        except Exception as e:
            self.logger.error("Permission load failed", user_id=user_id, error=str(e))
            raise PermissionLoadError(
                f"Failed to load permissions: {e}",
                {"user_id": user_id}
            ) from e

        self._records[user_id] = record

        self.logger.debug(
            "Permissions installed",
            user_id=user_id,
            role_count=len(record.roles),
            permission_count=len(record.permissions),
            load_time_ms=(time.time() - start_time) * 1000
        )
        return record

    def install(
        self,
        user_id: str,
        roles: Iterable[RoleLike] = (),
        permissions: Iterable[PermissionLike] = ()
    ) -> PrincipalPermissions:
        """Install data handed over directly, with the same swap semantics as a load."""
        record = PrincipalPermissions(
            user_id=user_id,
            roles=_coerce_roles(roles),
            permissions=_coerce_permissions(permissions),
        )
        self._records[user_id] = record
        return record

    def get(self, user_id: str) -> Optional[PrincipalPermissions]:
        return self._records.get(user_id)

    def get_roles(self, user_id: str) -> List[Role]:
        record = self._records.get(user_id)
        return record.roles if record else []

    def get_direct_permissions(self, user_id: str) -> List[Permission]:
        record = self._records.get(user_id)
        return record.permissions if record else []

    def find_permission(self, user_id: str, permission_name: str) -> Optional[Permission]:
        """Direct permissions first, then each role in order; first match wins."""
        record = self._records.get(user_id)
        if record is None:
            return None

        for permission in record.permissions:
            if permission.name == permission_name:
                return permission

        for role in record.roles:
            for permission in role.permissions:
                if permission.name == permission_name:
                    return permission

        return None

    def has_role(self, user_id: str, role_name: str) -> bool:
        return any(role.name == role_name for role in self.get_roles(user_id))

    def clear(self, user_id: str) -> bool:
        return self._records.pop(user_id, None) is not None

    def user_ids(self) -> List[str]:
        return list(self._records)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._records


class StaticPermissionLoader:
    """Loader backed by in-memory mappings of user id to roles/permissions."""

    def __init__(
        self,
        roles: Optional[Mapping[str, Iterable[RoleLike]]] = None,
        permissions: Optional[Mapping[str, Iterable[PermissionLike]]] = None
    ):
        self.roles: Dict[str, List[RoleLike]] = {k: list(v) for k, v in (roles or {}).items()}
        self.permissions: Dict[str, List[PermissionLike]] = {k: list(v) for k, v in (permissions or {}).items()}

    async def load_roles(self, user_id: str, options: LoadOptions) -> List[RoleLike]:
        return list(self.roles.get(user_id, []))

    async def load_direct_permissions(self, user_id: str, options: LoadOptions) -> List[PermissionLike]:
        return list(self.permissions.get(user_id, []))
