"""
Configuration for the permission manager.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from shared.config import BaseConfig
from .rules.models import ScopeType


class PermissionManagerConfig(BaseConfig):
    """Construction-time settings; every field can come from ``PERMISSIONS_*`` env vars."""

    model_config = SettingsConfigDict(
        env_prefix="PERMISSIONS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Caching
    cache_enabled: bool = Field(default=True, description="Cache decisions")
    cache_ttl_seconds: int = Field(default=300, ge=0, description="Default decision TTL")
    max_cache_size: int = Field(default=1000, ge=1, description="Entries before LRU eviction")
    cache_strategy: Optional[str] = Field(
        default=None,
        description="None, 'default', 'aggressive' or 'conservative'"
    )
    cleanup_interval_seconds: float = Field(default=60.0, gt=0, description="Expiry sweep interval")
    warmup_permissions: List[str] = Field(
        default_factory=lambda: ["profile.read", "profile.update"],
        description="Permissions evaluated right after a load to pre-warm the cache"
    )

    # Evaluation
    strict_mode: bool = Field(default=False, description="Raise EVALUATION_FAILED instead of denying")
    enable_debug_mode: bool = Field(default=False, description="Log every decision with its reason")
    default_scope: ScopeType = Field(default=ScopeType.USER, description="Scope type when a scope omits one")
    default_timezone: Optional[str] = Field(default=None, description="Timezone merged into contexts")

    # Observability
    metrics_port: Optional[int] = Field(default=None, description="Expose Prometheus metrics on start()")


def get_config(**overrides) -> PermissionManagerConfig:
    """Build configuration from the environment plus explicit overrides."""
    return PermissionManagerConfig(**overrides)
