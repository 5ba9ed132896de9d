"""
Permission events and their dispatcher.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger


class PermissionEventType(str, Enum):
    """Event types emitted by the permission manager."""
    PERMISSIONS_LOADED = "permissions_loaded"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_DENIED = "permission_denied"
    CACHE_CLEARED = "cache_cleared"


@dataclass
class PermissionEvent:
    """Event payload."""
    type: PermissionEventType
    user_id: str
    permission: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[PermissionEvent], Any]


class EventDispatcher:
    """Per-type handler registry.

    A handler that raises is logged and skipped; it never affects the
    decision that triggered the event or the other handlers.
    """

    def __init__(self, logger=None):
        self.logger = logger or get_logger("permissions.events")
        self._handlers: Dict[PermissionEventType, List[EventHandler]] = {}

    def subscribe(self, event_type: PermissionEventType, handler: EventHandler) -> None:
        self._handlers.setdefault(PermissionEventType(event_type), []).append(handler)

    def unsubscribe(self, event_type: PermissionEventType, handler: EventHandler) -> bool:
        handlers = self._handlers.get(PermissionEventType(event_type), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handler_count(self, event_type: Optional[PermissionEventType] = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(PermissionEventType(event_type), []))
        return sum(len(handlers) for handlers in self._handlers.values())

    def emit(self, event: PermissionEvent) -> None:
        # Copy so a handler may unsubscribe itself
        for handler in list(self._handlers.get(event.type, [])):
            try:
                handler(event)
            except Exception as e:
                self.logger.error(
                    "Event handler failed",
                    event_type=event.type.value,
                    user_id=event.user_id,
                    error=str(e)
                )
