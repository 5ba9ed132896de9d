"""
Shared error handling for the Access Permissions engine.
"""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class PermissionErrorCode(str, Enum):
    """Error codes raised by the permission engine."""
    LOAD_FAILED = "LOAD_FAILED"
    EVALUATION_FAILED = "EVALUATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"


class AccessControlException(Exception):
    """Base exception for the permission engine."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code.value if isinstance(code, Enum) else code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class PermissionLoadError(AccessControlException):
    """Loading roles or permissions for a principal failed."""

    def __init__(self, message: str = "Permission load failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(PermissionErrorCode.LOAD_FAILED, message, details)


class PermissionEvaluationError(AccessControlException):
    """Unexpected fault while evaluating a permission (strict mode only)."""

    def __init__(self, message: str = "Permission evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(PermissionErrorCode.EVALUATION_FAILED, message, details)


class ConfigurationError(AccessControlException):
    """Engine misconfiguration."""

    def __init__(self, message: str = "Configuration error", details: Optional[Dict[str, Any]] = None):
        super().__init__(PermissionErrorCode.CONFIGURATION_ERROR, message, details)

