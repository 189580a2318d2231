# backend/errors.py
"""
DVR Bridge Exception Hierarchy

Custom exceptions for discovery, the device registry and the session bridge,
with recovery hints.
"""

from enum import Enum
from typing import Any, Dict, Optional


class DvrBridgeError(Exception):
    """Base exception for all DVR Bridge errors"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        recovery_hint: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.details:
            result["details"] = self.details
        if self.recovery_hint:
            result["recoveryHint"] = self.recovery_hint
        return result


# =============================================================================
# REGISTRY ERRORS
# =============================================================================

class NotFoundError(DvrBridgeError):
    """Device or stream is absent"""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            details={"resource": resource, "id": resource_id},
            recoverable=True,
            recovery_hint="Run discovery or add the device manually"
        )
        self.resource = resource
        self.resource_id = resource_id


class PersistenceError(DvrBridgeError):
    """Registry snapshot could not be written or read"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            details=details,
            recoverable=False,
            recovery_hint="Check database_url and that the data directory is writable"
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(DvrBridgeError):
    """Input validation failed"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            details={"field": field, "value": value, **(details or {})},
            recoverable=True,
            recovery_hint="Check input values and try again"
        )
        self.field = field


# =============================================================================
# AUTHENTICATION ERRORS
# =============================================================================

class AuthReason(str, Enum):
    """Why a stream access token was rejected"""
    MISSING_TOKEN = "missing_token"
    EXPIRED = "expired"
    INVALID = "invalid"


class AuthError(DvrBridgeError):
    """Access token missing, expired or invalid"""

    _MESSAGES = {
        AuthReason.MISSING_TOKEN: "Authentication token required",
        AuthReason.EXPIRED: "Token expired",
        AuthReason.INVALID: "Invalid token",
    }

    def __init__(self, reason: AuthReason):
        super().__init__(
            message=self._MESSAGES[reason],
            details={"reason": reason.value},
            recoverable=True,
            recovery_hint="Request a fresh token for the camera"
        )
        self.reason = reason


# =============================================================================
# UPSTREAM ERRORS
# =============================================================================

class UpstreamUnavailableError(DvrBridgeError):
    """Delegated media engine unreachable or erroring"""

    def __init__(
        self,
        operation: str,
        message: str = "Media engine unavailable",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=f"{message} ({operation})",
            details={"operation": operation, **(details or {})},
            recoverable=True,
            recovery_hint="Verify go2rtc is running and go2rtc_api_url is correct"
        )
        self.operation = operation


# =============================================================================
# DISCOVERY ERRORS
# =============================================================================

class NetworkProbeError(DvrBridgeError):
    """Scanner-local probe failure; always swallowed into an empty result"""

    def __init__(self, scanner: str, message: str = "Network probe failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"{scanner}: {message}",
            details={"scanner": scanner, **(details or {})},
            recoverable=True,
            recovery_hint="Check network permissions and firewall settings"
        )
        self.scanner = scanner
