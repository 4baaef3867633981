"""
Error taxonomy for Leadsmith.

Step-local failures (timeouts, throttling, bad payloads) are folded into the
lead's enrichment result as strings and never raised. The exceptions below are
reserved for failures a caller has to decide about: lock acquisition,
persistence and configuration.
"""

from enum import Enum
from typing import Any, Dict, Optional

from leadsmith.utils.logger import mask_field


# ============================================================================
# Error Codes
# ============================================================================


class ErrorCode(Enum):
    """Authoritative error codes for all components."""

    HTTP_429 = "HTTP_429"
    HTTP_TIMEOUT = "HTTP_TIMEOUT"
    HTTP_ERROR = "HTTP_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"
    UNKNOWN = "UNKNOWN"


RETRYABLE_CODES = {
    ErrorCode.HTTP_429,
    ErrorCode.HTTP_TIMEOUT,
    ErrorCode.NETWORK_ERROR,
    ErrorCode.LOCK_TIMEOUT,
}


# ============================================================================
# Exceptions
# ============================================================================


class LeadsmithError(Exception):
    """Base exception carrying an ErrorCode."""

    code = ErrorCode.UNKNOWN

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class LockTimeout(LeadsmithError):
    """Lock could not be acquired before the timeout. Retryable."""

    code = ErrorCode.LOCK_TIMEOUT


class PersistenceError(LeadsmithError):
    """A durable read or write failed."""

    code = ErrorCode.PERSISTENCE_ERROR


class ConfigError(LeadsmithError):
    """Settings file exists but cannot be parsed or validated."""

    code = ErrorCode.CONFIG_ERROR


def build_error(
    code: ErrorCode,
    exc: Optional[Exception] = None,
    context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build an error record with PII masking.

    Args:
        code: Error code from ErrorCode enum
        exc: Exception that caused the error
        context: Additional context (email/phone/linkedin values get masked)

    Returns:
        Error dict with code, message, retryable flag and optional context
    """
    error: Dict[str, Any] = {
        "code": code.value,
        "retryable": code in RETRYABLE_CODES,
    }

    if exc:
        message = str(exc)
        if len(message) > 200:
            message = message[:197] + "..."
        error["message"] = message
    else:
        error["message"] = f"Error: {code.value}"

    if context:
        error["context"] = {key: mask_field(key, value) for key, value in context.items()}

    return error
