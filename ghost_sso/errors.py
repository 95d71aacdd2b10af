"""
Error taxonomy for the SSO bridge.

Every failure the callback handlers can run into is one of the classes
below. Each carries a stable ``ErrorCode`` so the request boundary can
pick a response without inspecting message strings, and so the browser
only ever sees the code plus a generic sentence.
"""

import logging
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Codes surfaced to browsers in redirects and error pages."""

    UPSTREAM_AUTH = "upstream_auth"
    INTEGRATION = "integration_error"
    USER_NOT_FOUND = "user_not_found"
    FATAL_CONFIG = "fatal_config"
    DATA_ACCESS = "data_access"
    FATAL = "fatal"


# =============================================================================
# Exceptions
# =============================================================================

class BridgeError(Exception):
    """Base exception for all handled bridge failures"""

    code: ErrorCode = ErrorCode.FATAL


class UpstreamAuthError(BridgeError):
    """Identity provider exchange failed (bad, expired or replayed code, network)."""

    code = ErrorCode.UPSTREAM_AUTH


class IntegrationError(BridgeError):
    """Ghost Admin API unreachable or answered with an unexpected shape.

    Never treated as "no member found": doing so would provision a
    duplicate member on a transient fault.
    """

    code = ErrorCode.INTEGRATION


class AuthorizationDenied(BridgeError):
    """Authenticated identity has no loginable staff record."""

    code = ErrorCode.USER_NOT_FOUND


class ConfigurationFault(BridgeError):
    """A shared secret or required configuration value is missing."""

    code = ErrorCode.FATAL_CONFIG


class DataAccessError(BridgeError):
    """
    Persistence failure on the shared Ghost database.

    Args:
        message: Short description (never includes bound parameters)
        driver_code: Error number reported by the database driver, if any
    """

    code = ErrorCode.DATA_ACCESS

    def __init__(self, message: str, driver_code: Optional[int] = None):
        super().__init__(message)
        self.driver_code = driver_code


def error_code_for(exc: BaseException) -> ErrorCode:
    """Map any exception to the code shown to the browser."""
    if isinstance(exc, BridgeError):
        return exc.code
    return ErrorCode.FATAL


def log_callback_failure(logger: logging.Logger, realm: str, exc: BaseException) -> ErrorCode:
    """
    Log a failed callback at the level its kind deserves.

    Missing configuration is an operational alert; a rejected identity is
    routine; anything unexpected keeps its traceback.

    Returns:
        The code to show the browser
    """
    code = error_code_for(exc)
    extra = {"realm": realm, "error_code": code.value, "error_type": type(exc).__name__}

    if isinstance(exc, ConfigurationFault):
        logger.critical(f"Fatal configuration: {exc}", extra=extra)
    elif isinstance(exc, (AuthorizationDenied, UpstreamAuthError)):
        logger.warning(f"Login rejected: {exc}", extra=extra)
    elif isinstance(exc, BridgeError):
        logger.error(f"Login failed: {exc}", extra=extra)
    else:
        logger.error("Unexpected login failure", extra=extra, exc_info=exc)
    return code


__all__ = [
    "ErrorCode",
    "BridgeError",
    "UpstreamAuthError",
    "IntegrationError",
    "AuthorizationDenied",
    "ConfigurationFault",
    "DataAccessError",
    "error_code_for",
    "log_callback_failure",
]
