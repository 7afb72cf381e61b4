"""Exceptions raised across the health engine boundary."""

from typing import Any, List, Optional


class PlatformHealthError(Exception):
    """Base exception for the health engine."""


class RequestValidationError(PlatformHealthError):
    """Raised when a snapshot or test request is malformed."""

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class QueryRejectedError(RequestValidationError):
    """Raised when a custom query fails the query guard."""


class ProbeRegistrationError(PlatformHealthError):
    """Raised when a probe cannot be registered with the aggregator."""


class BackendError(PlatformHealthError):
    """Raised by backend clients when a call fails or returns garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
