"""
Error types shared by the Jira client, the store adapter and the service layer.
"""
from typing import Optional


class WorklogError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(WorklogError):
    """Raised when required configuration is missing or malformed."""


class RemoteRequestError(WorklogError):
    """Non-2xx response from the Jira REST API."""

    def __init__(self, status: int, body: str = ''):
        self.status = status
        self.body = body or ''
        super().__init__(f"Jira request failed ({status}): {self.body}")


class StoreError(WorklogError):
    """Failure reported by the persisted store; the message is the backend's."""


class SchemaMismatchError(StoreError):
    """Every row shape in the fallback chain was rejected by the store."""


class ValidationError(WorklogError):
    """Malformed input to a create/suggest/target operation."""

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"Invalid value for '{field}'")


class AuthorizationError(WorklogError):
    """Caller failed the authorization gate."""
