"""Error taxonomy for the DWN client.

Construction-time errors (`ValidationError`, `ImmutablePropertyError`) are raised
before anything is dispatched. Outcomes the protocol itself defines (401, 404)
are returned in a status-coded reply instead of being raised; only
`TransportError` and `OperationError` fail a dispatching call.
"""

from __future__ import annotations


class DwnError(Exception):
    """Base class for all client errors."""
    pass


class ValidationError(DwnError):
    """Malformed request: unparseable data or missing required fields."""
    pass


class ImmutablePropertyError(DwnError):
    """An update attempted to change a property fixed at creation."""

    def __init__(self, name: str, message: str = ""):
        self.name = name
        super().__init__(message or f"{name} is an immutable property. Its value cannot be changed.")


class AuthorizationError(DwnError):
    """No usable signing key, or a signature failed to verify."""
    pass


class NotFoundError(DwnError):
    """The target has no such record, or a DID could not be resolved."""
    pass


class OperationError(DwnError):
    """Invalid use of a handle's lifecycle (e.g. delete after delete)."""

    def __init__(self, message: str):
        super().__init__(f"Operation failed: {message}")


class TransportError(DwnError):
    """Network or endpoint failure; never coerced into a status code."""

    def __init__(self, message: str, endpoint: str = ""):
        self.endpoint = endpoint
        super().__init__(f"{message} ({endpoint})" if endpoint else message)
