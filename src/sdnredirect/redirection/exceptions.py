"""
Redirection error taxonomy.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""


class RedirectionError(Exception):
    """Base exception for redirection errors."""
    pass


class NotFoundError(RedirectionError):
    """A referenced parent or update target does not exist.

    Removing something that is already absent is a no-op, never this error.
    """
    pass


class PortNotFoundError(RedirectionError):
    """A network port referenced by a port or hook operation cannot be resolved.

    Kept apart from NotFoundError: callers usually react by registering the
    element again rather than retrying the hook operation.
    """

    def __init__(self, element_id: str | None, message: str | None = None):
        self.element_id = element_id
        super().__init__(message or f"Network port not found: {element_id}")


class BackendFailure(RedirectionError):
    """The controller rejected or failed the request."""
    pass


class HookConflictError(BackendFailure):
    """Hook ordering or uniqueness would be violated."""
    pass


class UnsupportedCapabilityError(BackendFailure):
    """The backend does not offer the requested encapsulation or failure policy."""
    pass
