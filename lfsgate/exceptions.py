"""Errors raised by the lfsgate server."""


class LFSGateError(Exception):
    """Base class for lfsgate errors."""


class InvalidOperation(LFSGateError):
    """The batch request asked for an operation other than upload/download."""

    def __init__(self, operation):
        self.operation = operation
        super().__init__(f"Invalid operation: {operation}")


class InvalidObjectKey(LFSGateError, ValueError):
    """A repository scope or oid cannot be turned into a storage key."""


class BackendUnavailable(LFSGateError):
    """The storage backend could not sign, list or delete."""


class MissingConfiguration(LFSGateError):
    """A required setting was not provided at startup."""


class AuthenticationFailure(LFSGateError):
    """The startup probe could not reach the bucket with the given credentials."""
