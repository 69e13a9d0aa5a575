"""Typed errors raised by the vitals engine.

Each error carries a stable ``code`` so an outer transport layer can map
not-found, access and persistence failures to distinct responses.
"""


class EngineError(Exception):
    """Base class for every error the engine surfaces to its callers."""

    code = "engine_error"

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(EngineError):
    """Missing or malformed input."""

    code = "validation_error"


class InvalidTransitionError(ValidationError):
    """Requested alert status change is not an edge of the lifecycle."""

    code = "invalid_transition"


class NotFoundError(EngineError):
    """Referenced patient or alert does not exist."""

    code = "not_found"


class AccessDenied(EngineError):
    code = "access_denied"


class PersistenceError(EngineError):
    """Repository failure, not further decomposed."""

    code = "persistence_error"
