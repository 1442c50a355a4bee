"""Typed exceptions for the nomination workflow.

Every error carries a machine-readable ``code`` and the HTTP status the
blueprint answers with. ``retryable`` tells the client whether repeating the
same request can succeed without changing context.
"""

from typing import Optional


class NominationError(Exception):
    """Base class for all nomination workflow errors."""

    code: str = "NOMINATION_ERROR"
    status: int = 500
    retryable: bool = False

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "retryable": self.retryable}


class ValidationError(NominationError):
    """Request rejected locally; nothing was written."""

    code = "VALIDATION_ERROR"
    status = 400


class LimitExceededError(ValidationError):
    code = "CLASS_LIMIT_EXCEEDED"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"You can select up to {limit} classes.")


class PreferenceError(ValidationError):
    code = "INVALID_PREFERENCE"


class NominationsClosedError(ValidationError):
    code = "NOMINATIONS_CLOSED"

    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__("Nominations are not open for this event.")


class AuthenticationError(NominationError):
    code = "NOT_AUTHENTICATED"
    status = 401

    def __init__(self):
        super().__init__("You must be logged in.")


class NotFoundError(NominationError):
    """Driver, household, event or nomination missing for the current user."""

    code = "NOT_FOUND"
    status = 404

    def __init__(self, kind: str, ident=None, message: Optional[str] = None):
        self.kind = kind
        self.ident = ident
        super().__init__(message or f"{kind} not found: {ident}")


class PersistenceError(NominationError):
    """A database read or write failed; the whole operation may be retried."""

    code = "PERSISTENCE_ERROR"
    status = 503
    retryable = True


class SchemaError(PersistenceError):
    """A backend row did not have the expected shape."""

    code = "SCHEMA_ERROR"
    retryable = False

    def __init__(self, entity: str, detail: str):
        self.entity = entity
        super().__init__(f"Invalid {entity} row: {detail}")


class ExternalServiceError(NominationError):
    """Payment session creation or another outbound call failed."""

    code = "EXTERNAL_SERVICE_ERROR"
    status = 502
    retryable = True

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(message)
