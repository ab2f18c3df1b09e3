from typing import Any, Dict, Optional


class OutboxServiceError(Exception):
    """
    Base class for every error raised by the writer and the consumer.
    `kind` is the machine-checkable code returned to API clients.
    """
    kind = "outbox_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(OutboxServiceError):
    """Caller supplied bad input. Raised before any transaction is opened."""
    kind = "validation_error"
    status_code = 400


class PersistenceError(OutboxServiceError):
    """The transaction could not be committed (connectivity, constraint violation)."""
    kind = "persistence_error"
    status_code = 500


class DecodeError(OutboxServiceError):
    """A raw change-capture record could not be decoded."""
    kind = "decode_error"
    status_code = 422


class MappingError(OutboxServiceError):
    """A decoded outbox row lacks the fields needed to build an integration event."""
    kind = "mapping_error"
    status_code = 422


class PublishError(OutboxServiceError):
    """The PutEvents call itself failed; the whole batch must be redelivered."""
    kind = "publish_error"
    status_code = 502
