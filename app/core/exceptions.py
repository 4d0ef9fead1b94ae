"""
Error taxonomy for the report engine.

Every error carries a human-readable ``message`` and a machine-readable
``error_code`` so the API layer can render it without inspecting types.
"""

from typing import Optional


class ReportEngineError(Exception):
    """Base class for all engine errors."""

    default_code = "ENGINE_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(self.message)


class ValidationError(ReportEngineError):
    """Input rejected before any I/O took place."""

    default_code = "VALIDATION_ERROR"


class SessionStateError(ValidationError):
    """Operation not allowed in the current session state."""

    default_code = "SESSION_STATE_ERROR"


class OperationInProgressError(ValidationError):
    """Another analyze/feedback action is still running."""

    default_code = "OPERATION_IN_PROGRESS"


class IngestionError(ReportEngineError):
    """An uploaded file could not be read."""

    default_code = "INGESTION_ERROR"


class ServiceError(ReportEngineError):
    """The remote model call failed."""

    default_code = "SERVICE_ERROR"


class TransientServiceError(ServiceError):
    """Remote service is overloaded or temporarily unavailable."""

    default_code = "SERVICE_UNAVAILABLE"


class ServiceOverloadedError(TransientServiceError):
    """Transient failures persisted through every retry attempt."""

    default_code = "SERVICE_OVERLOADED"


class PermanentServiceError(ServiceError):
    """Any non-transient remote failure (auth, bad request, ...)."""

    default_code = "SERVICE_ERROR"


class PersistenceError(ReportEngineError):
    """Knowledge base could not be read from or written to storage."""

    default_code = "PERSISTENCE_ERROR"
