"""Error kinds raised by the traceability engine.

Every failure an operation can report is a subclass of ``TraceabilityError``
carrying a stable ``code``. The coordinator converts them into failed
``OperationResult`` values; they never escape a coordinator call.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TraceabilityError(Exception):
    code = "TRACEABILITY_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(TraceabilityError):
    """Malformed input. ``message`` carries the reason."""

    code = "VALIDATION_ERROR"


class InvalidExpiry(ValidationError):
    code = "INVALID_EXPIRY"


class InvalidLotFormat(ValidationError):
    code = "INVALID_LOT_FORMAT"


class NotFound(TraceabilityError):
    code = "NOT_FOUND"


class InsufficientStock(TraceabilityError):
    code = "INSUFFICIENT_STOCK"


class IllegalTransition(TraceabilityError):
    code = "ILLEGAL_TRANSITION"


class AlreadyResolved(TraceabilityError):
    code = "ALREADY_RESOLVED"


class RecallWindowExpired(TraceabilityError):
    code = "RECALL_WINDOW_EXPIRED"


class InvalidStatusForRecall(TraceabilityError):
    code = "INVALID_STATUS_FOR_RECALL"


class GenerationExhausted(TraceabilityError):
    code = "GENERATION_EXHAUSTED"


class SequenceConflict(TraceabilityError):
    code = "SEQUENCE_CONFLICT"


class LockTimeout(TraceabilityError):
    code = "LOCK_TIMEOUT"


class Unauthorized(TraceabilityError):
    code = "UNAUTHORIZED"


class ImmutableHistoryError(RuntimeError):
    """Raised when something tries to update or delete an audit row."""
