# Overview: Error taxonomy shared by the conversational engine and the HTTP layer.

"""
Engine errors

Every failure the engine reports carries a stable ``code`` and a ``details``
dict so callers can tell a clarifying question (ambiguous or incomplete
data) apart from a terminal failure (store unavailable, partial write).

HTTP MAPPING (see routes):
- NotFoundError                                           -> 404
- AlreadyCancelledError, ValidationError, SaleVoidedError -> 400
- any other EngineError                                   -> 422
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for errors raised by the engine."""
    code = "engine_error"
    is_clarification = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "needs_clarification": self.is_clarification,
        }


class ExtractionRejected(EngineError):
    """Oracle reply was well-formed but failed business validation."""
    code = "extraction_rejected"
    is_clarification = True


class OracleParseFailure(EngineError):
    """Oracle reply could not be parsed as the extraction contract."""
    code = "oracle_parse_failure"
    is_clarification = True


class OracleUnavailable(EngineError):
    """Oracle call failed or timed out."""
    code = "oracle_unavailable"


class AmbiguousReference(EngineError):
    """A cancel/edit command has no resolvable target sale."""
    code = "ambiguous_reference"
    is_clarification = True


class NotFoundError(EngineError):
    """Target does not exist for this tenant (existence is never leaked)."""
    code = "not_found"


class AlreadyCancelledError(NotFoundError):
    """Sale exists but is already voided; reported as not-found over HTTP."""
    code = "already_cancelled"


class SaleVoidedError(EngineError):
    """Voided sales are immutable."""
    code = "sale_voided"


class ValidationError(ValueError, EngineError):
    """400-level input problem."""
    code = "validation_error"

    def __init__(self, message: str, details: dict | None = None):
        EngineError.__init__(self, message, details)


class PaymentMethodUnresolved(EngineError):
    """A declared payment phrase matches no payment method."""
    code = "payment_method_unresolved"
    is_clarification = True


class PartialWriteFailure(EngineError):
    """A multi-step write failed; nothing was committed."""
    code = "partial_write_failure"


class ConcurrencyConflict(EngineError):
    """Daily ordinal collided with a concurrent sale."""
    code = "concurrency_conflict"
