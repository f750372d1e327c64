# Overview: Typed failures raised by the ledger services.

"""
Ledger error taxonomy.

Every ledger-invariant violation surfaces as a LedgerError subclass. The
`kind` string is the stable contract value callers switch on; the message
is for humans and `details` carries structured context (ids, quantities).

Services raise these from inside `run_with_retry`, which rolls the session
back before the error leaves the service, so a raised LedgerError always
means nothing was committed.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for every failure the ledger reports to its callers."""

    kind = "LedgerError"
    http_status = 409

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "kind": self.kind,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Malformed input (non-positive qty, bad IMEI, negative price)."""
    kind = "Validation"
    http_status = 400


class NotFoundError(LedgerError):
    kind = "NotFound"
    http_status = 404


class InvalidStateError(LedgerError):
    """Operation not valid for the current document/return/session status."""
    kind = "InvalidState"


class InvalidTransitionError(LedgerError):
    """Serialized item status change not present in the transition table."""
    kind = "InvalidTransition"


class InsufficientStockError(LedgerError):
    kind = "InsufficientStock"


class NegativeStockError(LedgerError):
    kind = "NegativeStock"


class OverPaymentError(LedgerError):
    kind = "OverPayment"


class DuplicateCodeError(LedgerError):
    """IMEI or SKU already used inside the store."""
    kind = "DuplicateCode"


class ConflictingStateError(LedgerError):
    """Reversal blocked because stock was already consumed downstream."""
    kind = "ConflictingState"


class SessionAlreadyOpenError(LedgerError):
    kind = "SessionAlreadyOpen"


class NoOpenSessionError(LedgerError):
    kind = "NoOpenSession"


class OverReturnError(LedgerError):
    kind = "OverReturn"


class UnauthorizedError(LedgerError):
    kind = "Unauthorized"
    http_status = 403
