"""
Escrow error taxonomy.

Every error is a caller-correctable precondition failure. Nothing here is
retried inside the core; the operation that raised it has left no partial
state behind.
"""


class EscrowError(Exception):
    """Base exception for all escrow failures."""

    code = "escrow_error"
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message}


class ClaimNotFound(EscrowError):
    code = "claim_not_found"
    status_code = 404


class ClaimNotOpen(EscrowError):
    code = "claim_not_open"
    status_code = 409


class InvalidStatus(EscrowError):
    """Wrong state for the requested transition."""
    code = "invalid_status"
    status_code = 409


class DuplicateClaim(EscrowError):
    code = "duplicate_claim"
    status_code = 409


class IndexOutOfRange(EscrowError):
    code = "index_out_of_range"
    status_code = 404


class NotAuthorized(EscrowError):
    """Caller does not own the entry, or asked for a losing-side payout."""
    code = "not_authorized"
    status_code = 403


class NotOwner(NotAuthorized):
    """Raised by the pool ledger when the caller is not the entry's participant."""


class NotResolved(EscrowError):
    code = "not_resolved"
    status_code = 409


class PayoutAlreadyClaimed(EscrowError):
    code = "payout_already_claimed"
    status_code = 409


class InsufficientFunds(EscrowError):
    """Propagated from the funds transfer capability."""
    code = "insufficient_funds"
    status_code = 402


class InvalidArgument(EscrowError):
    code = "invalid_argument"
    status_code = 422
