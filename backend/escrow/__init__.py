"""
Claim Escrow Module

Peer-to-peer wagering escrow: stakes on two sides of a claim, odds locked at
join time, oracle resolution with human fallback, fee-netted payouts.
"""

from escrow.models import (
    ClaimStatus, Side, ResolutionMethod,
    PoolEntry, ResolutionRecord, EscrowConfig,
    fingerprint_claim, derive_claim_id, holding_id
)
from escrow.claim import Claim
from escrow.ledger import PoolLedger
from escrow.odds import price_entry, implied_odds
from escrow.payout import compute_payout, quote_payout, PayoutQuote
from escrow.funds import FundsTransfer, InMemoryFunds
from escrow.errors import (
    EscrowError, ClaimNotFound, ClaimNotOpen, InvalidStatus, DuplicateClaim,
    IndexOutOfRange, NotAuthorized, NotOwner, NotResolved,
    PayoutAlreadyClaimed, InsufficientFunds, InvalidArgument
)
from escrow.manager import EscrowManager, get_escrow_manager

__all__ = [
    # Models
    "Claim",
    "ClaimStatus",
    "Side",
    "ResolutionMethod",
    "PoolEntry",
    "ResolutionRecord",
    "EscrowConfig",
    "PoolLedger",

    # Utilities
    "fingerprint_claim",
    "derive_claim_id",
    "holding_id",
    "price_entry",
    "implied_odds",
    "compute_payout",
    "quote_payout",
    "PayoutQuote",

    # Funds
    "FundsTransfer",
    "InMemoryFunds",

    # Errors
    "EscrowError",
    "ClaimNotFound",
    "ClaimNotOpen",
    "InvalidStatus",
    "DuplicateClaim",
    "IndexOutOfRange",
    "NotAuthorized",
    "NotOwner",
    "NotResolved",
    "PayoutAlreadyClaimed",
    "InsufficientFunds",
    "InvalidArgument",

    # Manager
    "EscrowManager",
    "get_escrow_manager"
]
