"""
Escrow Manager

Core claim operations:
- Open claims and seed the creator's stake
- Accept stakes on either side at locked-in odds
- Close betting and record automated / human resolutions
- Pay out winning entries one at a time, net of the protocol fee

Every operation on a claim runs with that claim's lock held; different
claims never block each other.
"""

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from escrow.claim import Claim
from escrow.errors import (
    ClaimNotFound, DuplicateClaim, EscrowError, InsufficientFunds, InvalidArgument,
    NotAuthorized, PayoutAlreadyClaimed
)
from escrow.funds import FundsTransfer
from escrow.models import (
    ClaimStatus, EscrowConfig, Side,
    derive_claim_id, is_fingerprint
)
from escrow.odds import implied_odds, price_entry
from escrow.payout import quote_payout
from escrow import state_machine as sm

logger = logging.getLogger(__name__)


class EscrowManager:
    """
    Owns every claim, its pool ledgers and the calls into the funds backend.

    `store` is optional; when given, every mutated claim is written back
    through `store.save_claim()` and all claims are loaded on start-up.
    """

    def __init__(
        self,
        funds: FundsTransfer,
        config: EscrowConfig = None,
        store=None,
        clock: Callable[[], float] = time.time
    ):
        self.funds = funds
        self.config = config or EscrowConfig()
        self.store = store
        self.clock = clock

        self.claims: Dict[str, Claim] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

        self._load_data()

    def _load_data(self):
        if self.store is None:
            return
        for claim in self.store.load_claims():
            self.claims[claim.claim_id] = claim
        logger.info(f"Loaded {len(self.claims)} claim(s) from storage")

    def _save(self, claim: Claim):
        if self.store is not None:
            self.store.save_claim(claim)

    @contextmanager
    def _atomic(self, claim: Claim) -> Iterator[None]:
        """
        Fund movements and the claim save inside the block commit together.

        If anything raises, the store's transaction is rolled back and the
        in-memory claim is reset to its last persisted state.
        """
        if self.store is None:
            yield
            return
        try:
            with self.store.transaction():
                yield
        except EscrowError:
            # Rejected before anything in memory changed, or already undone
            raise
        except Exception:
            self._revert(claim)
            raise

    def _revert(self, claim: Claim):
        stored = self.store.get_claim(claim.claim_id)
        if stored is not None:
            claim.restore_from(stored)
            logger.warning(f"Claim {claim.claim_id}: write failed, reverted to stored state ({claim.status.value})")

    def _now(self) -> int:
        return int(self.clock())

    # ==================== LOCKING ====================

    def _claim_lock(self, claim_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._locks.get(claim_id)
            if lock is None:
                lock = self._locks[claim_id] = threading.Lock()
            return lock

    @contextmanager
    def _exclusive(self, claim_id: str) -> Iterator[Claim]:
        """Hold the claim's lock for the whole operation."""
        with self._claim_lock(claim_id):
            claim = self.claims.get(claim_id)
            if claim is None:
                raise ClaimNotFound(f"Claim {claim_id} not found")
            yield claim

    # ==================== VALIDATION ====================

    @staticmethod
    def _require_amount(amount: int, label: str = "Amount") -> int:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvalidArgument(f"{label} must be a positive integer, got {amount!r}")
        return amount

    @staticmethod
    def _require_identity(value: str, label: str) -> str:
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgument(f"{label} is required")
        return value

    @staticmethod
    def _require_side(side) -> Side:
        try:
            return Side(side)
        except ValueError:
            raise InvalidArgument(f"Side must be 'A' or 'B', got {side!r}")

    def _require_label(self, value: str, label: str) -> str:
        value = value or ""
        if len(value) > self.config.max_category_length:
            raise InvalidArgument(f"{label} is longer than {self.config.max_category_length} characters")
        return value

    # ==================== CLAIM CREATION ====================

    def open_claim(
        self,
        creator: str,
        fingerprint: str,
        deadline: int,
        category: str = "general",
        subcategory: str = "",
        initial_stake: int = 0
    ) -> Claim:
        """
        Open a claim with the creator as the first side-A staker.

        The stake transfer and the first save commit together; the claim is
        only registered once both have succeeded.
        """
        self._require_identity(creator, "Creator")
        if not is_fingerprint(fingerprint):
            raise InvalidArgument("Fingerprint must be a 64-character lowercase hex sha-256 digest")
        if isinstance(deadline, bool) or not isinstance(deadline, int):
            raise InvalidArgument("Deadline must be a unix timestamp in seconds")
        self._require_amount(initial_stake, "Initial stake")
        category = self._require_label(category, "Category") or "general"
        subcategory = self._require_label(subcategory, "Subcategory")

        claim_id = derive_claim_id(creator, fingerprint)

        with self._claim_lock(claim_id):
            if claim_id in self.claims:
                raise DuplicateClaim(f"Claim {claim_id} already exists for {creator}")

            claim = Claim(
                claim_id=claim_id,
                creator=creator,
                fingerprint=fingerprint,
                deadline=deadline,
                category=category,
                subcategory=subcategory
            )
            with self._atomic(claim):
                self.funds.transfer(creator, claim.holding_for(Side.A), initial_stake)
                # The creator is the house for their own claim
                claim.ledger.append(Side.A, creator, initial_stake, self.config.odds_scale)
                self._save(claim)

            with self._registry_lock:
                self.claims[claim_id] = claim

        logger.info(f"Claim {claim_id} opened by {creator} with {initial_stake} on side A")
        return claim

    # ==================== STAKING ====================

    def join(self, claim_id: str, side: Side, participant: str, amount: int) -> Dict[str, Any]:
        """
        Stake `amount` on one side of an open claim.

        Odds are priced from the ledger as it stands before this stake and are
        locked into the new entry.
        """
        self._require_identity(participant, "Participant")
        self._require_amount(amount)
        side = self._require_side(side)

        with self._exclusive(claim_id) as claim:
            sm.require_open(claim)
            odds = price_entry(claim.ledger, side, self.config.odds_scale)

            with self._atomic(claim):
                self.funds.transfer(participant, claim.holding_for(side), amount)
                index = claim.ledger.append(side, participant, amount, odds)
                self._save(claim)

            total_a, total_b = claim.ledger.totals()

        logger.info(f"{participant} joined claim {claim_id} side {side.value} with {amount} at odds {odds}")
        return {
            "claim_id": claim_id,
            "side": side.value,
            "index": index,
            "participant": participant,
            "amount": amount,
            "odds": odds,
            "side_a_total": total_a,
            "side_b_total": total_b
        }

    # ==================== CLOSING ====================

    def lock_claim(self, claim_id: str, caller: str) -> Claim:
        """Creator closes betting early."""
        with self._exclusive(claim_id) as claim:
            if caller != claim.creator:
                raise NotAuthorized("Only the creator can close betting")
            with self._atomic(claim):
                sm.lock(claim)
                self._save(claim)
        logger.info(f"Claim {claim_id} locked by creator")
        return claim

    def lock_expired_claims(self, now: Optional[float] = None) -> List[str]:
        """Close betting on every open claim whose deadline has passed."""
        now = self._now() if now is None else now
        locked = []
        for claim_id in list(self.claims):
            with self._exclusive(claim_id) as claim:
                if claim.status == ClaimStatus.OPEN and claim.is_past_deadline(now):
                    with self._atomic(claim):
                        sm.lock(claim)
                        self._save(claim)
                    locked.append(claim_id)
        if locked:
            logger.info(f"Locked {len(locked)} claim(s) past their deadline")
        return locked

    # ==================== RESOLUTION ====================

    def begin_resolution(self, claim_id: str) -> Claim:
        """Mark an automated resolution as in flight (LOCKED -> RESOLVING)."""
        with self._exclusive(claim_id) as claim, self._atomic(claim):
            sm.begin_resolution(claim)
            self._save(claim)
        logger.info(f"Claim {claim_id} resolving")
        return claim

    def resolve_automated(
        self,
        claim_id: str,
        verdict: bool,
        confidence: int,
        resolver: str = "oracle",
        evidence: str = None,
        reason: str = None
    ) -> Claim:
        """
        Apply the oracle's verdict.

        At or above the confidence threshold the claim is RESOLVED; below it
        the claim moves to DISPUTED and waits for `resolve_human`.
        """
        with self._exclusive(claim_id) as claim, self._atomic(claim):
            outcome = sm.automated_outcome(claim, confidence, self.config)
            if outcome == ClaimStatus.RESOLVED:
                self._consolidate(claim, Side.from_verdict(verdict))

            resolved = sm.apply_automated_verdict(
                claim, verdict, confidence, resolver, self._now(), self.config,
                evidence=evidence, reason=reason
            )
            self._save(claim)

        if resolved:
            logger.info(f"Claim {claim_id} resolved automatically: side {claim.winner.value} wins ({confidence}%)")
        else:
            logger.warning(f"Claim {claim_id} disputed: confidence {confidence}% below {self.config.confidence_threshold}%")
        return claim

    def resolve_human(self, claim_id: str, verdict: bool, arbiter: str, reason: str = None) -> Claim:
        """Arbiter decides a DISPUTED claim."""
        self._require_identity(arbiter, "Arbiter")
        with self._exclusive(claim_id) as claim, self._atomic(claim):
            sm.require_status(claim, ClaimStatus.DISPUTED)
            self._consolidate(claim, Side.from_verdict(verdict))
            sm.apply_human_verdict(claim, verdict, arbiter, self._now(), self.config, reason=reason)
            self._save(claim)

        logger.info(f"Claim {claim_id} resolved by arbiter {arbiter}: side {claim.winner.value} wins")
        return claim

    def _consolidate(self, claim: Claim, winner: Side):
        """Move the losing side's escrow into the winning holding so winners are paid from the whole pool."""
        loser = winner.opposite
        amount = claim.ledger.total_of(loser)
        if amount > 0:
            self.funds.transfer(claim.holding_for(loser), claim.holding_for(winner), amount)
            logger.info(f"Claim {claim.claim_id}: moved {amount} from side {loser.value} to side {winner.value}")

    # ==================== PAYOUT ====================

    def claim_payout(self, claim_id: str, side: Side, index: int, caller: str) -> Dict[str, Any]:
        """
        Pay one winning entry to its owner.

        The entry is flagged as claimed before any funds move, and the flag is
        saved in the same transaction as the net and fee transfers. If a
        transfer fails the flag is cleared again and the error propagates.
        """
        side = self._require_side(side)

        with self._exclusive(claim_id) as claim, self._atomic(claim):
            winner = sm.require_resolved(claim)
            if side != winner:
                raise NotAuthorized(f"Side {side.value} lost claim {claim_id}")

            entry = claim.ledger.entry_at(side, index, caller)
            if entry.claimed:
                raise PayoutAlreadyClaimed(f"Entry {index} on side {side.value} already paid out")

            quote = quote_payout(entry.amount, entry.odds, self.config.odds_scale, self.config.fee_per_mille)
            holding = claim.holding_for(side)
            available = self.funds.balance(holding)
            if available < quote.gross:
                raise InsufficientFunds(f"{holding} has {available}, payout needs {quote.gross}")

            claim.ledger.mark_claimed(side, index)
            net_sent = False
            try:
                self.funds.transfer(holding, caller, quote.net)
                net_sent = True
                self.funds.transfer(holding, self.config.treasury_account, quote.fee)
            except InsufficientFunds:
                if net_sent:
                    self.funds.transfer(caller, holding, quote.net)
                claim.ledger.unmark_claimed(side, index)
                raise
            self._save(claim)

        logger.info(f"Paid {quote.net} to {caller} on claim {claim_id} (fee {quote.fee})")
        return {
            "claim_id": claim_id,
            "side": side.value,
            "index": index,
            "participant": caller,
            "stake": entry.amount,
            "odds": entry.odds,
            "gross": quote.gross,
            "fee": quote.fee,
            "net": quote.net
        }

    # ==================== READ ACCESSORS ====================
    # Claim state is only ever read under the claim's lock, one claim at a time.

    def get_claim(self, claim_id: str) -> Claim:
        """Live claim object; use `snapshot()` for a consistent view of its state."""
        claim = self.claims.get(claim_id)
        if claim is None:
            raise ClaimNotFound(f"Claim {claim_id} not found")
        return claim

    def snapshot(self, claim_id: str, include_entries: bool = False) -> Dict[str, Any]:
        """`Claim.to_dict()` taken under the claim's lock, optionally with both ledgers."""
        with self._exclusive(claim_id) as claim:
            data = claim.to_dict()
            if include_entries:
                data["entries"] = claim.ledger.to_dict()
            return data

    def get_pool_totals(self, claim_id: str) -> Dict[str, Any]:
        """Consistent snapshot of both pools and the odds the next stake would lock."""
        with self._exclusive(claim_id) as claim:
            total_a, total_b = claim.ledger.totals()
            return {
                "claim_id": claim_id,
                "status": claim.status.value,
                "side_a_total": total_a,
                "side_b_total": total_b,
                "total_pool": total_a + total_b,
                "side_a_entries": claim.ledger.count(Side.A),
                "side_b_entries": claim.ledger.count(Side.B),
                "next_odds": implied_odds(claim.ledger, self.config.odds_scale)
            }

    def get_entries(self, claim_id: str) -> Dict[str, List[Dict[str, Any]]]:
        with self._exclusive(claim_id) as claim:
            return claim.ledger.to_dict()

    def list_claims(self, status: Optional[ClaimStatus] = None, category: Optional[str] = None) -> List[Claim]:
        matches = []
        for claim_id in list(self.claims):
            with self._exclusive(claim_id) as claim:
                if status is not None and claim.status != status:
                    continue
                if category and claim.category != category:
                    continue
                matches.append(claim)
        return sorted(matches, key=lambda c: c.deadline)

    def list_snapshots(
        self,
        status: Optional[ClaimStatus] = None,
        category: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Like `list_claims`, but each claim serialized under its own lock."""
        return [self.snapshot(claim.claim_id) for claim in self.list_claims(status, category)]

    def get_positions(self, participant: str) -> List[Dict[str, Any]]:
        """Every entry a participant holds, with what it pays if its side wins."""
        positions = []
        for claim_id in list(self.claims):
            with self._exclusive(claim_id) as claim:
                for side, index, entry in claim.ledger.positions_of(participant):
                    quote = quote_payout(entry.amount, entry.odds, self.config.odds_scale, self.config.fee_per_mille)
                    positions.append({
                        "claim_id": claim_id,
                        "status": claim.status.value,
                        "side": side.value,
                        "index": index,
                        "amount": entry.amount,
                        "odds": entry.odds,
                        "claimed": entry.claimed,
                        "potential_payout": quote.net,
                        "payable": claim.winner == side and not entry.claimed
                    })
        return positions

    def get_stats(self) -> Dict[str, Any]:
        by_status = {status.value: 0 for status in ClaimStatus}
        total_staked = 0
        claim_ids = list(self.claims)
        for claim_id in claim_ids:
            with self._exclusive(claim_id) as claim:
                by_status[claim.status.value] += 1
                total_staked += claim.total_pool
        return {
            "total_claims": len(claim_ids),
            "claims_by_status": by_status,
            "total_staked": total_staked,
            "treasury_balance": self.funds.balance(self.config.treasury_account)
        }



# Singleton instance
_escrow_manager: Optional[EscrowManager] = None


def get_escrow_manager() -> EscrowManager:
    """Get the singleton escrow manager, backed by SQLite."""
    global _escrow_manager
    if _escrow_manager is None:
        import settings
        from escrow.database import EscrowDatabase, SqliteFunds

        db = EscrowDatabase(settings.ESCROW_DB_PATH)
        _escrow_manager = EscrowManager(
            funds=SqliteFunds(db),
            config=settings.get_escrow_config(),
            store=db
        )
    return _escrow_manager
