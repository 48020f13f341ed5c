"""Claim record: identity, metadata, status and its two pool ledgers."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from escrow.ledger import PoolLedger
from escrow.models import ClaimStatus, ResolutionRecord, Side, holding_id


@dataclass
class Claim:
    """A single wager: two opposing pools and one resolvable outcome."""
    claim_id: str
    creator: str
    fingerprint: str  # sha-256 hex of the claim text
    deadline: int     # unix seconds; no new stakes after this
    category: str = "general"
    subcategory: str = ""
    status: ClaimStatus = ClaimStatus.OPEN
    winner: Optional[Side] = None
    resolution: Optional[ResolutionRecord] = None
    ledger: PoolLedger = field(default_factory=PoolLedger)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def holding_for(self, side: Side) -> str:
        """Custodial account holding this claim's stakes for one side."""
        return holding_id(self.claim_id, side)

    @property
    def total_pool(self) -> int:
        total_a, total_b = self.ledger.totals()
        return total_a + total_b

    def is_past_deadline(self, now: float) -> bool:
        return now >= self.deadline

    def restore_from(self, stored: "Claim") -> None:
        """Take back the persisted status, resolution and ledger after a failed write."""
        self.status = stored.status
        self.winner = stored.winner
        self.resolution = stored.resolution
        self.ledger = stored.ledger

    def to_dict(self) -> Dict[str, Any]:
        total_a, total_b = self.ledger.totals()
        return {
            "claim_id": self.claim_id,
            "creator": self.creator,
            "fingerprint": self.fingerprint,
            "deadline": self.deadline,
            "category": self.category,
            "subcategory": self.subcategory,
            "status": self.status.value,
            "winner": self.winner.value if self.winner else None,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "side_a_total": total_a,
            "side_b_total": total_b,
            "total_pool": total_a + total_b,
            "side_a_bettors": self.ledger.count(Side.A),
            "side_b_bettors": self.ledger.count(Side.B),
            "side_a_holding": self.holding_for(Side.A),
            "side_b_holding": self.holding_for(Side.B),
            "created_at": self.created_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], entries: Optional[List[Tuple[Side, Dict[str, Any]]]] = None) -> "Claim":
        """Rebuild a claim from its stored row and its ordered ledger entries."""
        ledger = PoolLedger()
        for side, entry in entries or []:
            ledger.restore(side, entry)

        resolution = data.get("resolution")
        winner = data.get("winner")
        return cls(
            claim_id=data["claim_id"],
            creator=data["creator"],
            fingerprint=data["fingerprint"],
            deadline=int(data["deadline"]),
            category=data.get("category") or "general",
            subcategory=data.get("subcategory") or "",
            status=ClaimStatus(data["status"]),
            winner=Side(winner) if winner else None,
            resolution=ResolutionRecord.from_dict(resolution) if resolution else None,
            ledger=ledger,
            created_at=data.get("created_at") or datetime.now().isoformat()
        )
