"""
Claim Escrow Models

Data models for the peer-to-peer claim escrow.
Participants stake behind side A or side B of a claim; the oracle decides
which side wins and winners collect from the pooled escrow.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class ClaimStatus(Enum):
    """Claim lifecycle status."""
    OPEN = "open"              # Accepting stakes
    LOCKED = "locked"          # Betting closed, awaiting resolution
    RESOLVING = "resolving"    # Automated resolution in flight
    DISPUTED = "disputed"      # Low confidence, waiting for a human arbiter
    RESOLVED = "resolved"      # Winner decided, payouts available


class Side(Enum):
    """The two mutually exclusive outcomes of a claim."""
    A = "A"  # The claim is true
    B = "B"  # The claim is false

    @classmethod
    def from_verdict(cls, verdict: bool) -> "Side":
        return cls.A if verdict else cls.B

    @property
    def opposite(self) -> "Side":
        return Side.B if self is Side.A else Side.A


class ResolutionMethod(Enum):
    """Who decided the outcome."""
    AUTOMATED = "automated"
    HUMAN = "human"


@dataclass
class EscrowConfig:
    """Protocol constants for the escrow."""
    odds_scale: int = 1000              # 1000 = 1.000x
    fee_per_mille: int = 15             # 1.5% protocol fee on gross payout
    confidence_threshold: int = 85      # Automated verdicts below this go to a human
    human_confidence: int = 100         # Recorded confidence for human verdicts
    treasury_account: str = "treasury"
    max_category_length: int = 64


@dataclass
class PoolEntry:
    """One participant's stake on one side of one claim."""
    participant: str
    amount: int  # smallest currency unit
    odds: int    # locked at join time, scale 1000
    claimed: bool = False
    joined_at: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant": self.participant,
            "amount": self.amount,
            "odds": self.odds,
            "claimed": self.claimed,
            "joined_at": self.joined_at
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PoolEntry":
        return cls(
            participant=data["participant"],
            amount=int(data["amount"]),
            odds=int(data["odds"]),
            claimed=bool(data.get("claimed", False)),
            joined_at=data.get("joined_at") or datetime.now().isoformat()
        )


@dataclass(frozen=True)
class ResolutionRecord:
    """Immutable record of how a claim was decided."""
    verdict: bool
    confidence: int
    method: ResolutionMethod
    resolver: str
    timestamp: int  # unix seconds
    evidence: Optional[str] = None  # e.g. content id of the oracle's evidence bundle
    reason: Optional[str] = None

    @property
    def winner(self) -> Side:
        return Side.from_verdict(self.verdict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "confidence": self.confidence,
            "method": self.method.value,
            "resolver": self.resolver,
            "timestamp": self.timestamp,
            "evidence": self.evidence,
            "reason": self.reason
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionRecord":
        return cls(
            verdict=bool(data["verdict"]),
            confidence=int(data["confidence"]),
            method=ResolutionMethod(data["method"]),
            resolver=data["resolver"],
            timestamp=int(data["timestamp"]),
            evidence=data.get("evidence"),
            reason=data.get("reason")
        )


_FINGERPRINT_RE = re.compile(r"^[0-9a-f]{64}$")


def fingerprint_claim(text: str) -> str:
    """Fixed-size content fingerprint of the claim text."""
    normalized = " ".join(text.split())
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def is_fingerprint(value: str) -> bool:
    return bool(_FINGERPRINT_RE.match(value or ""))


def derive_claim_id(creator: str, fingerprint: str) -> str:
    """
    Deterministic claim identity.

    The same creator submitting the same content always lands on the same id,
    which is what makes duplicates detectable.
    """
    digest = hashlib.sha256()
    for part in (b"claim", creator.encode("utf-8"), bytes.fromhex(fingerprint)):
        # Length-prefix each part so ("ab", "c") and ("a", "bc") never collide
        digest.update(len(part).to_bytes(4, "big"))
        digest.update(part)
    return digest.hexdigest()


def holding_id(claim_id: str, side: Side) -> str:
    return f"vault:{claim_id}:{side.value}"
