"""
Claim State Machine

    OPEN      -> LOCKED
    LOCKED    -> RESOLVING | DISPUTED | RESOLVED
    RESOLVING -> DISPUTED | RESOLVED
    DISPUTED  -> RESOLVED

RESOLVED is terminal. Winner and resolution record are only ever written
together, by `_settle`, on the way into RESOLVED.
"""

from escrow.claim import Claim
from escrow.errors import ClaimNotOpen, InvalidArgument, InvalidStatus, NotResolved
from escrow.models import ClaimStatus, EscrowConfig, ResolutionMethod, ResolutionRecord, Side


TRANSITIONS = {
    ClaimStatus.OPEN: {ClaimStatus.LOCKED},
    ClaimStatus.LOCKED: {ClaimStatus.RESOLVING, ClaimStatus.DISPUTED, ClaimStatus.RESOLVED},
    ClaimStatus.RESOLVING: {ClaimStatus.DISPUTED, ClaimStatus.RESOLVED},
    ClaimStatus.DISPUTED: {ClaimStatus.RESOLVED},
    ClaimStatus.RESOLVED: set(),
}


def assert_transition(old: ClaimStatus, new: ClaimStatus) -> None:
    if new not in TRANSITIONS.get(old, set()):
        raise InvalidStatus(f"Illegal claim transition: {old.value} -> {new.value}")


def require_open(claim: Claim) -> None:
    if claim.status != ClaimStatus.OPEN:
        raise ClaimNotOpen(f"Claim {claim.claim_id} is {claim.status.value}")


def require_status(claim: Claim, *allowed: ClaimStatus) -> None:
    if claim.status not in allowed:
        expected = ", ".join(s.value for s in allowed)
        raise InvalidStatus(f"Claim {claim.claim_id} is {claim.status.value}, expected {expected}")


def require_resolved(claim: Claim) -> Side:
    if claim.status != ClaimStatus.RESOLVED or claim.winner is None:
        raise NotResolved(f"Claim {claim.claim_id} is {claim.status.value}")
    return claim.winner


def validate_confidence(confidence: int) -> int:
    if isinstance(confidence, bool) or not isinstance(confidence, int) or not 0 <= confidence <= 100:
        raise InvalidArgument(f"Confidence must be an integer in 0..100, got {confidence!r}")
    return confidence


def lock(claim: Claim) -> None:
    """Close betting."""
    require_open(claim)
    _move(claim, ClaimStatus.LOCKED)


def begin_resolution(claim: Claim) -> None:
    """Mark an automated resolution as in flight."""
    require_status(claim, ClaimStatus.LOCKED)
    _move(claim, ClaimStatus.RESOLVING)


def automated_outcome(claim: Claim, confidence: int, config: EscrowConfig) -> ClaimStatus:
    """
    Where an automated verdict would take the claim, without touching it.

    Raises InvalidStatus unless the claim is LOCKED or RESOLVING.
    """
    require_status(claim, ClaimStatus.LOCKED, ClaimStatus.RESOLVING)
    validate_confidence(confidence)
    if confidence >= config.confidence_threshold:
        return ClaimStatus.RESOLVED
    return ClaimStatus.DISPUTED


def apply_automated_verdict(
    claim: Claim,
    verdict: bool,
    confidence: int,
    resolver: str,
    now: int,
    config: EscrowConfig,
    evidence: str = None,
    reason: str = None
) -> bool:
    """
    Record an automated verdict.

    Returns True if the claim is now RESOLVED, False if confidence was too low
    and the claim moved to DISPUTED for a human arbiter.
    """
    outcome = automated_outcome(claim, confidence, config)
    if outcome == ClaimStatus.DISPUTED:
        _move(claim, ClaimStatus.DISPUTED)
        return False

    _settle(claim, ResolutionRecord(
        verdict=verdict,
        confidence=confidence,
        method=ResolutionMethod.AUTOMATED,
        resolver=resolver,
        timestamp=now,
        evidence=evidence,
        reason=reason
    ))
    return True


def apply_human_verdict(
    claim: Claim,
    verdict: bool,
    arbiter: str,
    now: int,
    config: EscrowConfig,
    reason: str = None
) -> None:
    """Human arbiters may only decide DISPUTED claims."""
    require_status(claim, ClaimStatus.DISPUTED)
    _settle(claim, ResolutionRecord(
        verdict=verdict,
        confidence=config.human_confidence,
        method=ResolutionMethod.HUMAN,
        resolver=arbiter,
        timestamp=now,
        reason=reason
    ))


def _settle(claim: Claim, record: ResolutionRecord) -> None:
    if claim.resolution is not None:
        raise InvalidStatus(f"Claim {claim.claim_id} already has a resolution")
    _move(claim, ClaimStatus.RESOLVED)
    claim.winner = record.winner
    claim.resolution = record


def _move(claim: Claim, new: ClaimStatus) -> None:
    assert_transition(claim.status, new)
    claim.status = new
