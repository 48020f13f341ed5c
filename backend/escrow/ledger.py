"""
Pool Ledger

Authoritative per-side record of every stake on a claim. Entries are
append-only; their position on a side is the index payouts are looked up by.
"""

from typing import Any, Dict, List, Tuple

from escrow.errors import IndexOutOfRange, NotOwner, PayoutAlreadyClaimed
from escrow.models import PoolEntry, Side


class PoolLedger:
    """Both sides' entry sequences for one claim, with running totals."""

    def __init__(self):
        self._entries: Dict[Side, List[PoolEntry]] = {Side.A: [], Side.B: []}
        self._totals: Dict[Side, int] = {Side.A: 0, Side.B: 0}

    def append(self, side: Side, participant: str, amount: int, odds: int) -> int:
        """Record a new stake and return its index on that side."""
        entries = self._entries[side]
        entries.append(PoolEntry(participant=participant, amount=amount, odds=odds))
        self._totals[side] += amount
        return len(entries) - 1

    def restore(self, side: Side, data: Dict[str, Any]) -> None:
        """Re-append a persisted entry, preserving its claimed flag."""
        entry = PoolEntry.from_dict(data)
        self._entries[side].append(entry)
        self._totals[side] += entry.amount

    def total_of(self, side: Side) -> int:
        return self._totals[side]

    def totals(self) -> Tuple[int, int]:
        return self._totals[Side.A], self._totals[Side.B]

    def count(self, side: Side) -> int:
        return len(self._entries[side])

    def entries(self, side: Side) -> List[PoolEntry]:
        return list(self._entries[side])

    def entry_at(self, side: Side, index: int, caller: str) -> PoolEntry:
        """
        Look up an entry for its owner.

        Raises:
            IndexOutOfRange: no entry at that position on the side
            NotOwner: caller is not the entry's participant
        """
        entries = self._entries[side]
        if index < 0 or index >= len(entries):
            raise IndexOutOfRange(f"No entry {index} on side {side.value}")
        entry = entries[index]
        if entry.participant != caller:
            raise NotOwner(f"Entry {index} on side {side.value} does not belong to {caller}")
        return entry

    def positions_of(self, participant: str) -> List[Tuple[Side, int, PoolEntry]]:
        """Every (side, index, entry) the participant holds on this claim."""
        positions = []
        for side in (Side.A, Side.B):
            for index, entry in enumerate(self._entries[side]):
                if entry.participant == participant:
                    positions.append((side, index, entry))
        return positions

    def mark_claimed(self, side: Side, index: int) -> None:
        entry = self._entries[side][index]
        if entry.claimed:
            raise PayoutAlreadyClaimed(f"Entry {index} on side {side.value} already paid out")
        entry.claimed = True

    def unmark_claimed(self, side: Side, index: int) -> None:
        # Only used to roll back a payout whose transfer failed
        self._entries[side][index].claimed = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            side.value: [entry.to_dict() for entry in self._entries[side]]
            for side in (Side.A, Side.B)
        }
