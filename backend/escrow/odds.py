"""
Odds Engine

Parimutuel-style pricing, fixed-point at scale 1000 (1000 = 1.000x):

    first stake on a side:   odds = 1000
    later stakes on side S:  odds = floor((total_a + total_b) * 1000 / total_S)

Totals are the ones visible before the new stake is added. Odds are priced
once, at join time, and locked into the entry; nothing here is consulted to
re-price an existing entry.
"""

from typing import Dict

from escrow.ledger import PoolLedger
from escrow.models import Side

ODDS_SCALE = 1000


def price_entry(ledger: PoolLedger, side: Side, scale: int = ODDS_SCALE) -> int:
    """Odds the next stake on `side` locks in."""
    side_total = ledger.total_of(side)
    if ledger.count(side) == 0 or side_total == 0:
        return scale
    total_a, total_b = ledger.totals()
    return (total_a + total_b) * scale // side_total


def implied_odds(ledger: PoolLedger, scale: int = ODDS_SCALE) -> Dict[str, int]:
    """Quote for both sides, e.g. for display before joining."""
    return {side.value: price_entry(ledger, side, scale) for side in (Side.A, Side.B)}
