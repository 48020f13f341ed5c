"""
Payout Calculator

    gross = floor(stake * locked_odds / 1000)
    fee   = floor(gross * 15 / 1000)     # 1.5% protocol fee
    net   = gross - fee

The winning holding is debited exactly `net + fee` (== gross).
"""

from typing import NamedTuple, Tuple

from escrow.odds import ODDS_SCALE

FEE_PER_MILLE = 15


class PayoutQuote(NamedTuple):
    gross: int
    fee: int
    net: int

    def to_dict(self) -> dict:
        return self._asdict()


def quote_payout(
    stake: int,
    locked_odds: int,
    scale: int = ODDS_SCALE,
    fee_per_mille: int = FEE_PER_MILLE
) -> PayoutQuote:
    gross = stake * locked_odds // scale
    fee = gross * fee_per_mille // 1000
    return PayoutQuote(gross=gross, fee=fee, net=gross - fee)


def compute_payout(
    stake: int,
    locked_odds: int,
    scale: int = ODDS_SCALE,
    fee_per_mille: int = FEE_PER_MILLE
) -> Tuple[int, int]:
    """Return (net, fee) for one winning entry."""
    quote = quote_payout(stake, locked_odds, scale, fee_per_mille)
    return quote.net, quote.fee
