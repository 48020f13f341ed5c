"""Tests for odds pricing and payout arithmetic."""

import pytest

from escrow import PoolLedger, Side, compute_payout, implied_odds, price_entry, quote_payout


@pytest.fixture
def ledger() -> PoolLedger:
    return PoolLedger()


class TestPriceEntry:
    def test_first_stake_on_a_side_is_even(self, ledger):
        assert price_entry(ledger, Side.A) == 1000
        assert price_entry(ledger, Side.B) == 1000

    def test_first_stake_on_empty_side_ignores_other_side(self, ledger):
        ledger.append(Side.A, "alice", 1000, 1000)
        assert price_entry(ledger, Side.B) == 1000

    def test_later_stakes_use_pool_ratio(self, ledger):
        ledger.append(Side.A, "alice", 1000, 1000)
        ledger.append(Side.B, "bob", 500, 1000)

        # (1000 + 500) * 1000 / 500
        assert price_entry(ledger, Side.B) == 3000
        # (1000 + 500) * 1000 / 1000
        assert price_entry(ledger, Side.A) == 1500

    def test_odds_are_floored(self, ledger):
        ledger.append(Side.A, "alice", 1500, 1000)
        ledger.append(Side.B, "bob", 1000, 1000)

        # 2500 * 1000 / 1500 = 1666.67
        assert price_entry(ledger, Side.A) == 1666

    def test_custom_scale(self, ledger):
        ledger.append(Side.A, "alice", 100, 10_000)
        ledger.append(Side.B, "bob", 300, 10_000)
        assert price_entry(ledger, Side.A, scale=10_000) == 40_000

    def test_implied_odds_quotes_both_sides(self, ledger):
        ledger.append(Side.A, "alice", 1000, 1000)
        ledger.append(Side.B, "bob", 1000, 1000)
        assert implied_odds(ledger) == {"A": 2000, "B": 2000}


class TestPayout:
    def test_even_odds(self):
        assert compute_payout(1000, 1000) == (985, 15)

    def test_quote_breakdown(self):
        quote = quote_payout(1000, 1000)
        assert quote.gross == 1000
        assert quote.fee == 15
        assert quote.net == 985
        assert quote.to_dict() == {"gross": 1000, "fee": 15, "net": 985}

    def test_gross_and_fee_are_floored(self):
        # gross = 333 * 1666 / 1000 = 554.78 -> 554; fee = 554 * 15 / 1000 = 8.31 -> 8
        assert quote_payout(333, 1666) == (554, 8, 546)

    def test_small_stake_pays_no_fee(self):
        assert compute_payout(50, 1000) == (50, 0)

    def test_net_plus_fee_equals_gross(self):
        for stake, odds in [(1, 1000), (777, 1333), (10_000, 4000), (12_345, 1001)]:
            quote = quote_payout(stake, odds)
            assert quote.net + quote.fee == quote.gross

    def test_custom_fee(self):
        assert compute_payout(1000, 2000, fee_per_mille=50) == (1900, 100)
