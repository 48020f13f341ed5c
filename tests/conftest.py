"""Test configuration and common fixtures."""

import pytest

from escrow import Claim, EscrowConfig, EscrowManager, InMemoryFunds, fingerprint_claim

NOW = 1_700_000_000
DEADLINE = NOW + 3600
STARTING_BALANCE = 10_000

CLAIM_TEXT = "The city council approves the new stadium before March"


class FakeClock:
    """Settable clock so deadline sweeps are deterministic."""

    def __init__(self, now: int = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def funds() -> InMemoryFunds:
    """In-memory funds with every test participant pre-funded."""
    return InMemoryFunds({
        name: STARTING_BALANCE
        for name in ("alice", "bob", "carol", "dave", "erin")
    })


@pytest.fixture
def config() -> EscrowConfig:
    return EscrowConfig()


@pytest.fixture
def manager(funds: InMemoryFunds, config: EscrowConfig, clock: FakeClock) -> EscrowManager:
    return EscrowManager(funds=funds, config=config, clock=clock)


@pytest.fixture
def claim(manager: EscrowManager) -> Claim:
    """Alice's claim, seeded with 1000 on side A."""
    return manager.open_claim(
        creator="alice",
        fingerprint=fingerprint_claim(CLAIM_TEXT),
        deadline=DEADLINE,
        category="politics",
        subcategory="local",
        initial_stake=1000
    )


@pytest.fixture
def bare_claim() -> Claim:
    """A claim outside any manager, for exercising transitions directly."""
    return Claim(
        claim_id="c" * 64,
        creator="alice",
        fingerprint=fingerprint_claim(CLAIM_TEXT),
        deadline=DEADLINE
    )
