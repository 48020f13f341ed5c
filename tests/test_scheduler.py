"""Tests for the background resolution jobs."""

import asyncio
import threading

import pytest

import settings
from escrow import ClaimStatus, Side
from oracle import OracleError, OracleVerdict
from scheduler import BackgroundScheduler, lock_expired_claims, resolve_pending_claims

from conftest import DEADLINE


class FakeOracle:
    def __init__(self, verdict: bool = True, confidence: int = 95, fail: bool = False):
        self.verdict = verdict
        self.confidence = confidence
        self.fail = fail
        self.calls = []

    async def evaluate(self, claim):
        self.calls.append(claim.claim_id)
        if self.fail:
            raise OracleError("webhook down")
        return OracleVerdict(verdict=self.verdict, confidence=self.confidence, evidence_cid="cid-1")


async def test_lock_expired_claims(manager, clock, claim):
    assert await lock_expired_claims(manager) == []
    clock.now = DEADLINE
    assert await lock_expired_claims(manager) == [claim.claim_id]
    assert claim.status == ClaimStatus.LOCKED


async def test_resolves_locked_claims(manager, claim):
    manager.join(claim.claim_id, Side.B, "bob", 500)
    manager.lock_claim(claim.claim_id, "alice")
    oracle = FakeOracle(verdict=False, confidence=97)

    results = await resolve_pending_claims(manager, oracle, resolver_id="bot-1")

    assert results == [(claim.claim_id, "resolved")]
    assert claim.winner == Side.B
    assert claim.resolution.resolver == "bot-1"
    assert claim.resolution.evidence == "cid-1"


async def test_low_confidence_leaves_claim_disputed(manager, claim):
    manager.lock_claim(claim.claim_id, "alice")

    results = await resolve_pending_claims(manager, FakeOracle(confidence=50))

    assert results == [(claim.claim_id, "disputed")]
    # disputed claims wait for a human and are not re-sent
    oracle = FakeOracle()
    assert await resolve_pending_claims(manager, oracle) == []
    assert oracle.calls == []


async def test_oracle_failure_is_retried_next_run(manager, claim):
    manager.lock_claim(claim.claim_id, "alice")

    assert await resolve_pending_claims(manager, FakeOracle(fail=True)) == []
    assert claim.status == ClaimStatus.RESOLVING

    assert await resolve_pending_claims(manager, FakeOracle()) == [(claim.claim_id, "resolved")]


async def test_open_claims_are_skipped(manager, claim):
    oracle = FakeOracle()
    assert await resolve_pending_claims(manager, oracle) == []
    assert oracle.calls == []


async def test_no_oracle_configured(manager, claim, monkeypatch):
    import oracle as oracle_pkg

    monkeypatch.setattr(settings, "ORACLE_WEBHOOK_URL", "")
    monkeypatch.setattr(oracle_pkg, "_oracle", None)
    manager.lock_claim(claim.claim_id, "alice")

    assert await resolve_pending_claims(manager) == []
    assert claim.status == ClaimStatus.LOCKED


async def test_scheduler_runs_periodic_task():
    scheduler = BackgroundScheduler()
    runs = []

    async def task():
        runs.append(1)

    await scheduler.start()
    scheduler.schedule_periodic("tick", task, interval_seconds=0.01, run_immediately=True)
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert runs
    assert scheduler.tasks == {}
    assert scheduler.running is False


async def test_scheduler_survives_task_errors():
    scheduler = BackgroundScheduler()
    runs = []

    async def flaky():
        runs.append(1)
        raise RuntimeError("boom")

    await scheduler.start()
    scheduler.schedule_periodic("flaky", flaky, interval_seconds=0.01, run_immediately=True)
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert len(runs) > 1


async def test_sweep_does_not_block_event_loop(manager, clock, claim):
    clock.now = DEADLINE
    claim_lock = manager._claim_lock(claim.claim_id)
    claim_lock.acquire()
    release = threading.Timer(0.3, claim_lock.release)
    release.start()

    sweep = asyncio.create_task(lock_expired_claims(manager))
    ticks = 0
    while not sweep.done():
        ticks += 1
        await asyncio.sleep(0.01)

    assert await sweep == [claim.claim_id]
    # the loop kept running while the sweep waited on the claim lock
    assert ticks > 5
    release.join()
