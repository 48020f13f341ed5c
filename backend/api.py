"""
Claim Escrow API

Main API endpoints:
- /claims - open claims, stake on a side, close betting
- /claims/{id}/resolve/* - automated (resolver key) and human (admin key) verdicts
- /claims/{id}/payout - winners collect, net of the protocol fee
- /treasury, /stats - read-only accounting

Caller identity arrives as a plain field; verifying it belongs to the
transport in front of this service.
"""

import logging
import re
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

import settings
from escrow import (
    ClaimStatus, EscrowError, EscrowManager, Side,
    fingerprint_claim, get_escrow_manager
)
from scheduler import setup_scheduler, shutdown_scheduler

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("Escrow-API")

MAX_CLAIM_LENGTH = 2000
MIN_CLAIM_LENGTH = 3


# ==================== SECURITY HELPERS ====================

def sanitize_input(text: str) -> str:
    """Strip control characters and collapse whitespace."""
    if not text:
        return ""
    text = ''.join(char for char in text if ord(char) >= 32 or char in '\n\t')
    return re.sub(r'\s+', ' ', text).strip()


def verify_admin_key(x_admin_key: str = Header(None)) -> bool:
    """Verify admin API key for arbiter and faucet endpoints."""
    if not x_admin_key or x_admin_key != settings.ADMIN_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid or missing admin API key")
    return True


def verify_resolver_key(x_resolver_key: str = Header(None)) -> bool:
    """Verify the automated resolver's API key."""
    if not x_resolver_key or x_resolver_key != settings.RESOLVER_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid or missing resolver API key")
    return True


def get_manager() -> EscrowManager:
    return get_escrow_manager()


# ==================== LIFESPAN (Startup/Shutdown) ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Starting Claim Escrow API...")
    get_escrow_manager()
    await setup_scheduler()

    yield

    logger.info("Shutting down Claim Escrow API...")
    await shutdown_scheduler()


# ==================== FASTAPI APP ====================

app = FastAPI(
    title="Claim Escrow API",
    description="Peer-to-peer claim wagering with oracle resolution",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Admin-Key", "X-Resolver-Key"],
)


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} ({exc.message})")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# ==================== REQUEST MODELS (with validation) ====================

class OpenClaimRequest(BaseModel):
    creator: str = Field(..., min_length=1, max_length=100)
    claim_text: Optional[str] = Field(None, min_length=MIN_CLAIM_LENGTH, max_length=MAX_CLAIM_LENGTH)
    fingerprint: Optional[str] = Field(None, pattern="^[0-9a-f]{64}$")
    deadline: int = Field(..., gt=0)
    category: str = Field(default="general", max_length=64)
    subcategory: str = Field(default="", max_length=64)
    stake: int = Field(..., gt=0)

    @field_validator('claim_text')
    @classmethod
    def validate_claim_text(cls, v: Optional[str]) -> Optional[str]:
        """Sanitize claim text before it is fingerprinted."""
        if v is None:
            return v
        sanitized = sanitize_input(v)
        if len(sanitized) < MIN_CLAIM_LENGTH:
            raise ValueError(f"Claim too short (min {MIN_CLAIM_LENGTH} chars)")
        return sanitized


class JoinRequest(BaseModel):
    participant: str = Field(..., min_length=1, max_length=100)
    side: str = Field(..., pattern="^(A|B)$")
    amount: int = Field(..., gt=0)


class LockRequest(BaseModel):
    caller: str = Field(..., min_length=1, max_length=100)


class AutomatedResolveRequest(BaseModel):
    verdict: bool
    confidence: int = Field(..., ge=0, le=100)
    evidence_cid: Optional[str] = None
    reason: Optional[str] = Field(None, max_length=2000)


class HumanResolveRequest(BaseModel):
    verdict: bool
    arbiter: str = Field(..., min_length=1, max_length=100)
    reason: Optional[str] = Field(None, max_length=2000)


class PayoutRequest(BaseModel):
    caller: str = Field(..., min_length=1, max_length=100)
    side: str = Field(..., pattern="^(A|B)$")
    index: int = Field(..., ge=0)


# ==================== HEALTH CHECK ====================

@app.get("/")
def read_root():
    return {
        "status": "online",
        "service": "Claim Escrow API",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check(manager: EscrowManager = Depends(get_manager)):
    stats = manager.get_stats()
    return {"status": "healthy", "claims": stats["total_claims"]}


# ==================== CLAIM ENDPOINTS ====================

@app.post("/claims")
def open_claim(request: OpenClaimRequest, manager: EscrowManager = Depends(get_manager)):
    """Open a claim; the creator's stake seeds side A."""
    if request.claim_text:
        fingerprint = fingerprint_claim(request.claim_text)
    elif request.fingerprint:
        fingerprint = request.fingerprint
    else:
        raise HTTPException(status_code=422, detail="Provide claim_text or fingerprint")

    claim = manager.open_claim(
        creator=request.creator,
        fingerprint=fingerprint,
        deadline=request.deadline,
        category=request.category,
        subcategory=request.subcategory,
        initial_stake=request.stake
    )
    return {"success": True, "claim": manager.snapshot(claim.claim_id)}


@app.get("/claims")
def list_claims(
    status: Optional[str] = Query(None, pattern="^(open|locked|resolving|disputed|resolved)$"),
    category: Optional[str] = None,
    limit: int = Query(default=50, le=200),
    manager: EscrowManager = Depends(get_manager)
):
    """List claims with optional filtering."""
    claims = manager.list_snapshots(
        status=ClaimStatus(status) if status else None,
        category=category
    )
    return {
        "claims": claims[:limit],
        "total": len(claims)
    }


@app.get("/claims/{claim_id}")
def get_claim(claim_id: str, manager: EscrowManager = Depends(get_manager)):
    """Claim details with both pool ledgers."""
    claim = manager.snapshot(claim_id, include_entries=True)
    entries = claim.pop("entries")
    return {"claim": claim, "entries": entries}


@app.get("/claims/{claim_id}/pool")
def get_pool_totals(claim_id: str, manager: EscrowManager = Depends(get_manager)):
    """Pool totals and the odds the next stake on each side would lock."""
    return manager.get_pool_totals(claim_id)


@app.post("/claims/{claim_id}/join")
def join_claim(claim_id: str, request: JoinRequest, manager: EscrowManager = Depends(get_manager)):
    """Stake on one side of an open claim."""
    receipt = manager.join(claim_id, Side(request.side), request.participant, request.amount)
    return {"success": True, "entry": receipt}


@app.post("/claims/{claim_id}/lock")
def lock_claim(claim_id: str, request: LockRequest, manager: EscrowManager = Depends(get_manager)):
    """Creator closes betting."""
    manager.lock_claim(claim_id, request.caller)
    return {"success": True, "claim": manager.snapshot(claim_id)}


@app.post("/claims/{claim_id}/resolve/automated")
def resolve_automated(
    claim_id: str,
    request: AutomatedResolveRequest,
    resolver_verified: bool = Depends(verify_resolver_key),
    manager: EscrowManager = Depends(get_manager)
):
    """Apply an oracle verdict (requires X-Resolver-Key header)."""
    manager.resolve_automated(
        claim_id,
        request.verdict,
        request.confidence,
        resolver=settings.RESOLVER_ID,
        evidence=request.evidence_cid,
        reason=request.reason
    )
    claim = manager.snapshot(claim_id)
    return {
        "success": True,
        "resolved": claim["status"] == ClaimStatus.RESOLVED.value,
        "claim": claim
    }


@app.post("/claims/{claim_id}/resolve/human")
def resolve_human(
    claim_id: str,
    request: HumanResolveRequest,
    admin_verified: bool = Depends(verify_admin_key),
    manager: EscrowManager = Depends(get_manager)
):
    """Arbiter decides a disputed claim (requires X-Admin-Key header)."""
    manager.resolve_human(claim_id, request.verdict, request.arbiter, reason=request.reason)
    return {"success": True, "claim": manager.snapshot(claim_id)}


@app.post("/claims/{claim_id}/payout")
def claim_payout(claim_id: str, request: PayoutRequest, manager: EscrowManager = Depends(get_manager)):
    """Collect the payout for one winning entry."""
    receipt = manager.claim_payout(claim_id, Side(request.side), request.index, request.caller)
    return {"success": True, "payout": receipt}


# ==================== PARTICIPANT & ACCOUNTING ====================

@app.get("/participants/{participant}/positions")
def get_positions(participant: str, manager: EscrowManager = Depends(get_manager)):
    """Every stake a participant holds, across claims."""
    positions = manager.get_positions(participant)
    return {"participant": participant, "positions": positions}


@app.get("/treasury")
def get_treasury(manager: EscrowManager = Depends(get_manager)):
    """Protocol fee account."""
    account = manager.config.treasury_account
    return {"account": account, "balance": manager.funds.balance(account)}


@app.get("/stats")
def get_stats(manager: EscrowManager = Depends(get_manager)):
    """Overall escrow statistics."""
    return manager.get_stats()


@app.post("/accounts/{account}/deposit")
def deposit(
    account: str,
    amount: int = Query(..., gt=0),
    admin_verified: bool = Depends(verify_admin_key),
    manager: EscrowManager = Depends(get_manager)
):
    """Credit an account (development faucet, admin only)."""
    if not hasattr(manager.funds, "deposit"):
        raise HTTPException(status_code=501, detail="Funds backend does not accept deposits")
    balance = manager.funds.deposit(account, amount)
    return {"success": True, "account": account, "balance": balance}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
