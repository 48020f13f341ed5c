"""
Oracle client for automated claim resolution.

The classifier itself lives behind a webhook. We post the claim's identity
and metadata and get back a verdict with a 0-100 confidence score:

    {"verdict": true, "confidence": 92, "evidence_cid": "...", "reason": "..."}
"""

import logging
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from escrow.claim import Claim

logger = logging.getLogger(__name__)


class OracleError(Exception):
    """The oracle could not produce a usable verdict."""


class OracleVerdict(BaseModel):
    """Verdict returned by the oracle."""
    verdict: bool
    confidence: int = Field(..., ge=0, le=100)
    evidence_cid: Optional[str] = None
    reason: Optional[str] = None


class OracleProvider(Protocol):
    """Protocol defining the interface for oracles."""

    async def evaluate(self, claim: Claim) -> OracleVerdict:
        """Decide a claim."""
        ...


class WebhookOracle:
    """Oracle reached over HTTP."""

    def __init__(self, url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def evaluate(self, claim: Claim) -> OracleVerdict:
        payload = {
            "claim_id": claim.claim_id,
            "fingerprint": claim.fingerprint,
            "category": claim.category,
            "subcategory": claim.subcategory,
            "deadline": claim.deadline
        }

        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
            response.raise_for_status()
            result = OracleVerdict.model_validate(response.json())
        except httpx.HTTPError as e:
            raise OracleError(f"Oracle request failed for claim {claim.claim_id}: {e}") from e
        except (ValueError, ValidationError) as e:
            raise OracleError(f"Oracle returned an unusable verdict for claim {claim.claim_id}: {e}") from e

        logger.info(f"Oracle verdict for {claim.claim_id}: {result.verdict} ({result.confidence}%)")
        return result
