"""
Oracle Package

Automated verdicts for locked claims. Low-confidence verdicts are handed to
a human arbiter by the escrow state machine, not here.
"""

from typing import Optional

from oracle.client import OracleError, OracleProvider, OracleVerdict, WebhookOracle

_oracle: Optional[WebhookOracle] = None


def get_oracle() -> Optional[WebhookOracle]:
    """Configured webhook oracle, or None when ORACLE_WEBHOOK_URL is unset."""
    global _oracle
    if _oracle is None:
        import settings

        if not settings.ORACLE_WEBHOOK_URL:
            return None
        _oracle = WebhookOracle(settings.ORACLE_WEBHOOK_URL, timeout=settings.ORACLE_TIMEOUT_SECONDS)
    return _oracle


__all__ = [
    "OracleError",
    "OracleProvider",
    "OracleVerdict",
    "WebhookOracle",
    "get_oracle",
]
