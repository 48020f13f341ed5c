"""
Runtime configuration.

Everything is read from the environment (a local .env file is loaded first).
"""

import os

from dotenv import load_dotenv

from escrow.models import EscrowConfig

load_dotenv()


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else default
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


BASE_DIR = os.path.dirname(os.path.abspath(__file__))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Storage
ESCROW_DB_PATH = os.getenv("ESCROW_DB_PATH", os.path.join(BASE_DIR, "storage", "escrow.db"))

# Access keys for the resolution endpoints
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "escrow-admin-key-change-in-prod")
RESOLVER_API_KEY = os.getenv("RESOLVER_API_KEY", "escrow-resolver-key-change-in-prod")
RESOLVER_ID = os.getenv("RESOLVER_ID", "oracle")

# Protocol
TREASURY_ACCOUNT = os.getenv("TREASURY_ACCOUNT", "treasury")
CONFIDENCE_THRESHOLD = _get_int("CONFIDENCE_THRESHOLD", 85)
FEE_PER_MILLE = _get_int("FEE_PER_MILLE", 15)

# Oracle webhook
ORACLE_WEBHOOK_URL = os.getenv("ORACLE_WEBHOOK_URL", "")
ORACLE_TIMEOUT_SECONDS = float(os.getenv("ORACLE_TIMEOUT_SECONDS", "30"))

# Scheduler intervals (seconds)
LOCK_SWEEP_INTERVAL = _get_int("LOCK_SWEEP_INTERVAL", 60)
RESOLVE_INTERVAL = _get_int("RESOLVE_INTERVAL", 300)

# CORS
ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    os.getenv("FRONTEND_URL", "http://localhost:3000"),
]

if os.getenv("CORS_ALLOW_ALL", "").lower() == "true":
    ALLOWED_ORIGINS = ["*"]


def get_escrow_config() -> EscrowConfig:
    return EscrowConfig(
        fee_per_mille=FEE_PER_MILLE,
        confidence_threshold=CONFIDENCE_THRESHOLD,
        treasury_account=TREASURY_ACCOUNT
    )
