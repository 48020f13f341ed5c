"""
SQLite storage for the claim escrow.

Provides persistent storage for claims, their pool entries, and the
custodial holdings the escrow moves funds between.
"""

import json
import logging
import os
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from escrow.claim import Claim
from escrow.errors import InsufficientFunds, InvalidArgument
from escrow.models import Side

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "storage", "escrow.db")


class EscrowDatabase:
    """SQLite-backed claim store."""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or os.environ.get("ESCROW_DB_PATH", DEFAULT_DB_PATH)

        db_dir = os.path.dirname(self.db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._local = threading.local()

        self.init_database()
        logger.info(f"EscrowDatabase initialized at {self.db_path}")

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.

        Inside `transaction()` this hands out the transaction's connection and
        leaves commit/rollback to it.
        """
        active = getattr(self._local, "conn", None)
        if active is not None:
            yield active
            return

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        """
        Group claim saves and fund movements on this thread into one commit.

        Everything written through `get_connection()` inside the block (by this
        store or by `SqliteFunds`) commits together or not at all.
        """
        if getattr(self._local, "conn", None) is not None:
            yield self._local.conn
            return

        with self.get_connection() as conn:
            self._local.conn = conn
            try:
                yield conn
            finally:
                self._local.conn = None

    def init_database(self):
        """Initialize the database schema."""
        with self.get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS claims (
                    claim_id TEXT PRIMARY KEY,
                    creator TEXT NOT NULL,
                    fingerprint TEXT NOT NULL,
                    deadline INTEGER NOT NULL,
                    category TEXT,
                    subcategory TEXT,
                    status TEXT NOT NULL DEFAULT 'open',
                    winner TEXT,
                    resolution TEXT,  -- JSON object, written once
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    UNIQUE(creator, fingerprint)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS pool_entries (
                    claim_id TEXT NOT NULL,
                    side TEXT NOT NULL,  -- 'A' or 'B'
                    position INTEGER NOT NULL,
                    participant TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    odds INTEGER NOT NULL,
                    claimed INTEGER NOT NULL DEFAULT 0,
                    joined_at TEXT NOT NULL,
                    PRIMARY KEY (claim_id, side, position),
                    FOREIGN KEY (claim_id) REFERENCES claims(claim_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS holdings (
                    account TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL DEFAULT 0 CHECK (balance >= 0),
                    updated_at TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS transfers (
                    tx_id TEXT PRIMARY KEY,
                    source TEXT,  -- NULL for deposits
                    destination TEXT NOT NULL,
                    amount INTEGER NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_claims_status ON claims(status)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_entries_participant ON pool_entries(participant)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_transfers_source ON transfers(source)")

    # ==================== CLAIM OPERATIONS ====================

    def save_claim(self, claim: Claim) -> None:
        """Upsert a claim and its entries in one transaction."""
        now = datetime.utcnow().isoformat()
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO claims (
                    claim_id, creator, fingerprint, deadline, category, subcategory,
                    status, winner, resolution, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(claim_id) DO UPDATE SET
                    status = excluded.status,
                    winner = excluded.winner,
                    resolution = excluded.resolution,
                    updated_at = excluded.updated_at
            """, (
                claim.claim_id,
                claim.creator,
                claim.fingerprint,
                claim.deadline,
                claim.category,
                claim.subcategory,
                claim.status.value,
                claim.winner.value if claim.winner else None,
                json.dumps(claim.resolution.to_dict()) if claim.resolution else None,
                claim.created_at,
                now
            ))

            for side in (Side.A, Side.B):
                for position, entry in enumerate(claim.ledger.entries(side)):
                    # Entries are append-only; only the claimed flag ever changes
                    cursor.execute("""
                        INSERT INTO pool_entries (
                            claim_id, side, position, participant, amount, odds, claimed, joined_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT(claim_id, side, position) DO UPDATE SET
                            claimed = excluded.claimed
                    """, (
                        claim.claim_id,
                        side.value,
                        position,
                        entry.participant,
                        entry.amount,
                        entry.odds,
                        1 if entry.claimed else 0,
                        entry.joined_at
                    ))

    def get_claim(self, claim_id: str) -> Optional[Claim]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM claims WHERE claim_id = ?", (claim_id,))
            row = cursor.fetchone()
            if not row:
                return None
            return self._row_to_claim(cursor, row)

    def load_claims(self) -> List[Claim]:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM claims ORDER BY created_at")
            rows = cursor.fetchall()
            return [self._row_to_claim(cursor, row) for row in rows]

    def _row_to_claim(self, cursor: sqlite3.Cursor, row: sqlite3.Row) -> Claim:
        data = dict(row)
        if data.get("resolution"):
            data["resolution"] = json.loads(data["resolution"])

        cursor.execute("""
            SELECT * FROM pool_entries WHERE claim_id = ?
            ORDER BY side, position
        """, (data["claim_id"],))
        entries = []
        for entry_row in cursor.fetchall():
            entry = dict(entry_row)
            entry["claimed"] = bool(entry["claimed"])
            entries.append((Side(entry["side"]), entry))

        return Claim.from_dict(data, entries)

    # ==================== HOLDING OPERATIONS ====================

    def get_balance(self, account: str) -> int:
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT balance FROM holdings WHERE account = ?", (account,))
            row = cursor.fetchone()
            return row["balance"] if row else 0

    def get_transfers(self, account: str = None, limit: int = 50) -> List[Dict[str, Any]]:
        """Recent transfers, optionally only those touching one account."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            if account:
                cursor.execute("""
                    SELECT * FROM transfers
                    WHERE source = ? OR destination = ?
                    ORDER BY created_at DESC LIMIT ?
                """, (account, account, limit))
            else:
                cursor.execute("SELECT * FROM transfers ORDER BY created_at DESC LIMIT ?", (limit,))
            return [dict(row) for row in cursor.fetchall()]


class SqliteFunds:
    """
    Funds transfer capability backed by the `holdings` table.

    Writes go through `db.get_connection()`, so inside `db.transaction()` they
    commit with the claim save.
    """

    def __init__(self, db: EscrowDatabase):
        self.db = db

    def deposit(self, account: str, amount: int) -> int:
        """Credit an account from outside the system (development faucet)."""
        if amount <= 0:
            raise InvalidArgument("Deposit must be positive")
        now = datetime.utcnow().isoformat()
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            self._credit(cursor, account, amount, now)
            self._record(cursor, None, account, amount, now)
            cursor.execute("SELECT balance FROM holdings WHERE account = ?", (account,))
            balance = cursor.fetchone()["balance"]
        logger.info(f"Deposited {amount} into {account}")
        return balance

    def transfer(self, source: str, destination: str, amount: int) -> None:
        if amount < 0:
            raise InvalidArgument("Transfer amount cannot be negative")
        if amount == 0:
            return
        now = datetime.utcnow().isoformat()
        with self.db.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                UPDATE holdings SET balance = balance - ?, updated_at = ?
                WHERE account = ? AND balance >= ?
            """, (amount, now, source, amount))
            if cursor.rowcount == 0:
                cursor.execute("SELECT balance FROM holdings WHERE account = ?", (source,))
                row = cursor.fetchone()
                available = row["balance"] if row else 0
                raise InsufficientFunds(f"{source} has {available}, needs {amount}")
            self._credit(cursor, destination, amount, now)
            self._record(cursor, source, destination, amount, now)

    def balance(self, account: str) -> int:
        return self.db.get_balance(account)

    @staticmethod
    def _credit(cursor: sqlite3.Cursor, account: str, amount: int, now: str):
        cursor.execute("""
            INSERT INTO holdings (account, balance, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(account) DO UPDATE SET
                balance = balance + excluded.balance,
                updated_at = excluded.updated_at
        """, (account, amount, now))

    @staticmethod
    def _record(cursor: sqlite3.Cursor, source: Optional[str], destination: str, amount: int, now: str):
        cursor.execute("""
            INSERT INTO transfers (tx_id, source, destination, amount, created_at)
            VALUES (?, ?, ?, ?, ?)
        """, (f"tx_{uuid.uuid4().hex[:12]}", source, destination, amount, now))
