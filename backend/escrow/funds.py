"""
Funds transfer capability.

The escrow never mutates balances itself; it asks an injected backend to move
units between custodial accounts. A transfer is all-or-nothing.
"""

import logging
import threading
from typing import Dict, Optional, Protocol

from escrow.errors import InsufficientFunds, InvalidArgument

logger = logging.getLogger(__name__)


class FundsTransfer(Protocol):
    """Protocol every funds backend implements."""

    def transfer(self, source: str, destination: str, amount: int) -> None:
        """Move `amount` units; raise InsufficientFunds and move nothing if `source` is short."""
        ...

    def balance(self, account: str) -> int:
        """Current balance of an account (0 if unknown)."""
        ...


class InMemoryFunds:
    """
    Process-local balances.

    Good enough for tests and local development; the SQLite-backed
    `escrow.database.SqliteFunds` is what the API wires in.
    """

    def __init__(self, balances: Optional[Dict[str, int]] = None):
        self._balances: Dict[str, int] = dict(balances or {})
        self._lock = threading.Lock()

    def deposit(self, account: str, amount: int) -> int:
        if amount <= 0:
            raise InvalidArgument("Deposit must be positive")
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + amount
            return self._balances[account]

    def transfer(self, source: str, destination: str, amount: int) -> None:
        if amount < 0:
            raise InvalidArgument("Transfer amount cannot be negative")
        if amount == 0:
            return
        with self._lock:
            available = self._balances.get(source, 0)
            if available < amount:
                raise InsufficientFunds(f"{source} has {available}, needs {amount}")
            self._balances[source] = available - amount
            self._balances[destination] = self._balances.get(destination, 0) + amount
        logger.debug(f"Moved {amount} from {source} to {destination}")

    def balance(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._balances)
