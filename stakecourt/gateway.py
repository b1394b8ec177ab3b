"""
Token transfer gateway.

Stake accounts never hold balances themselves: they move tokens through a
gateway and treat a ``False`` return as a refused transfer. ``InMemoryToken``
is a complete fungible ledger with allowances, used for simulations and
tests.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Dict, Tuple

from stakecourt.hardening import InvariantChecker, Validators
from stakecourt.observability import Layer, get_logger

logger = get_logger("token", Layer.GATEWAY)


class TokenGateway(ABC):
    """Interface to a fungible token ledger."""

    address: str

    @abstractmethod
    def transfer(self, sender: str, to: str, amount: int) -> bool:
        """Move ``amount`` from ``sender`` to ``to``."""

    @abstractmethod
    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        """Move ``amount`` out of ``owner`` using ``spender``'s allowance."""

    @abstractmethod
    def balance_of(self, holder: str) -> int:
        ...


class InMemoryToken(TokenGateway):
    """Thread-safe in-memory token ledger."""

    def __init__(self, address: str = "token"):
        self.address = address
        self._balances: Dict[str, int] = {}
        self._allowances: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def mint(self, holder: str, amount: int) -> None:
        Validators.token_amount("amount", amount)
        with self._lock:
            self._balances[holder] = self._balances.get(holder, 0) + amount

    def approve(self, owner: str, spender: str, amount: int) -> None:
        """Set (not add to) ``spender``'s allowance over ``owner``'s tokens."""
        Validators.token_amount("amount", amount)
        with self._lock:
            self._allowances[(owner, spender)] = amount

    def allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self._allowances.get((owner, spender), 0)

    def balance_of(self, holder: str) -> int:
        with self._lock:
            return self._balances.get(holder, 0)

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        with self._lock:
            if amount < 0 or self._balances.get(sender, 0) < amount:
                logger.debug("Transfer refused", sender=sender, to=to, amount=amount)
                return False
            self._move(sender, to, amount)
            return True

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        with self._lock:
            allowed = self._allowances.get((owner, spender), 0)
            if amount < 0 or allowed < amount or self._balances.get(owner, 0) < amount:
                logger.debug(
                    "Delegated transfer refused",
                    spender=spender, owner=owner, to=to, amount=amount, allowance=allowed,
                )
                return False
            self._allowances[(owner, spender)] = allowed - amount
            self._move(owner, to, amount)
            return True

    def _move(self, sender: str, to: str, amount: int) -> None:
        self._balances[sender] = self._balances.get(sender, 0) - amount
        InvariantChecker.check_non_negative(f"balance of {sender}", self._balances[sender])
        self._balances[to] = self._balances.get(to, 0) + amount

    @property
    def total_supply(self) -> int:
        with self._lock:
            return sum(self._balances.values())


__all__ = ["TokenGateway", "InMemoryToken"]
