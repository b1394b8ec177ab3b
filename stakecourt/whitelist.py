"""Whitelist registries consulted for arbiter membership."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Set


class Whitelist(ABC):
    """Read-only membership test."""

    @abstractmethod
    def is_whitelisted(self, address: str) -> bool:
        ...


class StaticWhitelist(Whitelist):
    """Whitelist backed by an in-memory set, editable by its operator."""

    def __init__(self, members: Optional[Iterable[str]] = None):
        self._members: Set[str] = set(members or ())
        self._lock = threading.Lock()

    def add(self, address: str) -> None:
        with self._lock:
            self._members.add(address)

    def remove(self, address: str) -> bool:
        with self._lock:
            if address in self._members:
                self._members.discard(address)
                return True
            return False

    def is_whitelisted(self, address: str) -> bool:
        with self._lock:
            return address in self._members

    def members(self) -> List[str]:
        with self._lock:
            return sorted(self._members)

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)


__all__ = ["Whitelist", "StaticWhitelist"]
