"""
Withdrawal lockup timer.

A staker who wants their stake back must wait ``duration`` seconds after
requesting withdrawal. The countdown stops while any claim is unresolved
and picks up where it left off once the last one closes, so time spent in
disputes is neither counted against the staker nor skipped.

``ending == 0`` means the countdown is not running, either because no
withdrawal was requested or because claims are open.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict

from stakecourt.hardening import InvalidState, InvariantChecker, WindowOpen


@dataclass
class LockupTimer:
    duration: int
    remaining: int = field(default=-1)
    ending: int = 0
    withdraw_requested: bool = False

    def __post_init__(self):
        InvariantChecker.check_non_negative("lockup duration", self.duration)
        if self.remaining < 0:
            self.remaining = self.duration

    @property
    def is_counting(self) -> bool:
        return self.ending != 0

    def request_withdrawal(self, now: int, open_claims: int) -> bool:
        """
        Start the countdown. Returns False when a withdrawal was already
        requested (nothing changes).
        """
        if self.withdraw_requested:
            return False
        self.withdraw_requested = True
        if open_claims == 0:
            self.ending = now + self.remaining
        return True

    def freeze(self, now: int) -> None:
        """Stop the countdown, keeping whatever time was still left."""
        if not self.is_counting:
            return
        self.remaining = max(0, self.ending - now)
        self.ending = 0

    def resume(self, now: int) -> None:
        """Restart the countdown after the last open claim closed."""
        if self.withdraw_requested and not self.is_counting:
            self.ending = now + self.remaining

    def check_withdrawable(self, now: int) -> None:
        if not self.is_counting:
            raise InvalidState(
                "Lockup is not counting down: withdrawal not requested or claims open",
                lockup_ending=self.ending,
            )
        if now < self.ending:
            raise WindowOpen(
                f"Lockup ends at {self.ending}, {self.ending - now}s from now",
                lockup_ending=self.ending,
                now=now,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lockup_duration": self.duration,
            "lockup_remaining": self.remaining,
            "lockup_ending": self.ending,
            "withdraw_requested": self.withdraw_requested,
        }


__all__ = ["LockupTimer"]
