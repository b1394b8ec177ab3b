"""
Ruling sources.

A ruling reaches a stake account through exactly one path,
``StakeAccount.rule_on_claim``, called with the source's address as the
designated arbiter. The transition and payout logic therefore lives in one
place no matter who decided the outcome:

    DirectArbiter   a single party rules immediately
    VotingEngine    a whitelisted panel decides by commit-reveal voting
                    (see stakecourt.voting)
"""

from __future__ import annotations

from abc import ABC
from typing import TYPE_CHECKING, Any

from stakecourt.claims import Claim, Ruling
from stakecourt.hardening import Validators

if TYPE_CHECKING:
    from stakecourt.stake import StakeAccount


class RulingSource(ABC):
    """Something that can act as a stake account's designated arbiter."""

    def __init__(self, address: str):
        self.address = Validators.address("address", address)

    def serves(self, account: "StakeAccount") -> bool:
        """True when ``account`` names this source as its arbiter."""
        return account.arbiter == self.address

    def deliver(self, account: "StakeAccount", claim_id: int, ruling: Any) -> Claim:
        return account.rule_on_claim(self.address, claim_id, Ruling.parse(ruling))


class DirectArbiter(RulingSource):
    """A single arbiter whose word is final."""

    def rule(self, account: "StakeAccount", claim_id: int, ruling: Any) -> Claim:
        return self.deliver(account, claim_id, ruling)

    def accept(self, account: "StakeAccount", claim_id: int) -> Claim:
        return self.deliver(account, claim_id, Ruling.ACCEPT)

    def reject(self, account: "StakeAccount", claim_id: int) -> Claim:
        return self.deliver(account, claim_id, Ruling.REJECT)


__all__ = ["RulingSource", "DirectArbiter"]
