"""
Claim State Machine

A claim reserves part of a stake while the claimant and staker attempt to
settle off-protocol. If either side declares settlement failed, the claim
goes to arbitration and is closed by a ruling.

State progression (no skips, no repeats, no way back):

    OPEN ──► SETTLEMENT_FAILED ──► RULED

Claim ids are sequential per stake account, start at 0, and are never
reused.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set

from stakecourt.hardening import InvalidClaim, InvariantChecker, ValidationError


# =============================================================================
# STATES AND RULINGS
# =============================================================================

class ClaimState(Enum):
    """Lifecycle states of a claim."""
    OPEN = "open"
    SETTLEMENT_FAILED = "settlement_failed"
    RULED = "ruled"

    def is_terminal(self) -> bool:
        return self is ClaimState.RULED

    def counts_as_open(self) -> bool:
        """Open and SettlementFailed claims both keep the lockup frozen."""
        return self in {ClaimState.OPEN, ClaimState.SETTLEMENT_FAILED}


VALID_TRANSITIONS: Dict[ClaimState, Set[ClaimState]] = {
    ClaimState.OPEN: {ClaimState.SETTLEMENT_FAILED},
    ClaimState.SETTLEMENT_FAILED: {ClaimState.RULED},
    ClaimState.RULED: set(),
}


class Ruling(Enum):
    """
    Arbitration outcome.

    ACCEPT pays the claim out of the stake; REJECT returns the reserved
    amount to the claimable stake.
    """
    ACCEPT = 0
    REJECT = 1

    @classmethod
    def parse(cls, value: Any) -> "Ruling":
        if isinstance(value, Ruling):
            return value
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError("ruling", "must be a Ruling or 0/1", value)
        try:
            return cls(value)
        except ValueError:
            raise ValidationError("ruling", "must be 0 (accept) or 1 (reject)", value) from None


# =============================================================================
# CLAIM
# =============================================================================

@dataclass
class Claim:
    """A claim against a stake account."""
    claim_id: int
    claimant: str
    amount: int
    fee: int
    data: str
    opened_at: int
    state: ClaimState = ClaimState.OPEN
    ruling: Optional[Ruling] = None
    ruled_at: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.state.counts_as_open()

    def can_transition_to(self, target: ClaimState) -> bool:
        return target in VALID_TRANSITIONS.get(self.state, set())

    def transition_to(self, target: ClaimState) -> None:
        InvariantChecker.check_state_transition(self.state, target, VALID_TRANSITIONS)
        self.state = target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "claimant": self.claimant,
            "amount": self.amount,
            "fee": self.fee,
            "data": self.data,
            "opened_at": self.opened_at,
            "state": self.state.value,
            "ruling": self.ruling.value if self.ruling is not None else None,
            "ruled_at": self.ruled_at,
        }


# =============================================================================
# REGISTRY
# =============================================================================

class ClaimRegistry:
    """
    Append-only, ordered claim collection for one stake account.

    Not synchronized on its own; the owning account serializes access.
    """

    def __init__(self):
        self._claims: List[Claim] = []

    def append(
        self,
        claimant: str,
        amount: int,
        fee: int,
        data: str,
        opened_at: int,
    ) -> Claim:
        claim = Claim(
            claim_id=len(self._claims),
            claimant=claimant,
            amount=amount,
            fee=fee,
            data=data,
            opened_at=opened_at,
        )
        self._claims.append(claim)
        return claim

    def get(self, claim_id: Any) -> Claim:
        if isinstance(claim_id, bool) or not isinstance(claim_id, int):
            raise InvalidClaim(f"Claim id must be an integer, got {claim_id!r}", claim_id=claim_id)
        if not 0 <= claim_id < len(self._claims):
            raise InvalidClaim(f"No claim {claim_id}", claim_id=claim_id)
        return self._claims[claim_id]

    def exists(self, claim_id: Any) -> bool:
        return (
            isinstance(claim_id, int)
            and not isinstance(claim_id, bool)
            and 0 <= claim_id < len(self._claims)
        )

    def open_claims(self) -> List[Claim]:
        return [c for c in self._claims if c.is_open]

    def count_open(self) -> int:
        return sum(1 for c in self._claims if c.is_open)

    def __len__(self) -> int:
        return len(self._claims)

    def __iter__(self) -> Iterator[Claim]:
        return iter(list(self._claims))


__all__ = ["ClaimState", "VALID_TRANSITIONS", "Ruling", "Claim", "ClaimRegistry"]
