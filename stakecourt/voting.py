"""
Commit-Reveal Voting Engine

Panel arbitration for stake accounts that name the engine as their arbiter.
Whitelisted arbiters vote on a claim in two stages:

    1. COMMIT   each arbiter submits secret_hash(choice, salt); a vote may be
                replaced any number of times until the stage closes
    2. REVEAL   each arbiter discloses (choice, salt); the pair must hash to
                the stored commitment
    3. CLOSED   anyone may resolve the claim; revealed votes are tallied and
                the ruling is delivered to the stake account

    first commit                commit_end                  reveal_end
         │◄──────── COMMIT ────────►│◄──────── REVEAL ────────►│ CLOSED ...

No arbiter can condition its vote on another's choice, because nothing is
disclosed until every commitment is fixed.

A claim is known to the engine only once the first vote on it is committed.
Claims are keyed by stakecourt.identity.claim_id, so one engine can serve
any number of stake accounts.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple, Union

from stakecourt import identity
from stakecourt.claims import ClaimState, Ruling
from stakecourt.clock import Clock, SystemClock
from stakecourt.config import VotingConfig, get_config
from stakecourt.events import (
    ClaimResolved,
    Event,
    EventBus,
    EventEmitter,
    EventStore,
    VoteCommitted,
    VoteRevealed,
)
from stakecourt.hardening import (
    CryptoUtils,
    InvalidClaim,
    InvalidState,
    RevealMismatch,
    StakeError,
    Unauthorized,
    Validators,
    WindowClosed,
    WindowOpen,
)
from stakecourt.observability import Layer, get_correlation_id, get_logger, timed_operation
from stakecourt.ruling import RulingSource
from stakecourt.whitelist import Whitelist

if TYPE_CHECKING:
    from stakecourt.stake import StakeAccount

logger = get_logger("engine", Layer.VOTING)


class VotingStage(Enum):
    COMMIT = "commit"
    REVEAL = "reveal"
    CLOSED = "closed"


@dataclass
class CommitRecord:
    """One arbiter's vote on one claim."""
    secret_hash: str
    committed_at: int
    revealed: bool = False
    choice: Optional[Ruling] = None
    salt: Optional[Union[int, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "secret_hash": self.secret_hash,
            "committed_at": self.committed_at,
            "revealed": self.revealed,
            "choice": self.choice.value if self.choice is not None else None,
        }


@dataclass
class PanelClaim:
    """Voting state for one claim, created by the first commit."""
    claim_id: str
    account: "StakeAccount"
    claim_number: int
    commit_end: int
    reveal_end: int
    commits: Dict[str, CommitRecord] = field(default_factory=dict)
    resolved: bool = False
    ruling: Optional[Ruling] = None

    def stage(self, now: int) -> VotingStage:
        if now < self.commit_end:
            return VotingStage.COMMIT
        if now < self.reveal_end:
            return VotingStage.REVEAL
        return VotingStage.CLOSED

    def tally(self) -> Tuple[int, int]:
        """(accept, reject) counts over revealed votes only."""
        accept = reject = 0
        for record in self.commits.values():
            if not record.revealed:
                continue
            if record.choice is Ruling.ACCEPT:
                accept += 1
            else:
                reject += 1
        return accept, reject

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "stake": self.account.address,
            "claim_number": self.claim_number,
            "commit_end": self.commit_end,
            "reveal_end": self.reveal_end,
            "resolved": self.resolved,
            "ruling": self.ruling.value if self.ruling is not None else None,
            "commits": {arbiter: r.to_dict() for arbiter, r in sorted(self.commits.items())},
        }


def decide(accept_votes: int, reject_votes: int) -> Ruling:
    """Strict majority of revealed votes; ties and empty panels reject."""
    return Ruling.ACCEPT if accept_votes > reject_votes else Ruling.REJECT


class VotingEngine(RulingSource):
    """
    Panel arbitration by commit-reveal voting.

    Example:
        engine = VotingEngine("panel", arbiters=StaticWhitelist({"a1", "a2"}))
        # account configured with arbiter="panel", claim 0 in settlement_failed
        engine.commit_vote("a1", account, 0, secret_hash(Ruling.ACCEPT, 42))
        ...
        engine.reveal_vote("a1", claim_id, Ruling.ACCEPT, 42)
        ...
        engine.resolve_claim("anyone", claim_id)
    """

    def __init__(
        self,
        address: str,
        arbiters: Whitelist,
        clock: Optional[Clock] = None,
        config: Optional[VotingConfig] = None,
        bus: Optional[EventBus] = None,
        store: Optional[EventStore] = None,
    ):
        super().__init__(address)
        self.arbiters = arbiters
        self.clock = clock or SystemClock()
        self._config = config or get_config().voting
        self._events = EventEmitter(self.address, bus, store)
        self._claims: Dict[str, PanelClaim] = {}
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Keying helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def claim_id(stake: Union["StakeAccount", str], claim_number: int) -> str:
        handle = stake if isinstance(stake, str) else stake.address
        return identity.claim_id(handle, claim_number)

    @staticmethod
    def secret_hash(choice: Any, salt: Union[int, str]) -> str:
        return identity.secret_hash(choice, salt)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _emit(self, event: Event) -> None:
        event.correlation_id = get_correlation_id()
        self._events.emit(event)

    def _panel_claim(self, claim_id: str) -> PanelClaim:
        panel_claim = self._claims.get(claim_id)
        if panel_claim is None:
            raise InvalidClaim(f"No votes have been committed for claim {claim_id}", claim_id=claim_id)
        return panel_claim

    # -------------------------------------------------------------------------
    # Voting
    # -------------------------------------------------------------------------

    @timed_operation(logger, "commit_vote")
    def commit_vote(
        self,
        caller: str,
        stake: "StakeAccount",
        claim_number: int,
        secret_hash: str,
    ) -> str:
        """
        Commit (or replace) the caller's secret vote. Returns the claim id.

        The referenced claim must be in arbitration on an account that uses
        this engine as its arbiter.
        """
        with self._lock:
            try:
                if not self.arbiters.is_whitelisted(caller):
                    raise Unauthorized(f"{caller} is not a whitelisted arbiter", caller=caller)
                secret_hash = Validators.digest("secret_hash", secret_hash)
                if not self.serves(stake):
                    raise InvalidClaim(
                        f"Stake {stake.address} is not arbitrated by {self.address}",
                        stake=stake.address,
                    )
                if not stake.has_claim(claim_number):
                    raise InvalidClaim(
                        f"Claim {claim_number} does not exist in {stake.address}",
                        stake=stake.address,
                        claim_number=claim_number,
                    )
                claim = stake.get_claim(claim_number)
                claim_id = self.claim_id(stake, claim_number)
                now = self.clock.now()

                panel_claim = self._claims.get(claim_id)
                if panel_claim is not None and panel_claim.stage(now) is not VotingStage.COMMIT:
                    raise WindowClosed(
                        f"Commit stage for claim {claim_id} ended at {panel_claim.commit_end}",
                        claim_id=claim_id,
                    )
                if claim.state is not ClaimState.SETTLEMENT_FAILED:
                    raise InvalidClaim(
                        f"Claim {claim_number} is {claim.state.value}, not in arbitration",
                        claim_id=claim_id,
                    )

                if panel_claim is None:
                    commit_end = now + self._config.commit_stage_seconds.get()
                    panel_claim = PanelClaim(
                        claim_id=claim_id,
                        account=stake,
                        claim_number=claim_number,
                        commit_end=commit_end,
                        reveal_end=commit_end + self._config.reveal_stage_seconds.get(),
                    )
                    self._claims[claim_id] = panel_claim
                    logger.info(
                        "Voting opened",
                        operation="commit_vote",
                        claim_id=claim_id,
                        stake=stake.address,
                        claim_number=claim_number,
                        commit_end=panel_claim.commit_end,
                        reveal_end=panel_claim.reveal_end,
                    )

                panel_claim.commits[caller] = CommitRecord(secret_hash=secret_hash, committed_at=now)
            except StakeError as e:
                logger.rejected("commit_vote", e, arbiter=caller)
                raise

            self._emit(VoteCommitted(claim_id=claim_id, arbiter=caller))
            return claim_id

    @timed_operation(logger, "reveal_vote")
    def reveal_vote(
        self,
        caller: str,
        claim_id: str,
        choice: Any,
        salt: Union[int, str],
    ) -> None:
        with self._lock:
            try:
                panel_claim = self._panel_claim(claim_id)
                record = panel_claim.commits.get(caller)
                if record is None:
                    raise InvalidClaim(
                        f"{caller} has no commitment for claim {claim_id}",
                        claim_id=claim_id,
                    )
                if record.revealed:
                    raise InvalidState(f"{caller} already revealed for claim {claim_id}", claim_id=claim_id)

                stage = panel_claim.stage(self.clock.now())
                if stage is VotingStage.COMMIT:
                    raise WindowOpen(
                        f"Reveal stage for claim {claim_id} opens at {panel_claim.commit_end}",
                        claim_id=claim_id,
                    )
                if stage is VotingStage.CLOSED:
                    raise WindowClosed(
                        f"Reveal stage for claim {claim_id} ended at {panel_claim.reveal_end}",
                        claim_id=claim_id,
                    )

                ruling = Ruling.parse(choice)
                if not CryptoUtils.secure_compare_str(self.secret_hash(ruling, salt), record.secret_hash):
                    raise RevealMismatch(
                        "Revealed vote does not match the commitment",
                        claim_id=claim_id,
                        arbiter=caller,
                    )
            except StakeError as e:
                logger.rejected("reveal_vote", e, arbiter=caller, claim_id=claim_id)
                raise

            record.revealed = True
            record.choice = ruling
            record.salt = salt
            self._emit(VoteRevealed(claim_id=claim_id, arbiter=caller, choice=ruling.value))

    @timed_operation(logger, "resolve_claim")
    def resolve_claim(self, caller: str, claim_id: str) -> Ruling:
        """
        Tally revealed votes and deliver the ruling. Anyone may call this once
        the reveal stage is over.
        """
        with self._lock:
            try:
                panel_claim = self._panel_claim(claim_id)
                if panel_claim.resolved:
                    raise InvalidState(f"Claim {claim_id} is already resolved", claim_id=claim_id)
                if panel_claim.stage(self.clock.now()) is not VotingStage.CLOSED:
                    raise WindowOpen(
                        f"Voting on claim {claim_id} runs until {panel_claim.reveal_end}",
                        claim_id=claim_id,
                    )

                accept_votes, reject_votes = panel_claim.tally()
                ruling = decide(accept_votes, reject_votes)
                self.deliver(panel_claim.account, panel_claim.claim_number, ruling)
            except StakeError as e:
                logger.rejected("resolve_claim", e, caller=caller, claim_id=claim_id)
                raise

            panel_claim.resolved = True
            panel_claim.ruling = ruling
            unrevealed = sum(1 for r in panel_claim.commits.values() if not r.revealed)
            logger.info(
                "Claim resolved",
                operation="resolve_claim",
                claim_id=claim_id,
                ruling=ruling.name.lower(),
                accept_votes=accept_votes,
                reject_votes=reject_votes,
                unrevealed=unrevealed,
            )
            self._emit(ClaimResolved(
                claim_id=claim_id,
                stake=panel_claim.account.address,
                claim_number=panel_claim.claim_number,
                ruling=ruling.value,
                accept_votes=accept_votes,
                reject_votes=reject_votes,
            ))
            return ruling

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def claim_exists(self, claim_id: str) -> bool:
        with self._lock:
            panel_claim = self._claims.get(claim_id)
            return panel_claim is not None and len(panel_claim.commits) > 0

    def get_arbiter_commit(self, claim_id: str, arbiter: str) -> Optional[str]:
        with self._lock:
            panel_claim = self._claims.get(claim_id)
            if panel_claim is None or arbiter not in panel_claim.commits:
                return None
            return panel_claim.commits[arbiter].secret_hash

    def has_revealed(self, claim_id: str, arbiter: str) -> bool:
        with self._lock:
            panel_claim = self._claims.get(claim_id)
            record = panel_claim.commits.get(arbiter) if panel_claim else None
            return bool(record and record.revealed)

    def voting_stage(self, claim_id: str) -> VotingStage:
        with self._lock:
            return self._panel_claim(claim_id).stage(self.clock.now())

    def tally(self, claim_id: str) -> Tuple[int, int]:
        with self._lock:
            return self._panel_claim(claim_id).tally()

    def claim_ids(self) -> List[str]:
        with self._lock:
            return list(self._claims)

    def history(self) -> List[Event]:
        return self._events.history()

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "address": self.address,
                "claims": {cid: c.to_dict() for cid, c in self._claims.items()},
            }


__all__ = [
    "VotingStage",
    "CommitRecord",
    "PanelClaim",
    "decide",
    "VotingEngine",
]
