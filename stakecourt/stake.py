"""
Stake Account

The escrow aggregate. A staker locks tokens behind an account, whitelists
the claimants allowed to raise disputes against it, and names the arbiter
whose rulings settle those disputes.

Operations
──────────

    Staker      initialize, whitelist_claimant, increase_stake,
                initiate_withdraw_stake, withdraw_stake
    Claimant    open_claim, settlement_failed
    Staker      settlement_failed
    Arbiter     rule_on_claim

Every operation runs under the account lock and performs all of its checks
and token movements before touching account state, so a refused operation
leaves the account exactly as it found it.

Bookkeeping
───────────

    claimable_stake      tokens not reserved by open claims
    open_claims_count    claims in OPEN or SETTLEMENT_FAILED
    lockup               see stakecourt.lockup; frozen while claims are open

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import dataclasses
import functools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar

from stakecourt.claims import Claim, ClaimRegistry, ClaimState, Ruling
from stakecourt.clock import Clock, SystemClock
from stakecourt.config import StakeConfig, get_config
from stakecourt.events import (
    ClaimantWhitelisted,
    ClaimOpened,
    ClaimRuled,
    Event,
    EventBus,
    EventEmitter,
    EventStore,
    SettlementFailed,
    StakeIncreased,
    StakeInitialized,
    StakeWithdrawn,
    WithdrawInitiated,
)
from stakecourt.gateway import TokenGateway
from stakecourt.hardening import (
    InvalidState,
    InvariantChecker,
    InvariantViolation,
    StakeError,
    TransferFailed,
    Unauthorized,
    ValidationError,
    Validators,
)
from stakecourt.lockup import LockupTimer
from stakecourt.observability import Layer, get_correlation_id, get_logger, timed_operation
from stakecourt.schema import validate_against_schema

logger = get_logger("account", Layer.STAKE)

ACCOUNT_SCHEMA = "stake-account.schema.json"

F = TypeVar("F", bound=Callable[..., Any])


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class AccountConfiguration:
    """Parameters fixed when a stake account is initialized."""
    initial_stake: int
    token: str
    arbiter: str
    lockup_period: int
    arbitration_data: str = ""

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        config: Optional[StakeConfig] = None,
    ) -> "AccountConfiguration":
        """Build from a mapping, validating it against the account schema."""
        if not isinstance(data, dict):
            raise ValidationError("configuration", "must be a mapping", data)
        errors = validate_against_schema(data, ACCOUNT_SCHEMA)
        if errors:
            raise ValidationError("configuration", "; ".join(errors), data)
        config = config or get_config().stake
        return cls(
            initial_stake=data["initial_stake"],
            token=data["token"],
            arbiter=data["arbiter"],
            lockup_period=data.get("lockup_period", config.default_lockup_period.get()),
            arbitration_data=data.get("arbitration_data", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


# =============================================================================
# OPERATION WRAPPER
# =============================================================================

def _operation(name: str) -> Callable[[F], F]:
    """Serialize on the account lock, time the call, and log refusals."""
    def decorator(method: F) -> F:
        @functools.wraps(method)
        def wrapper(self: "StakeAccount", *args: Any, **kwargs: Any) -> Any:
            with self._lock:
                try:
                    return method(self, *args, **kwargs)
                except StakeError as e:
                    logger.rejected(name, e, stake=self.address)
                    raise
        return timed_operation(logger, name)(wrapper)  # type: ignore[return-value]
    return decorator


# =============================================================================
# STAKE ACCOUNT
# =============================================================================

class StakeAccount:
    """
    Escrowed stake with claims, arbitration and a withdrawal lockup.

    Example:
        account = StakeAccount("stake-1", staker="alice", token=token)
        token.approve("alice", "stake-1", 1000)
        account.initialize("alice", AccountConfiguration(
            initial_stake=1000, token=token.address, arbiter="judge",
            lockup_period=604800,
        ))
        account.whitelist_claimant("alice", "bob")
    """

    def __init__(
        self,
        address: str,
        staker: str,
        token: TokenGateway,
        clock: Optional[Clock] = None,
        bus: Optional[EventBus] = None,
        store: Optional[EventStore] = None,
        config: Optional[StakeConfig] = None,
    ):
        self.address = Validators.address("address", address)
        self.staker = Validators.address("staker", staker)
        self.token = token
        self.clock = clock or SystemClock()
        self._config = config or get_config().stake
        self._events = EventEmitter(address, bus, store)
        self._lock = threading.RLock()

        self._configuration: Optional[AccountConfiguration] = None
        self._claimable_stake = 0
        self._open_claims_count = 0
        self._claims = ClaimRegistry()
        self._claimants: Set[str] = set()
        self._lockup: Optional[LockupTimer] = None

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _emit(self, event: Event) -> None:
        event.correlation_id = get_correlation_id()
        self._events.emit(event)

    def _require_initialized(self) -> AccountConfiguration:
        if self._configuration is None:
            raise InvalidState(f"Stake account {self.address} is not initialized")
        return self._configuration

    def _require_staker(self, caller: str, operation: str) -> None:
        if caller != self.staker:
            raise Unauthorized(f"Only the staker may {operation}", caller=caller)

    @property
    def _timer(self) -> LockupTimer:
        if self._lockup is None:
            raise InvalidState(f"Stake account {self.address} is not initialized")
        return self._lockup

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    @_operation("initialize")
    def initialize(self, caller: str, configuration: Any) -> None:
        """
        Fund and configure the account. Allowed exactly once.

        ``configuration`` is an AccountConfiguration or a mapping with the
        same keys. The initial stake is pulled from the staker, who must have
        approved this account for at least that amount.
        """
        self._require_staker(caller, "initialize the account")
        if self._configuration is not None:
            raise InvalidState(f"Stake account {self.address} is already initialized")

        if not isinstance(configuration, AccountConfiguration):
            configuration = AccountConfiguration.from_dict(configuration, self._config)
        Validators.token_amount("initial_stake", configuration.initial_stake)
        Validators.token_amount("lockup_period", configuration.lockup_period)
        Validators.address("arbiter", configuration.arbiter)
        if configuration.token != self.token.address:
            raise ValidationError(
                "token",
                f"account is bound to token {self.token.address}",
                configuration.token,
            )
        minimum = self._config.minimum_initial_stake.get()
        if configuration.initial_stake < minimum:
            raise ValidationError(
                "initial_stake",
                f"must be at least {minimum}",
                configuration.initial_stake,
            )

        if not self.token.transfer_from(
            self.address, self.staker, self.address, configuration.initial_stake
        ):
            raise TransferFailed(
                "Could not pull the initial stake from the staker",
                amount=configuration.initial_stake,
            )

        self._configuration = configuration
        self._claimable_stake = configuration.initial_stake
        self._lockup = LockupTimer(duration=configuration.lockup_period)

        logger.info(
            "Stake initialized",
            operation="initialize",
            stake=self.address,
            initial_stake=configuration.initial_stake,
            arbiter=configuration.arbiter,
            lockup_period=configuration.lockup_period,
        )
        self._emit(StakeInitialized(
            stake=self.address,
            staker=self.staker,
            token=configuration.token,
            arbiter=configuration.arbiter,
            initial_stake=configuration.initial_stake,
            lockup_period=configuration.lockup_period,
        ))

    @_operation("whitelist_claimant")
    def whitelist_claimant(self, caller: str, claimant: str) -> None:
        """Allow ``claimant`` to open claims. Permitted before initialization."""
        self._require_staker(caller, "whitelist claimants")
        Validators.address("claimant", claimant)
        if claimant in self._claimants:
            return
        self._claimants.add(claimant)
        self._emit(ClaimantWhitelisted(stake=self.address, claimant=claimant))

    def is_claimant_whitelisted(self, claimant: str) -> bool:
        with self._lock:
            return claimant in self._claimants

    @_operation("increase_stake")
    def increase_stake(self, caller: str, amount: int) -> int:
        """Pull more tokens from the staker into the claimable stake."""
        self._require_initialized()
        self._require_staker(caller, "increase the stake")
        Validators.token_amount("amount", amount)

        if not self.token.transfer_from(self.address, self.staker, self.address, amount):
            raise TransferFailed("Could not pull additional stake from the staker", amount=amount)

        self._claimable_stake += amount
        self._emit(StakeIncreased(
            stake=self.address,
            amount=amount,
            claimable_stake=self._claimable_stake,
        ))
        return self._claimable_stake

    # -------------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------------

    @_operation("open_claim")
    def open_claim(
        self,
        caller: str,
        claimant: str,
        amount: int,
        fee: int,
        data: str = "",
    ) -> int:
        """
        Open a claim against the stake. Returns the new claim id.

        Reserves ``amount`` out of the claimable stake and escrows ``fee``
        from the claimant. Opening the first claim while the withdrawal
        countdown is running freezes it.
        """
        self._require_initialized()
        Validators.token_amount("amount", amount)
        Validators.token_amount("fee", fee)
        if not isinstance(data, str):
            raise ValidationError("data", "must be a string", data)
        if claimant not in self._claimants:
            raise Unauthorized(f"{claimant} is not a whitelisted claimant", claimant=claimant)
        if caller != claimant:
            raise Unauthorized("Claims can only be opened by the claimant", caller=caller)
        InvariantChecker.check_balance_sufficient(
            self._claimable_stake, amount, "claimable stake"
        )

        if not self.token.transfer_from(self.address, claimant, self.address, fee):
            raise TransferFailed("Could not escrow the claim fee", claimant=claimant, fee=fee)

        now = self.clock.now()
        claim = self._claims.append(claimant, amount, fee, data, opened_at=now)
        self._claimable_stake -= amount
        self._open_claims_count += 1
        self._timer.freeze(now)

        logger.info(
            "Claim opened",
            operation="open_claim",
            stake=self.address,
            claim_id=claim.claim_id,
            amount=amount,
            fee=fee,
            open_claims=self._open_claims_count,
        )
        self._emit(ClaimOpened(
            stake=self.address,
            claim_id=claim.claim_id,
            claimant=claimant,
            amount=amount,
            fee=fee,
        ))
        return claim.claim_id

    @_operation("settlement_failed")
    def settlement_failed(self, caller: str, claim_id: int) -> None:
        """Either party gives up on settlement; the claim goes to arbitration."""
        self._require_initialized()
        claim = self._claims.get(claim_id)
        if caller not in (claim.claimant, self.staker):
            raise Unauthorized(
                "Only the claimant or the staker may declare settlement failed",
                caller=caller,
                claim_id=claim_id,
            )
        if claim.state is not ClaimState.OPEN:
            raise InvalidState(
                f"Claim {claim_id} is {claim.state.value}, expected open",
                claim_id=claim_id,
            )

        claim.transition_to(ClaimState.SETTLEMENT_FAILED)
        self._emit(SettlementFailed(stake=self.address, claim_id=claim_id, declared_by=caller))

    @_operation("rule_on_claim")
    def rule_on_claim(self, caller: str, claim_id: int, ruling: Any) -> Claim:
        """
        Apply the arbiter's ruling to a claim in arbitration.

        The fee goes to the arbiter whatever the outcome. On REJECT the
        reserved amount returns to the claimable stake; on ACCEPT it stays
        out of it. Closing the last open claim resumes the lockup.
        """
        configuration = self._require_initialized()
        if caller != configuration.arbiter:
            raise Unauthorized("Only the designated arbiter may rule", caller=caller)
        claim = self._claims.get(claim_id)
        if claim.state is not ClaimState.SETTLEMENT_FAILED:
            raise InvalidState(
                f"Claim {claim_id} is {claim.state.value}, expected settlement_failed",
                claim_id=claim_id,
            )
        ruling = Ruling.parse(ruling)

        if not self.token.transfer(self.address, configuration.arbiter, claim.fee):
            raise TransferFailed("Could not pay the arbiter fee", claim_id=claim_id, fee=claim.fee)

        now = self.clock.now()
        if ruling is Ruling.REJECT:
            self._claimable_stake += claim.amount
        claim.transition_to(ClaimState.RULED)
        claim.ruling = ruling
        claim.ruled_at = now
        self._open_claims_count -= 1
        InvariantChecker.check_non_negative("open claims count", self._open_claims_count)
        if self._open_claims_count == 0:
            self._timer.resume(now)

        logger.info(
            "Claim ruled",
            operation="rule_on_claim",
            stake=self.address,
            claim_id=claim_id,
            ruling=ruling.name.lower(),
            open_claims=self._open_claims_count,
            lockup_ending=self._timer.ending,
        )
        self._emit(ClaimRuled(stake=self.address, claim_id=claim_id, ruling=ruling.value))
        return dataclasses.replace(claim)

    # -------------------------------------------------------------------------
    # Withdrawal
    # -------------------------------------------------------------------------

    @_operation("initiate_withdraw_stake")
    def initiate_withdraw_stake(self, caller: str) -> int:
        """Request withdrawal. Returns the current lockup ending (0 while frozen)."""
        self._require_initialized()
        self._require_staker(caller, "withdraw the stake")
        timer = self._timer
        if timer.request_withdrawal(self.clock.now(), self._open_claims_count):
            logger.info(
                "Withdrawal initiated",
                operation="initiate_withdraw_stake",
                stake=self.address,
                lockup_ending=timer.ending,
                open_claims=self._open_claims_count,
            )
            self._emit(WithdrawInitiated(stake=self.address, lockup_ending=timer.ending))
        return timer.ending

    @_operation("withdraw_stake")
    def withdraw_stake(self, caller: str) -> int:
        """Release the claimable stake to the staker once the lockup has run out."""
        self._require_initialized()
        self._require_staker(caller, "withdraw the stake")
        self._timer.check_withdrawable(self.clock.now())

        amount = self._claimable_stake
        if not self.token.transfer(self.address, self.staker, amount):
            raise TransferFailed("Could not return the stake", amount=amount)

        self._claimable_stake = 0
        logger.info("Stake withdrawn", operation="withdraw_stake", stake=self.address, amount=amount)
        self._emit(StakeWithdrawn(stake=self.address, amount=amount))
        return amount

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._configuration is not None

    @property
    def configuration(self) -> Optional[AccountConfiguration]:
        return self._configuration

    @property
    def arbiter(self) -> Optional[str]:
        return self._configuration.arbiter if self._configuration else None

    @property
    def claimable_stake(self) -> int:
        with self._lock:
            return self._claimable_stake

    @property
    def open_claims_count(self) -> int:
        with self._lock:
            return self._open_claims_count

    @property
    def lockup_duration(self) -> int:
        return self._timer.duration

    @property
    def lockup_remaining(self) -> int:
        with self._lock:
            return self._timer.remaining

    @property
    def lockup_ending(self) -> int:
        with self._lock:
            return self._timer.ending

    def get_num_claims(self) -> int:
        with self._lock:
            return len(self._claims)

    def get_claim(self, claim_id: int) -> Claim:
        """Snapshot of a claim; raises InvalidClaim for unknown ids."""
        with self._lock:
            return dataclasses.replace(self._claims.get(claim_id))

    def has_claim(self, claim_id: int) -> bool:
        with self._lock:
            return self._claims.exists(claim_id)

    def open_claims(self) -> List[int]:
        with self._lock:
            return [c.claim_id for c in self._claims.open_claims()]

    def history(self) -> List[Event]:
        """Events emitted by this account, in order."""
        return self._events.history()

    def check_invariants(self) -> None:
        """Raise InvariantViolation if the account bookkeeping is inconsistent."""
        with self._lock:
            if self._configuration is None:
                return
            counted = self._claims.count_open()
            if counted != self._open_claims_count:
                raise InvariantViolation(
                    f"open_claims_count is {self._open_claims_count}, "
                    f"but {counted} claims are open"
                )
            if self._open_claims_count > 0 and self._timer.ending != 0:
                raise InvariantViolation("lockup is counting while claims are open")
            InvariantChecker.check_non_negative("claimable stake", self._claimable_stake)
            open_claims = self._claims.open_claims()
            committed = self._claimable_stake + sum(c.amount + c.fee for c in open_claims)
            held = self.token.balance_of(self.address)
            if committed > held:
                raise InvariantViolation(
                    f"claimable stake, reservations and escrowed fees ({committed}) "
                    f"exceed token holdings ({held})"
                )

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            data: Dict[str, Any] = {
                "address": self.address,
                "staker": self.staker,
                "token": self.token.address,
                "initialized": self._configuration is not None,
                "claimable_stake": self._claimable_stake,
                "open_claims_count": self._open_claims_count,
                "claimants": sorted(self._claimants),
                "claims": [c.to_dict() for c in self._claims],
            }
            if self._configuration is not None:
                data["configuration"] = self._configuration.to_dict()
                data.update(self._timer.to_dict())
            return data


__all__ = ["AccountConfiguration", "StakeAccount"]
