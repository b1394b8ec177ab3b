"""
Tests for stake account setup, top-ups, atomicity and bookkeeping invariants.
"""

import pytest

from stakecourt.claims import Ruling
from stakecourt.config import StakeConfig
from stakecourt.events import (
    ClaimantWhitelisted,
    ClaimOpened,
    ClaimRuled,
    SettlementFailed,
    StakeIncreased,
    StakeInitialized,
    StakeWithdrawn,
    WithdrawInitiated,
)
from stakecourt.hardening import (
    InvalidState,
    InvariantViolation,
    TransferFailed,
    Unauthorized,
    ValidationError,
)
from stakecourt.stake import AccountConfiguration, StakeAccount

from conftest import (
    ARBITER,
    ARBITRATION_DATA,
    CLAIMANT,
    DAVE,
    INITIAL_STAKE,
    LOCKUP_PERIOD,
    STAKER,
    STAKE_ADDRESS,
)


class TestInitialize:
    """StakeAccount.initialize."""

    def _fresh(self, token, clock, bus, store, config=None):
        return StakeAccount(STAKE_ADDRESS, STAKER, token, clock=clock, bus=bus, store=store,
                            config=config or StakeConfig())

    def test_pulls_initial_stake(self, token, clock, bus, store, account_configuration):
        account = self._fresh(token, clock, bus, store)
        staker_before = token.balance_of(STAKER)
        token.approve(STAKER, STAKE_ADDRESS, INITIAL_STAKE)

        account.initialize(STAKER, account_configuration)

        assert account.initialized
        assert account.claimable_stake == INITIAL_STAKE
        assert account.arbiter == ARBITER
        assert account.lockup_duration == LOCKUP_PERIOD
        assert account.lockup_remaining == LOCKUP_PERIOD
        assert account.lockup_ending == 0
        assert account.configuration.arbitration_data == ARBITRATION_DATA
        assert token.balance_of(STAKER) == staker_before - INITIAL_STAKE
        assert token.balance_of(STAKE_ADDRESS) == INITIAL_STAKE

    def test_accepts_mapping(self, token, clock, bus, store):
        account = self._fresh(token, clock, bus, store)
        token.approve(STAKER, STAKE_ADDRESS, 500)

        account.initialize(STAKER, {
            "initial_stake": 500,
            "token": token.address,
            "arbitration_data": "terms",
            "lockup_period": 60,
            "arbiter": ARBITER,
        })

        assert account.claimable_stake == 500
        assert account.lockup_duration == 60

    def test_mapping_uses_default_lockup(self, token, clock, bus, store):
        config = StakeConfig()
        config.default_lockup_period.set(86400)
        account = self._fresh(token, clock, bus, store, config=config)
        token.approve(STAKER, STAKE_ADDRESS, 10)

        account.initialize(STAKER, {"initial_stake": 10, "token": token.address, "arbiter": ARBITER})

        assert account.lockup_duration == 86400

    def test_only_once(self, account, token, account_configuration):
        token.approve(STAKER, account.address, INITIAL_STAKE)

        with pytest.raises(InvalidState):
            account.initialize(STAKER, account_configuration)
        assert account.claimable_stake == INITIAL_STAKE

    def test_staker_only(self, token, clock, bus, store, account_configuration):
        account = self._fresh(token, clock, bus, store)
        token.approve(DAVE, STAKE_ADDRESS, INITIAL_STAKE)

        with pytest.raises(Unauthorized):
            account.initialize(DAVE, account_configuration)
        assert not account.initialized

    def test_requires_approval(self, token, clock, bus, store, account_configuration):
        account = self._fresh(token, clock, bus, store)

        with pytest.raises(TransferFailed):
            account.initialize(STAKER, account_configuration)
        assert not account.initialized

    def test_retry_after_failed_transfer(self, token, clock, bus, store, account_configuration):
        account = self._fresh(token, clock, bus, store)
        with pytest.raises(TransferFailed):
            account.initialize(STAKER, account_configuration)

        token.approve(STAKER, STAKE_ADDRESS, INITIAL_STAKE)
        account.initialize(STAKER, account_configuration)
        assert account.initialized

    @pytest.mark.parametrize("bad", [
        {"initial_stake": -1, "token": "delphi-token", "arbiter": ARBITER},
        {"initial_stake": 1, "token": "delphi-token"},
        {"initial_stake": 1, "token": "delphi-token", "arbiter": ""},
        {"initial_stake": 1, "token": "delphi-token", "arbiter": ARBITER, "lockup_period": 1.5},
        {"initial_stake": 1, "token": "delphi-token", "arbiter": ARBITER, "surprise": True},
    ])
    def test_rejects_malformed_configuration(self, token, clock, bus, store, bad):
        account = self._fresh(token, clock, bus, store)
        token.approve(STAKER, STAKE_ADDRESS, 10)

        with pytest.raises(ValidationError):
            account.initialize(STAKER, bad)

    def test_rejects_other_token(self, token, clock, bus, store):
        account = self._fresh(token, clock, bus, store)
        token.approve(STAKER, STAKE_ADDRESS, 10)

        with pytest.raises(ValidationError):
            account.initialize(STAKER, AccountConfiguration(
                initial_stake=10, token="other-token", arbiter=ARBITER, lockup_period=0,
            ))

    def test_minimum_initial_stake(self, token, clock, bus, store, account_configuration):
        config = StakeConfig()
        config.minimum_initial_stake.set(INITIAL_STAKE + 1)
        account = self._fresh(token, clock, bus, store, config=config)
        token.approve(STAKER, STAKE_ADDRESS, INITIAL_STAKE)

        with pytest.raises(ValidationError):
            account.initialize(STAKER, account_configuration)

    def test_operations_require_initialization(self, token, clock, bus, store):
        account = self._fresh(token, clock, bus, store)
        account.whitelist_claimant(STAKER, CLAIMANT)

        with pytest.raises(InvalidState):
            account.open_claim(CLAIMANT, CLAIMANT, 1, 1, "")
        with pytest.raises(InvalidState):
            account.initiate_withdraw_stake(STAKER)
        with pytest.raises(InvalidState):
            account.rule_on_claim(ARBITER, 0, Ruling.REJECT)


class TestWhitelistAndTopUp:
    """Claimant whitelisting and increase_stake."""

    def test_whitelist_is_staker_only(self, account):
        with pytest.raises(Unauthorized):
            account.whitelist_claimant(CLAIMANT, DAVE)
        assert not account.is_claimant_whitelisted(DAVE)

    def test_whitelist_is_idempotent(self, account, store):
        before = len(store.read_stream(account.address))
        account.whitelist_claimant(STAKER, CLAIMANT)
        assert len(store.read_stream(account.address)) == before

    def test_increase_stake(self, account, token):
        token.approve(STAKER, account.address, 250)

        assert account.increase_stake(STAKER, 250) == INITIAL_STAKE + 250
        assert account.claimable_stake == INITIAL_STAKE + 250

    def test_increase_stake_requires_approval(self, account):
        with pytest.raises(TransferFailed):
            account.increase_stake(STAKER, 1)
        assert account.claimable_stake == INITIAL_STAKE

    def test_increase_stake_staker_only(self, account, token):
        token.approve(CLAIMANT, account.address, 5)
        with pytest.raises(Unauthorized):
            account.increase_stake(CLAIMANT, 5)


class TestAccountEvents:
    """Event stream of a stake account."""

    def test_stream_records_full_lifecycle(self, account, token, disputed_claim, clock, store):
        token.approve(STAKER, account.address, 10)
        account.increase_stake(STAKER, 10)
        claim_id = disputed_claim(account)
        account.rule_on_claim(ARBITER, claim_id, Ruling.REJECT)
        account.initiate_withdraw_stake(STAKER)
        clock.advance(LOCKUP_PERIOD)
        account.withdraw_stake(STAKER)

        types = [type(e) for e in account.history()]
        assert types == [
            StakeInitialized,
            ClaimantWhitelisted,
            StakeIncreased,
            ClaimOpened,
            SettlementFailed,
            ClaimRuled,
            WithdrawInitiated,
            StakeWithdrawn,
        ]
        assert account.history() == store.read_stream(account.address)

    def test_refused_operations_emit_nothing(self, account, open_claim, store):
        claim_id = open_claim(account)
        before = store.get_stream_version(account.address)

        with pytest.raises(InvalidState):
            account.rule_on_claim(ARBITER, claim_id, Ruling.REJECT)
        with pytest.raises(Unauthorized):
            account.settlement_failed(DAVE, claim_id)

        assert store.get_stream_version(account.address) == before

    def test_failing_handler_does_not_break_operation(self, account, open_claim, bus):
        errors = []
        bus._on_error = errors.append

        @bus.subscribe(ClaimOpened)
        def broken(event):
            raise RuntimeError("subscriber down")

        claim_id = open_claim(account)

        assert account.get_claim(claim_id) is not None
        assert len(errors) == 1
        assert bus.metrics["error_count"] == 1


class TestInvariants:
    """Bookkeeping invariants hold through arbitrary sequences."""

    def test_invariants_hold_through_mixed_activity(self, account, open_claim, clock):
        account.initiate_withdraw_stake(STAKER)
        ids = [open_claim(account, amount=i + 1, fee=i) for i in range(5)]
        account.check_invariants()

        for i, claim_id in enumerate(ids):
            clock.advance(7)
            account.settlement_failed(CLAIMANT if i % 2 else STAKER, claim_id)
            account.check_invariants()
            account.rule_on_claim(ARBITER, claim_id, Ruling(i % 2))
            account.check_invariants()

        assert account.open_claims_count == 0
        assert account.claimable_stake == INITIAL_STAKE - (1 + 3 + 5)

    def test_detects_corrupted_count(self, account, open_claim):
        open_claim(account)
        account._open_claims_count = 0

        with pytest.raises(InvariantViolation):
            account.check_invariants()

    def test_snapshot_is_detached(self, account, open_claim):
        claim_id = open_claim(account)
        snapshot = account.get_claim(claim_id)
        snapshot.amount = 999_999

        assert account.get_claim(claim_id).amount == 1

    def test_to_dict(self, account, open_claim):
        open_claim(account, amount=4, fee=2)
        data = account.to_dict()

        assert data["claimable_stake"] == INITIAL_STAKE - 4
        assert data["open_claims_count"] == 1
        assert data["claims"][0]["state"] == "open"
        assert data["configuration"]["arbiter"] == ARBITER
        assert data["lockup_duration"] == LOCKUP_PERIOD
