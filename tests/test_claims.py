"""
Tests for the claim state machine: opening claims, declaring settlement
failed, and the claim registry.
"""

import pytest

from stakecourt.claims import VALID_TRANSITIONS, Claim, ClaimRegistry, ClaimState, Ruling
from stakecourt.events import ClaimOpened, SettlementFailed
from stakecourt.hardening import (
    InvalidClaim,
    InvalidState,
    TransferFailed,
    Unauthorized,
    ValidationError,
)

from conftest import ARBITER, CLAIMANT, DAVE, INITIAL_STAKE, STAKER


# ════════════════════════════════════════════════════════════════════════════
# STATE MACHINE
# ════════════════════════════════════════════════════════════════════════════


class TestClaimStateMachine:
    """Claims move OPEN -> SETTLEMENT_FAILED -> RULED only."""

    def _claim(self):
        return Claim(claim_id=0, claimant=CLAIMANT, amount=1, fee=1, data="", opened_at=0)

    def test_forward_path(self):
        claim = self._claim()
        claim.transition_to(ClaimState.SETTLEMENT_FAILED)
        claim.transition_to(ClaimState.RULED)
        assert claim.state.is_terminal()

    def test_cannot_skip_arbitration(self):
        claim = self._claim()
        assert not claim.can_transition_to(ClaimState.RULED)
        with pytest.raises(InvalidState):
            claim.transition_to(ClaimState.RULED)

    def test_cannot_repeat_or_go_back(self):
        claim = self._claim()
        claim.transition_to(ClaimState.SETTLEMENT_FAILED)
        with pytest.raises(InvalidState):
            claim.transition_to(ClaimState.SETTLEMENT_FAILED)
        with pytest.raises(InvalidState):
            claim.transition_to(ClaimState.OPEN)

    def test_ruled_is_terminal(self):
        assert VALID_TRANSITIONS[ClaimState.RULED] == set()
        assert ClaimState.OPEN.counts_as_open()
        assert ClaimState.SETTLEMENT_FAILED.counts_as_open()
        assert not ClaimState.RULED.counts_as_open()

    def test_ruling_encoding(self):
        assert Ruling.parse(0) is Ruling.ACCEPT
        assert Ruling.parse(1) is Ruling.REJECT
        assert Ruling.parse(Ruling.ACCEPT) is Ruling.ACCEPT
        for bad in (2, -1, True, "1", None):
            with pytest.raises(ValidationError):
                Ruling.parse(bad)


class TestClaimRegistry:
    """Sequential, append-only claim ids."""

    def test_ids_are_sequential_from_zero(self):
        registry = ClaimRegistry()
        ids = [registry.append(CLAIMANT, 1, 1, "", opened_at=0).claim_id for _ in range(3)]
        assert ids == [0, 1, 2]
        assert len(registry) == 3

    def test_get_unknown(self):
        registry = ClaimRegistry()
        registry.append(CLAIMANT, 1, 1, "", opened_at=0)
        for bad in (1, -1, "0", None, True):
            with pytest.raises(InvalidClaim):
                registry.get(bad)
        assert registry.exists(0)
        assert not registry.exists(True)

    def test_open_count_tracks_states(self):
        registry = ClaimRegistry()
        a = registry.append(CLAIMANT, 1, 1, "", opened_at=0)
        registry.append(CLAIMANT, 1, 1, "", opened_at=0)
        a.transition_to(ClaimState.SETTLEMENT_FAILED)
        assert registry.count_open() == 2
        a.transition_to(ClaimState.RULED)
        assert registry.count_open() == 1
        assert [c.claim_id for c in registry.open_claims()] == [1]


# ════════════════════════════════════════════════════════════════════════════
# OPEN CLAIM
# ════════════════════════════════════════════════════════════════════════════


class TestOpenClaim:
    """StakeAccount.open_claim."""

    def test_first_claim_has_id_zero(self, account, open_claim):
        assert account.get_num_claims() == 0
        assert open_claim(account) == 0
        assert open_claim(account) == 1
        assert account.get_num_claims() == 2

    def test_reserves_amount_and_escrows_fee(self, account, token, open_claim):
        claimant_before = token.balance_of(CLAIMANT)
        held_before = token.balance_of(account.address)

        open_claim(account, amount=10, fee=5, data="i love cats")

        assert account.claimable_stake == INITIAL_STAKE - 10
        assert token.balance_of(CLAIMANT) == claimant_before - 5
        assert token.balance_of(account.address) == held_before + 5
        claim = account.get_claim(0)
        assert claim.state is ClaimState.OPEN
        assert claim.ruling is None
        assert claim.data == "i love cats"
        assert account.open_claims_count == 1

    def test_records_open_timestamp(self, account, open_claim, clock):
        clock.advance(42)
        claim_id = open_claim(account)
        assert account.get_claim(claim_id).opened_at == clock.now()

    def test_requires_whitelisted_claimant(self, account, token):
        token.mint(DAVE, 10)
        token.approve(DAVE, account.address, 1)

        with pytest.raises(Unauthorized):
            account.open_claim(DAVE, DAVE, 1, 1, "")
        assert account.get_num_claims() == 0

    def test_caller_must_be_the_claimant(self, account, token):
        token.approve(CLAIMANT, account.address, 1)

        with pytest.raises(Unauthorized):
            account.open_claim(STAKER, CLAIMANT, 1, 1, "")

    def test_fee_must_be_approved(self, account, token):
        before = account.to_dict()

        with pytest.raises(TransferFailed):
            account.open_claim(CLAIMANT, CLAIMANT, 1, 1, "")

        assert account.to_dict() == before

    def test_amount_cannot_exceed_claimable_stake(self, account, token):
        token.approve(CLAIMANT, account.address, 1)

        with pytest.raises(InvalidState):
            account.open_claim(CLAIMANT, CLAIMANT, INITIAL_STAKE + 1, 1, "")
        assert token.allowance(CLAIMANT, account.address) == 1

    def test_full_stake_can_be_claimed(self, account, open_claim):
        open_claim(account, amount=INITIAL_STAKE, fee=0)
        assert account.claimable_stake == 0

    @pytest.mark.parametrize("amount,fee", [(-1, 1), (1, -1), (1.5, 1), ("1", 1), (True, 1)])
    def test_malformed_amounts(self, account, amount, fee):
        with pytest.raises(ValidationError):
            account.open_claim(CLAIMANT, CLAIMANT, amount, fee, "")

    def test_emits_claim_opened(self, account, open_claim, bus):
        received = []

        @bus.subscribe(ClaimOpened)
        def handler(event):
            received.append(event)

        claim_id = open_claim(account, amount=3, fee=2)

        assert len(received) == 1
        assert received[0].claim_id == claim_id
        assert received[0].amount == 3
        assert received[0].fee == 2
        assert received[0].stake == account.address


# ════════════════════════════════════════════════════════════════════════════
# SETTLEMENT FAILED
# ════════════════════════════════════════════════════════════════════════════


class TestSettlementFailed:
    """StakeAccount.settlement_failed."""

    @pytest.mark.parametrize("caller", [CLAIMANT, STAKER])
    def test_either_party_may_declare(self, account, open_claim, caller):
        claim_id = open_claim(account)

        account.settlement_failed(caller, claim_id)

        assert account.get_claim(claim_id).state is ClaimState.SETTLEMENT_FAILED
        assert account.open_claims_count == 1

    @pytest.mark.parametrize("caller", [ARBITER, DAVE])
    def test_third_parties_cannot_declare(self, account, open_claim, caller):
        claim_id = open_claim(account)

        with pytest.raises(Unauthorized):
            account.settlement_failed(caller, claim_id)

    def test_only_once(self, account, open_claim):
        claim_id = open_claim(account)
        account.settlement_failed(CLAIMANT, claim_id)

        with pytest.raises(InvalidState):
            account.settlement_failed(STAKER, claim_id)

    def test_unknown_claim(self, account):
        with pytest.raises(InvalidClaim):
            account.settlement_failed(CLAIMANT, 0)

    def test_not_after_ruling(self, account, disputed_claim):
        claim_id = disputed_claim(account)
        account.rule_on_claim(ARBITER, claim_id, Ruling.ACCEPT)

        with pytest.raises(InvalidState):
            account.settlement_failed(CLAIMANT, claim_id)

    def test_emits_settlement_failed(self, account, open_claim, store):
        claim_id = open_claim(account)
        account.settlement_failed(STAKER, claim_id)

        events = [e for e in store.read_stream(account.address) if isinstance(e, SettlementFailed)]
        assert len(events) == 1
        assert events[0].claim_id == claim_id
        assert events[0].declared_by == STAKER
