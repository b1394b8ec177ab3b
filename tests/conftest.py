import os
import pathlib
import sys
import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import stakecourt`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from stakecourt.clock import ManualClock  # noqa: E402
from stakecourt.config import ConfigManager, StakeConfig, VotingConfig  # noqa: E402
from stakecourt.events import EventBus, EventStore, reset_event_infrastructure  # noqa: E402
from stakecourt.gateway import InMemoryToken  # noqa: E402
from stakecourt.stake import AccountConfiguration, StakeAccount  # noqa: E402
from stakecourt.whitelist import StaticWhitelist  # noqa: E402


STAKER = "staker"
CLAIMANT = "claimant"
ARBITER = "arbiter"
DAVE = "dave"
STAKE_ADDRESS = "stake-0001"

INITIAL_STAKE = 1000
LOCKUP_PERIOD = 604800  # 7 days
ARBITRATION_DATA = "ipfs://terms-of-arbitration"


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless STAKECOURT_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_slow = _env_flag('STAKECOURT_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set STAKECOURT_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _isolated_globals(monkeypatch):
    """Fresh configuration singleton and event infrastructure per test."""
    for name in list(os.environ):
        if name.startswith("STAKECOURT_") and name != "STAKECOURT_RUN_SLOW":
            monkeypatch.delenv(name)
    ConfigManager.reset()
    reset_event_infrastructure()
    yield
    ConfigManager.reset()
    reset_event_infrastructure()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def store():
    return EventStore()


@pytest.fixture
def token():
    token = InMemoryToken("delphi-token")
    token.mint(STAKER, 1_000_000)
    token.mint(CLAIMANT, 100_000)
    token.mint(ARBITER, 100_000)
    return token


@pytest.fixture
def account_configuration(token):
    return AccountConfiguration(
        initial_stake=INITIAL_STAKE,
        token=token.address,
        arbiter=ARBITER,
        lockup_period=LOCKUP_PERIOD,
        arbitration_data=ARBITRATION_DATA,
    )


@pytest.fixture
def make_account(token, clock, bus, store):
    """Factory for initialized stake accounts."""
    def _make(address=STAKE_ADDRESS, arbiter=ARBITER, lockup_period=LOCKUP_PERIOD,
              initial_stake=INITIAL_STAKE, claimants=(CLAIMANT,)):
        account = StakeAccount(address, STAKER, token, clock=clock, bus=bus, store=store,
                               config=StakeConfig())
        token.approve(STAKER, address, initial_stake)
        account.initialize(STAKER, AccountConfiguration(
            initial_stake=initial_stake,
            token=token.address,
            arbiter=arbiter,
            lockup_period=lockup_period,
            arbitration_data=ARBITRATION_DATA,
        ))
        for claimant in claimants:
            account.whitelist_claimant(STAKER, claimant)
        return account
    return _make


@pytest.fixture
def account(make_account):
    return make_account()


@pytest.fixture
def open_claim(token):
    """Open a claim as CLAIMANT, approving the fee first. Returns the claim id."""
    def _open(account, amount=1, fee=1, data="", claimant=CLAIMANT):
        token.approve(claimant, account.address, fee)
        return account.open_claim(claimant, claimant, amount, fee, data)
    return _open


@pytest.fixture
def disputed_claim(open_claim):
    """Open a claim and declare settlement failed. Returns the claim id."""
    def _dispute(account, amount=1, fee=1, data=""):
        claim_id = open_claim(account, amount=amount, fee=fee, data=data)
        account.settlement_failed(CLAIMANT, claim_id)
        return claim_id
    return _dispute


@pytest.fixture
def panel_arbiters():
    return StaticWhitelist({"arbiter-1", "arbiter-2", "arbiter-3"})


@pytest.fixture
def voting_config():
    config = VotingConfig()
    config.commit_stage_seconds.set(3600)
    config.reveal_stage_seconds.set(3600)
    return config
