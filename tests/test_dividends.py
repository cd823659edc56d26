"""Tests for the dividend accountant — recount window, entitlements and claims."""

import pytest
from datetime import datetime, timezone
from pathlib import Path

from deflation.accounting.dividends import DividendAccountant
from deflation.accounting.ledger import DecayLedger
from deflation.accounting.staking import StakingEngine
from deflation.errors import IndexOutOfRange, InvalidAmount, PeriodNotElapsed
from deflation.models.ledger import PoolKind
from deflation.models.staking import DividendState
from deflation.policy.resolver import PolicyResolver

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

# Stakes open in February 2026; the first claimable period is March.
OPENED = datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)
MARCH = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)
APRIL = datetime(2026, 4, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def state() -> DividendState:
    return DividendState()


@pytest.fixture
def ledger(resolver: PolicyResolver) -> DecayLedger:
    ledger = DecayLedger(resolver)
    ledger.set_pool(PoolKind.DIVIDEND, "pool", OPENED)
    ledger.mint("pool", 500, OPENED)
    ledger.mint("alice", 1000, OPENED)
    return ledger


@pytest.fixture
def staking(resolver: PolicyResolver, ledger: DecayLedger, state: DividendState) -> StakingEngine:
    engine = StakingEngine(resolver, ledger, state)
    engine.open("alice", 1000, 12, OPENED)
    return engine


@pytest.fixture
def accountant(
    resolver: PolicyResolver,
    ledger: DecayLedger,
    staking: StakingEngine,
    state: DividendState,
) -> DividendAccountant:
    return DividendAccountant(resolver, ledger, staking, state)


def _run_recount(accountant: DividendAccountant, when: datetime) -> None:
    accountant.init_recount()
    accountant.recount(["alice"], when)
    accountant.finish()


def _audit(ledger: DecayLedger, staking: StakingEngine) -> bool:
    balances = sum(ledger.raw_balance(a) for a in ledger.addresses())
    return balances + staking.total_staked() == ledger.total_supply


class TestRecount:
    def test_init_clears_accumulators(
        self, accountant: DividendAccountant, state: DividendState,
    ) -> None:
        state.beta_update_accumulator = 99
        accountant.init_recount()
        assert state.beta_update_accumulator == 0
        assert state.beta_pod_indicator == 0
        assert state.active is False

    def test_round_trip_sets_beta(
        self, accountant: DividendAccountant, state: DividendState,
    ) -> None:
        _run_recount(accountant, MARCH)

        assert state.active is True
        assert state.beta_indicator == 1000 * 20
        assert state.beta_pod_indicator == 1000 * 12
        assert state.pool_snapshot == 500

    def test_recount_after_very_long_extension(
        self,
        accountant: DividendAccountant,
        staking: StakingEngine,
        state: DividendState,
    ) -> None:
        staking.extend("alice", 0, 10_000, OPENED)

        _run_recount(accountant, MARCH)

        assert state.beta_indicator == 1000 * 20
        assert state.beta_pod_indicator == 1000 * 10_000
        # 1000 // (10_000 * 12) rounds the principal instalment to 0
        assert accountant.calculate_dividends("alice", MARCH) == 500

    def test_summary_counts_positions(self, accountant: DividendAccountant) -> None:
        accountant.init_recount()
        summary = accountant.recount(["alice", "alice", "nobody"], MARCH)
        assert summary.accounts == 2
        assert summary.positions == 1
        assert summary.accumulator == 20000

    def test_unclaimed_share_is_compounded(
        self,
        accountant: DividendAccountant,
        staking: StakingEngine,
        ledger: DecayLedger,
        state: DividendState,
    ) -> None:
        _run_recount(accountant, MARCH)

        accountant.init_recount()
        summary = accountant.recount(["alice"], APRIL)

        position = staking.positions("alice")[0]
        assert summary.compounded == 500
        assert position.amount == 1500
        assert position.compounded_period == 202603
        assert ledger.pool_balance(PoolKind.DIVIDEND) == 0
        assert _audit(ledger, staking)

        accountant.finish()
        assert state.beta_indicator == 1500 * 20
        assert state.pool_snapshot == 0

    def test_compounding_happens_once_per_period(
        self, accountant: DividendAccountant, staking: StakingEngine,
    ) -> None:
        _run_recount(accountant, MARCH)
        accountant.init_recount()
        accountant.recount(["alice"], APRIL)
        accountant.init_recount()
        summary = accountant.recount(["alice"], APRIL)
        assert summary.compounded == 0
        assert staking.positions("alice")[0].amount == 1500


class TestCalculateDividends:
    def test_nothing_in_opening_period(self, accountant: DividendAccountant) -> None:
        _run_recount(accountant, OPENED)
        assert accountant.calculate_dividends("alice", OPENED) == 0

    def test_principal_instalment_plus_share(self, accountant: DividendAccountant) -> None:
        _run_recount(accountant, MARCH)
        # 1000 // 144 + 1000 * 20 * 500 // 20000
        assert accountant.calculate_dividends("alice", MARCH) == 6 + 500

    def test_zero_share_before_first_snapshot(
        self, accountant: DividendAccountant, staking: StakingEngine,
    ) -> None:
        position = staking.positions("alice")[0]
        assert accountant.dividend_share(position, 202603, MARCH) == 0


class TestClaim:
    def test_opening_period_rejected(self, accountant: DividendAccountant) -> None:
        _run_recount(accountant, OPENED)
        with pytest.raises(PeriodNotElapsed):
            accountant.claim("alice", 0, 1, OPENED)

    def test_missing_position(self, accountant: DividendAccountant) -> None:
        with pytest.raises(IndexOutOfRange):
            accountant.claim("alice", 1, 1, MARCH)

    @pytest.mark.parametrize("amount", [0, -5, 507])
    def test_invalid_amounts(self, accountant: DividendAccountant, amount: int) -> None:
        _run_recount(accountant, MARCH)
        with pytest.raises(InvalidAmount):
            accountant.claim("alice", 0, amount, MARCH)

    def test_dividends_paid_before_principal(
        self,
        accountant: DividendAccountant,
        staking: StakingEngine,
        ledger: DecayLedger,
        state: DividendState,
    ) -> None:
        _run_recount(accountant, MARCH)

        receipt = accountant.claim("alice", 0, 506, MARCH)

        assert receipt.from_dividends == 500
        assert receipt.from_principal == 6
        assert receipt.period == 202603
        position = staking.positions("alice")[0]
        assert position.amount == 994
        assert position.claimed_dividends == 500
        assert position.claimed_principal == 6
        assert ledger.raw_balance("alice") == 506
        assert ledger.pool_balance(PoolKind.DIVIDEND) == 0
        assert state.beta_indicator == 20000 - 6 * 20
        assert state.beta_pod_indicator == 12000 - 6 * 12
        assert _audit(ledger, staking)

    def test_no_double_spend_within_period(self, accountant: DividendAccountant) -> None:
        _run_recount(accountant, MARCH)
        accountant.claim("alice", 0, 506, MARCH)

        assert accountant.calculate_dividends("alice", MARCH) == 0
        with pytest.raises(InvalidAmount):
            accountant.claim("alice", 0, 1, MARCH)

    def test_partial_claim_leaves_remainder(self, accountant: DividendAccountant) -> None:
        _run_recount(accountant, MARCH)
        receipt = accountant.claim("alice", 0, 200, MARCH)
        assert receipt.from_dividends == 200
        assert receipt.from_principal == 0
        assert accountant.calculate_dividends("alice", MARCH) == 306

    def test_counters_reset_next_period(
        self, accountant: DividendAccountant, staking: StakingEngine,
    ) -> None:
        _run_recount(accountant, MARCH)
        accountant.claim("alice", 0, 6, MARCH)

        _run_recount(accountant, APRIL)
        accountant.claim("alice", 0, 1, APRIL)

        position = staking.positions("alice")[0]
        assert position.last_claimed_period == 202604
        assert position.claimed_principal == 1
        assert position.claimed_dividends == 0

    def test_claim_allowed_while_recount_open(self, accountant: DividendAccountant) -> None:
        _run_recount(accountant, MARCH)
        accountant.init_recount()
        receipt = accountant.claim("alice", 0, 10, MARCH)
        assert receipt.amount == 10


class TestProofOfDeposit:
    def test_full_share(self, accountant: DividendAccountant, staking: StakingEngine) -> None:
        _run_recount(accountant, MARCH)
        position = staking.positions("alice")[0]
        assert accountant.proof_of_deposit(position) == 10**18

    def test_zero_indicator(self, accountant: DividendAccountant, staking: StakingEngine) -> None:
        accountant.init_recount()
        position = staking.positions("alice")[0]
        assert accountant.proof_of_deposit(position) == 0
