"""Tests for the token service — end-to-end flows through the facade."""

import copy
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from deflation.access import Role
from deflation.errors import (
    InsufficientAllowance,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    InvalidDuration,
    Unauthorized,
)
from deflation.models.ledger import PoolKind
from deflation.persistence.event_log import EventKind, EventLog
from deflation.persistence.state_store import StateStore
from deflation.policy.resolver import PolicyResolver
from deflation.service import MAX_ALLOWANCE, TokenService

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

TOKEN = 10**18
OWNER = "0x5B38Da6a701c568545dCfcB03FcB875f56beddC4"
ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"
DIVIDEND_POOL = "0x4444444444444444444444444444444444444444"
MARKETING_POOL = "0x5555555555555555555555555555555555555555"
TECHNICAL_POOL = "0x6666666666666666666666666666666666666666"
LIQUIDITY_POOL = "0x7777777777777777777777777777777777777777"
ROUTER = "0x8888888888888888888888888888888888888888"
ZERO = "0x0000000000000000000000000000000000000000"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def service(resolver: PolicyResolver) -> TokenService:
    return TokenService(resolver, now=_now())


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _days(n: int) -> datetime:
    return _now() + timedelta(days=n)


def _fund(service: TokenService, address: str, tokens: int) -> None:
    service.transfer(OWNER, address, tokens * TOKEN, now=_now())


def _configure_pools(service: TokenService) -> None:
    service.set_pool_address(OWNER, DIVIDEND_POOL, 1, now=_now())
    service.set_pool_address(OWNER, MARKETING_POOL, 2, now=_now())
    service.set_pool_address(OWNER, TECHNICAL_POOL, 3, now=_now())


class TestGenesis:
    def test_owner_holds_initial_supply(self, service: TokenService) -> None:
        assert service.total_supply == 20_999_999 * TOKEN
        assert service.balance_of(OWNER, _now()) == 20_999_999 * TOKEN
        assert service.is_exempt(OWNER)
        assert service.has_role(OWNER, Role.ADMIN)
        assert service.has_role(OWNER, Role.TECHNICAL)

    def test_metadata(self, service: TokenService) -> None:
        assert (service.name, service.symbol, service.decimals) == ("DeflationCoin", "DEF", 18)

    def test_owner_override(self, resolver: PolicyResolver) -> None:
        service = TokenService(resolver, owner=ALICE, now=_now())
        assert service.owner == ALICE
        assert service.balance_of(ALICE) == 20_999_999 * TOKEN


class TestTransfer:
    def test_fee_charged_on_top(self, service: TokenService) -> None:
        _fund(service, ALICE, 20)

        receipt = service.transfer(ALICE, BOB, 10 * TOKEN, now=_now())

        assert receipt.commission.total == TOKEN // 2
        assert service.balance_of(ALICE, _now()) == 95 * TOKEN // 10
        assert service.balance_of(BOB, _now()) == 10 * TOKEN
        assert service.total_supply == 20_999_999 * TOKEN - TOKEN // 2

    def test_exempt_sender_pays_no_fee(self, service: TokenService) -> None:
        receipt = service.transfer(OWNER, ALICE, 10 * TOKEN, now=_now())
        assert receipt.commission.total == 0

    def test_one_wei_has_no_fee(self, service: TokenService) -> None:
        _fund(service, ALICE, 1)
        receipt = service.transfer(ALICE, BOB, 1, now=_now())
        assert receipt.commission.total == 0
        assert service.balance_of(BOB, _now()) == 1

    def test_zero_amount_is_allowed(self, service: TokenService) -> None:
        receipt = service.transfer(ALICE, BOB, 0, now=_now())
        assert receipt.amount == 0

    def test_zero_address_rejected(self, service: TokenService) -> None:
        with pytest.raises(InvalidAddress):
            service.transfer(OWNER, ZERO, TOKEN, now=_now())

    def test_malformed_address_rejected(self, service: TokenService) -> None:
        with pytest.raises(InvalidAddress):
            service.transfer(OWNER, "0x1234", TOKEN, now=_now())

    def test_negative_amount_rejected(self, service: TokenService) -> None:
        with pytest.raises(InvalidAmount):
            service.transfer(OWNER, ALICE, -1, now=_now())

    def test_addresses_are_checksummed(self, service: TokenService) -> None:
        service.transfer(OWNER, OWNER.lower(), TOKEN, now=_now())
        assert service.balance_of(OWNER.lower()) == 20_999_999 * TOKEN

    def test_overspend_leaves_state_unchanged(self, service: TokenService) -> None:
        _fund(service, ALICE, 10)
        with pytest.raises(InsufficientBalance):
            service.transfer(ALICE, BOB, 10 * TOKEN, now=_now())
        assert service.balance_of(ALICE, _now()) == 10 * TOKEN
        assert service.balance_of(BOB, _now()) == 0

    def test_received_tokens_decay(self, service: TokenService) -> None:
        _fund(service, ALICE, 100)
        assert service.balance_of(ALICE, _days(1)) == 99 * TOKEN
        assert service.balance_of(ALICE, _days(2)) == 97 * TOKEN

    def test_pool_split_once_configured(self, service: TokenService) -> None:
        _configure_pools(service)
        _fund(service, ALICE, 200)

        service.transfer(ALICE, BOB, 100 * TOKEN, now=_now())

        assert service.balance_of(DIVIDEND_POOL) == TOKEN
        assert service.balance_of(TECHNICAL_POOL) == TOKEN
        assert service.balance_of(MARKETING_POOL) == 2 * TOKEN
        assert service.balance_of(ALICE, _now()) == 95 * TOKEN

    def test_supply_audit_balances(self, service: TokenService) -> None:
        _configure_pools(service)
        _fund(service, ALICE, 1000)
        service.transfer(ALICE, BOB, 100 * TOKEN, now=_now())
        service.stake(ALICE, 500 * TOKEN, 3, now=_now())
        service.refresh_balances(OWNER, [ALICE, BOB], now=_days(3))

        audit = service.supply_audit()
        assert audit["balanced"] is True
        assert audit["staked"] == 500 * TOKEN


class TestAllowances:
    def test_finite_allowance_is_decremented(self, service: TokenService) -> None:
        service.approve(OWNER, BOB, 10 * TOKEN, now=_now())
        service.transfer_from(BOB, OWNER, CAROL, 4 * TOKEN, now=_now())
        assert service.allowance(OWNER, BOB) == 6 * TOKEN
        assert service.balance_of(CAROL, _now()) == 4 * TOKEN

    def test_max_allowance_is_unlimited(self, service: TokenService) -> None:
        service.approve(OWNER, BOB, MAX_ALLOWANCE, now=_now())
        service.transfer_from(BOB, OWNER, CAROL, 4 * TOKEN, now=_now())
        assert service.allowance(OWNER, BOB) == MAX_ALLOWANCE

    def test_insufficient_allowance(self, service: TokenService) -> None:
        service.approve(OWNER, BOB, TOKEN, now=_now())
        with pytest.raises(InsufficientAllowance):
            service.transfer_from(BOB, OWNER, CAROL, 2 * TOKEN, now=_now())
        assert service.allowance(OWNER, BOB) == TOKEN


class TestLiquidityGuard:
    @pytest.fixture
    def guarded(self, resolver: PolicyResolver) -> TokenService:
        params = copy.deepcopy(resolver.raw())
        params["liquidity_guard"] = {"pool": LIQUIDITY_POOL, "router": ROUTER}
        return TokenService(PolicyResolver(params), now=_now())

    def test_holder_cannot_add_liquidity_directly(self, guarded: TokenService) -> None:
        _fund(guarded, ALICE, 10)
        with pytest.raises(Unauthorized):
            guarded.transfer(ALICE, LIQUIDITY_POOL, TOKEN, now=_now())

    def test_router_may_move_holder_tokens(self, guarded: TokenService) -> None:
        _fund(guarded, ALICE, 10)
        guarded.approve(ALICE, ROUTER, MAX_ALLOWANCE, now=_now())
        guarded.transfer_from(ROUTER, ALICE, LIQUIDITY_POOL, TOKEN, now=_now())
        assert guarded.balance_of(LIQUIDITY_POOL, _now()) == TOKEN

    def test_exempt_holder_is_not_guarded(self, guarded: TokenService) -> None:
        guarded.transfer(OWNER, LIQUIDITY_POOL, TOKEN, now=_now())
        assert guarded.balance_of(LIQUIDITY_POOL, _now()) == TOKEN


class TestReferral:
    def test_stake_records_referral(self, service: TokenService) -> None:
        _fund(service, ALICE, 1000)
        service.stake(ALICE, 100 * TOKEN, 12, referral=CAROL, now=_now())
        assert service.referral_wallet(ALICE) == CAROL

        receipt = service.transfer(ALICE, BOB, 100 * TOKEN, now=_now())

        assert receipt.commission.total == 45 * TOKEN // 10
        assert service.balance_of(CAROL, _now()) == 225 * TOKEN // 100
        assert service.balance_of(ALICE, _now()) == 7955 * TOKEN // 10

    def test_referral_set_only_once(self, service: TokenService) -> None:
        assert service.set_referral_wallet(ALICE, CAROL, now=_now()) is True
        assert service.set_referral_wallet(ALICE, BOB, now=_now()) is False
        assert service.referral_wallet(ALICE) == CAROL

    def test_self_referral_rejected(self, service: TokenService) -> None:
        with pytest.raises(InvalidAddress):
            service.set_referral_wallet(ALICE, ALICE, now=_now())


class TestStaking:
    def test_stake_and_extend(self, service: TokenService) -> None:
        _fund(service, ALICE, 1000)
        positions = service.stake(ALICE, 1000 * TOKEN, 5, now=_now())
        assert [p.lock_years for p in positions] == [5, 12]

        service.extend_staking(ALICE, 0, 7, now=_now())
        assert service.staking_positions(ALICE)[0].lock_years == 7

    def test_transfer_and_stake_is_admin_only(self, service: TokenService) -> None:
        _fund(service, ALICE, 1000)
        with pytest.raises(Unauthorized):
            service.transfer_and_stake(ALICE, BOB, TOKEN, 5, now=_now())

    def test_transfer_and_stake(self, service: TokenService) -> None:
        positions = service.transfer_and_stake(OWNER, BOB, 100 * TOKEN, 12, now=_now())
        assert positions[0].amount == 100 * TOKEN
        assert service.balance_of(BOB, _now()) == 0
        assert service.supply_audit()["balanced"]

    def test_transfer_and_stake_validates_first(self, service: TokenService) -> None:
        with pytest.raises(InvalidDuration):
            service.transfer_and_stake(OWNER, BOB, 100 * TOKEN, 13, now=_now())
        assert service.balance_of(BOB, _now()) == 0

    def test_unlock_requires_technical_role(self, service: TokenService) -> None:
        _fund(service, ALICE, 1000)
        service.stake(ALICE, 1000 * TOKEN, 1, now=_now())
        with pytest.raises(Unauthorized):
            service.smooth_unlock(ALICE, ALICE, 0, now=_days(365))
        receipt = service.smooth_unlock(OWNER, ALICE, 0, now=_days(365))
        assert receipt.released == 990 * TOKEN // 30


class TestDividendFlow:
    def test_monthly_cycle(self, service: TokenService) -> None:
        _configure_pools(service)
        _fund(service, ALICE, 1000)
        service.stake(ALICE, 1000 * TOKEN, 12, now=_now())
        service.transfer(OWNER, DIVIDEND_POOL, 50 * TOKEN, now=_now())

        march = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)
        service.init_dividend_recount(OWNER, now=march)
        service.recount_dividends(OWNER, service.accounts(), now=march)
        service.finish_dividend_recount(OWNER, now=march)

        claimable = service.calculate_dividends(ALICE, march)
        assert claimable == 1000 * TOKEN // 144 + 50 * TOKEN
        assert service.count_d(ALICE, 0, march) == 50 * TOKEN
        assert service.count_pod(ALICE, 0) == 10**18

        service.claim_dividends(ALICE, 0, claimable, now=march)
        assert service.calculate_dividends(ALICE, march) == 0
        assert service.supply_audit()["balanced"]

    def test_count_pod_zero_during_recount(self, service: TokenService) -> None:
        _fund(service, ALICE, 1000)
        service.stake(ALICE, 1000 * TOKEN, 12, now=_now())
        service.init_dividend_recount(OWNER, now=_now())
        assert service.count_pod(ALICE, 0) == 0

    def test_count_d_zero_without_beta(self, service: TokenService) -> None:
        _fund(service, ALICE, 1000)
        service.stake(ALICE, 1000 * TOKEN, 12, now=_now())
        service.init_dividend_recount(OWNER, now=_now())
        service.finish_dividend_recount(OWNER, now=_now())
        assert service.dividend_state.beta_indicator == 0
        assert service.count_d(ALICE, 0, _now()) == 0

    def test_recount_requires_technical_role(self, service: TokenService) -> None:
        with pytest.raises(Unauthorized):
            service.init_dividend_recount(ALICE, now=_now())


class TestConfiguration:
    def test_pool_requires_admin(self, service: TokenService) -> None:
        with pytest.raises(Unauthorized):
            service.set_pool_address(ALICE, DIVIDEND_POOL, 1, now=_now())

    def test_unknown_pool_code_ignored(self, service: TokenService) -> None:
        assert service.set_pool_address(OWNER, DIVIDEND_POOL, 4, now=_now()) is None
        assert service.pool_address(PoolKind.DIVIDEND) is None

    def test_pool_is_exempted(self, service: TokenService) -> None:
        service.set_pool_address(OWNER, DIVIDEND_POOL, 1, now=_now())
        assert service.is_exempt(DIVIDEND_POOL)

    def test_switch_role_toggles(self, service: TokenService) -> None:
        assert service.switch_role(OWNER, ALICE, 0, now=_now()) is True
        service.refresh_balances(ALICE, [BOB], now=_now())
        assert service.switch_role(OWNER, ALICE, 0, now=_now()) is False
        with pytest.raises(Unauthorized):
            service.refresh_balances(ALICE, [BOB], now=_now())

    def test_set_exempt(self, service: TokenService) -> None:
        _fund(service, ALICE, 100)
        service.set_exempt(OWNER, ALICE, True, now=_now())
        assert service.balance_of(ALICE, _days(30)) == 100 * TOKEN


class TestPersistence:
    def test_state_survives_restart(self, resolver: PolicyResolver, tmp_path: Path) -> None:
        def _open() -> TokenService:
            return TokenService(
                resolver,
                event_log=EventLog(tmp_path / "events.jsonl"),
                state_store=StateStore(tmp_path / "state.json"),
                now=_now(),
            )

        first = _open()
        _fund(first, ALICE, 100)
        first.stake(ALICE, 50 * TOKEN, 3, now=_now())

        second = _open()
        assert second.total_supply == first.total_supply
        assert second.balance_of(ALICE, _days(1)) == first.balance_of(ALICE, _days(1))
        assert len(second.staking_positions(ALICE)) == 2
        assert second.has_role(OWNER, Role.ADMIN)

    def test_events_are_recorded(self, resolver: PolicyResolver) -> None:
        log = EventLog()
        service = TokenService(resolver, event_log=log, now=_now())
        _fund(service, ALICE, 100)
        kinds = [e.event_kind for e in log.events()]
        assert kinds == [EventKind.GENESIS_MINT, EventKind.TRANSFER]

    def test_burns_are_recorded(self, resolver: PolicyResolver) -> None:
        log = EventLog()
        service = TokenService(resolver, event_log=log, now=_now())
        _fund(service, ALICE, 100)

        service.transfer(ALICE, BOB, 10 * TOKEN, now=_days(1))

        burns = [e.payload for e in log.events(EventKind.BURN)]
        assert burns == [
            {"amount": str(TOKEN), "source": "decay"},
            {"amount": str(TOKEN // 2), "source": "commission"},
        ]
        assert log.last_event.event_kind == EventKind.TRANSFER
