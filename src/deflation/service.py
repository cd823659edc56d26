"""Token service — unified facade over the deflation ledger.

This is the primary interface for programmatic access. It wires the
accounting components together and adds the token surface around them:
- Genesis mint to the owner
- Transfers, allowances and the liquidity-pool guard
- Staking (open, extend, claim, smooth unlock)
- The two-phase dividend recount
- Pool, exemption and role configuration
- Persistence (event log, state store)

Every mutating call validates its inputs before touching state, raises a
LedgerError on rejection, and on success appends an event to the event
log and re-saves the state document.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from deflation.access import Role, RoleRegistry
from deflation.accounting.commission import CommissionRouter
from deflation.accounting.dividends import DividendAccountant
from deflation.accounting.ledger import DecayLedger
from deflation.accounting.periods import year_month
from deflation.accounting.staking import StakingEngine
from deflation.addresses import normalize_address, require_recipient
from deflation.errors import (
    InsufficientAllowance,
    InvalidAddress,
    InvalidAmount,
    Unauthorized,
)
from deflation.models.ledger import (
    POOL_TYPE_CODES,
    BalancePortion,
    DecaySettlement,
    PoolKind,
    TransferReceipt,
)
from deflation.models.staking import (
    ClaimReceipt,
    DividendState,
    RecountSummary,
    StakePosition,
    UnlockReceipt,
)
from deflation.persistence.event_log import EventKind, EventLog
from deflation.persistence.state_store import StateStore
from deflation.policy.resolver import PolicyResolver
from deflation.units import to_base_units

logger = logging.getLogger("deflation.service")

MAX_ALLOWANCE = 2**256 - 1


class TokenService:
    """Deflationary token facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = TokenService(resolver, owner=owner)

        service.set_pool_address(owner, dividend_pool, 1)
        service.transfer(owner, alice, amount)
        service.stake(alice, amount, years=5)

        # Once per period, by a technical operator
        service.init_dividend_recount(operator)
        service.recount_dividends(operator, service.accounts())
        service.finish_dividend_recount(operator)

        service.claim_dividends(alice, 0, amount)

    Persistence (optional):
        service = TokenService(resolver, event_log=log, state_store=store)
        # State is saved on each mutation and loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        owner: Optional[str] = None,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        now: Optional[datetime] = None,
    ) -> None:
        self._resolver = resolver
        token = resolver.token_params()
        self._name = token["name"]
        self._symbol = token["symbol"]
        self._decimals = token["decimals"]

        self._event_log = event_log
        self._state_store = state_store
        self._persistence_degraded = False

        guard_pool, guard_router = resolver.liquidity_guard()
        self._guard_pool = normalize_address(guard_pool) if guard_pool else None
        self._guard_router = normalize_address(guard_router) if guard_router else None

        stored = state_store.load() if state_store is not None else None
        if stored is not None:
            self._owner = stored["owner"]
            self._ledger = DecayLedger.from_dict(resolver, stored["ledger"])
            self._dividend_state = DividendState.from_dict(stored["dividends"])
            self._roles = RoleRegistry.from_dict(stored["roles"])
            self._wire_components()
            self._staking.load_dict(stored["positions"])
        else:
            owner = owner or token["owner"]
            if not owner:
                raise InvalidAddress("no owner configured for genesis")
            self._owner = normalize_address(owner)
            self._ledger = DecayLedger(resolver)
            self._dividend_state = DividendState()
            self._roles = RoleRegistry()
            self._wire_components()
            self._genesis(to_base_units(token["initial_supply"], self._decimals), now)

    def _wire_components(self) -> None:
        self._commission = CommissionRouter(self._resolver, self._ledger)
        self._staking = StakingEngine(self._resolver, self._ledger, self._dividend_state)
        self._dividends = DividendAccountant(
            self._resolver, self._ledger, self._staking, self._dividend_state,
        )

    def _genesis(self, supply: int, now: Optional[datetime]) -> None:
        if now is None:
            now = datetime.now(timezone.utc)
        self._ledger.set_exempt(self._owner, True, now)
        self._ledger.mint(self._owner, supply, now)
        self._roles.grant(self._owner, Role.ADMIN)
        self._roles.grant(self._owner, Role.TECHNICAL)
        self._commit(
            EventKind.GENESIS_MINT, self._owner, {"amount": str(supply)}, now,
        )

    # ------------------------------------------------------------------
    # Metadata and queries
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def decimals(self) -> int:
        return self._decimals

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def total_supply(self) -> int:
        return self._ledger.total_supply

    @property
    def total_burned(self) -> int:
        return self._ledger.total_burned

    @property
    def dividend_state(self) -> DividendState:
        return self._dividend_state

    def accounts(self) -> list[str]:
        """Every address the ledger or staking engine has seen."""
        seen = dict.fromkeys(self._ledger.addresses())
        seen.update(dict.fromkeys(self._staking.stakers()))
        return list(seen)

    def balance_of(self, address: str, now: Optional[datetime] = None) -> int:
        return self._ledger.effective_balance(normalize_address(address), now)

    def raw_balance_of(self, address: str) -> int:
        return self._ledger.raw_balance(normalize_address(address))

    def balance_portions(self, address: str) -> list[BalancePortion]:
        return self._ledger.portions(normalize_address(address))

    def is_exempt(self, address: str) -> bool:
        return self._ledger.is_exempt(normalize_address(address))

    def has_role(self, address: str, role: Role) -> bool:
        return self._roles.has_role(normalize_address(address), role)

    def pool_address(self, kind: PoolKind) -> Optional[str]:
        return self._ledger.pool_address(kind)

    def referral_wallet(self, address: str) -> Optional[str]:
        return self._ledger.referral_of(normalize_address(address))

    def allowance(self, owner: str, spender: str) -> int:
        owner = normalize_address(owner)
        spender = normalize_address(spender)
        if not self._ledger.has_account(owner):
            return 0
        return self._ledger.account(owner).allowances.get(spender, 0)

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> TransferReceipt:
        """Move ``amount`` from ``sender`` to ``recipient``.

        Commission is charged on top: the sender is debited amount + fee.
        """
        sender = normalize_address(sender)
        recipient = require_recipient(recipient)
        if now is None:
            now = datetime.now(timezone.utc)
        receipt = self._transfer(sender, recipient, amount, sender, now)
        self._commit_transfer(receipt, sender, now)
        return receipt

    def approve(self, owner: str, spender: str, amount: int, now: Optional[datetime] = None) -> None:
        owner = normalize_address(owner)
        spender = require_recipient(spender)
        if amount < 0:
            raise InvalidAmount("allowance must not be negative", {"amount": amount})
        self._ledger.account(owner).allowances[spender] = amount
        self._commit(
            EventKind.APPROVAL, owner, {"spender": spender, "amount": str(amount)}, now,
        )

    def transfer_from(
        self,
        spender: str,
        owner: str,
        recipient: str,
        amount: int,
        now: Optional[datetime] = None,
    ) -> TransferReceipt:
        """Spend from ``owner``'s balance under ``spender``'s allowance.

        The maximum allowance is treated as unlimited and never decremented.
        """
        spender = normalize_address(spender)
        owner = normalize_address(owner)
        recipient = require_recipient(recipient)
        if now is None:
            now = datetime.now(timezone.utc)

        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowance(
                "allowance too low",
                {"owner": owner, "spender": spender, "allowance": allowed, "required": amount},
            )
        receipt = self._transfer(owner, recipient, amount, spender, now)
        if allowed != MAX_ALLOWANCE:
            self._ledger.account(owner).allowances[spender] = allowed - amount
        self._commit_transfer(receipt, spender, now)
        return receipt

    def _transfer(
        self,
        sender: str,
        recipient: str,
        amount: int,
        initiator: str,
        now: datetime,
    ) -> TransferReceipt:
        if amount < 0:
            raise InvalidAmount("transfer amount must not be negative", {"amount": amount})
        self._check_liquidity_guard(sender, recipient, initiator)

        split = self._commission.quote(sender, amount)
        self._ledger.require_spendable(sender, amount + split.total, now)

        settlement = self._ledger.refresh(sender, now)
        self._ledger.consume(sender, amount + split.total, now)
        self._commission.route(split, now)
        self._ledger.append_portion(recipient, amount, now)
        return TransferReceipt(
            sender=sender,
            recipient=recipient,
            amount=amount,
            commission=split,
            sender_settlement=settlement,
        )

    def _check_liquidity_guard(self, sender: str, recipient: str, initiator: str) -> None:
        if self._guard_pool is None or recipient != self._guard_pool:
            return
        if self._ledger.is_exempt(sender) or initiator == self._guard_router:
            return
        raise Unauthorized(
            "liquidity can only be added through the router",
            {"sender": sender, "pool": self._guard_pool},
        )

    def _commit_transfer(self, receipt: TransferReceipt, actor: str, now: datetime) -> None:
        if receipt.sender_settlement is not None:
            self._record_settlement(receipt.sender_settlement, now)
        self._record_burn(receipt.sender, receipt.commission.burned, "commission", now)
        self._commit(
            EventKind.TRANSFER,
            actor,
            {
                "from": receipt.sender,
                "to": receipt.recipient,
                "amount": str(receipt.amount),
                "commission": {k: str(v) if isinstance(v, int) else v
                               for k, v in receipt.commission.to_dict().items()},
            },
            now,
        )

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    def set_referral_wallet(
        self,
        address: str,
        referral: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """Record ``referral`` for ``address`` unless one is already set."""
        address = normalize_address(address)
        referral = require_recipient(referral)
        if referral == address:
            raise InvalidAddress("an account cannot refer itself", {"address": address})
        if self._ledger.referral_of(address) is not None:
            return False
        self._ledger.set_referral(address, referral)
        self._commit(EventKind.REFERRAL_SET, address, {"referral": referral}, now)
        return True

    def stake(
        self,
        address: str,
        amount: int,
        years: int,
        referral: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[StakePosition]:
        """Lock ``amount`` for ``years``; optionally record a referral wallet."""
        address = normalize_address(address)
        if referral is not None:
            referral = require_recipient(referral)
            if referral == address:
                raise InvalidAddress("an account cannot refer itself", {"address": address})
        if now is None:
            now = datetime.now(timezone.utc)

        self._staking.validate_lock(amount, years)
        self._ledger.require_spendable(address, amount, now)
        settlement = self._ledger.refresh(address, now)
        if settlement is not None:
            self._record_settlement(settlement, now)
        positions = self._staking.open(address, amount, years, now)
        self._commit(
            EventKind.STAKE_OPENED,
            address,
            {"amount": str(amount), "years": years, "positions": len(positions)},
            now,
        )
        if referral is not None and self._ledger.referral_of(address) is None:
            self._ledger.set_referral(address, referral)
            self._commit(EventKind.REFERRAL_SET, address, {"referral": referral}, now)
        return positions

    def transfer_and_stake(
        self,
        admin: str,
        recipient: str,
        amount: int,
        years: int,
        now: Optional[datetime] = None,
    ) -> list[StakePosition]:
        """Admin-only: send ``amount`` to ``recipient`` and stake it for them."""
        admin = normalize_address(admin)
        self._roles.require(admin, Role.ADMIN)
        recipient = require_recipient(recipient)
        self._staking.validate_lock(amount, years)
        if now is None:
            now = datetime.now(timezone.utc)

        receipt = self._transfer(admin, recipient, amount, admin, now)
        self._commit_transfer(receipt, admin, now)
        positions = self._staking.open(recipient, amount, years, now)
        self._commit(
            EventKind.STAKE_OPENED,
            admin,
            {"owner": recipient, "amount": str(amount), "years": years,
             "positions": len(positions)},
            now,
        )
        return positions

    def extend_staking(
        self,
        address: str,
        index: int,
        new_years: int,
        now: Optional[datetime] = None,
    ) -> StakePosition:
        address = normalize_address(address)
        position = self._staking.extend(address, index, new_years, now)
        self._commit(
            EventKind.STAKE_EXTENDED, address, {"index": index, "years": new_years}, now,
        )
        return position

    def claim_dividends(
        self,
        address: str,
        index: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ClaimReceipt:
        address = normalize_address(address)
        receipt = self._dividends.claim(address, index, amount, now)
        self._commit(
            EventKind.DIVIDENDS_CLAIMED,
            address,
            {
                "index": index,
                "amount": str(receipt.amount),
                "from_dividends": str(receipt.from_dividends),
                "from_principal": str(receipt.from_principal),
                "period": receipt.period,
            },
            now,
        )
        return receipt

    def smooth_unlock(
        self,
        caller: str,
        owner: str,
        index: int,
        now: Optional[datetime] = None,
    ) -> UnlockReceipt:
        """Technical-only: release one instalment of a matured position."""
        caller = normalize_address(caller)
        self._roles.require(caller, Role.TECHNICAL)
        owner = normalize_address(owner)
        receipt = self._staking.smooth_unlock(owner, index, now)
        self._commit(
            EventKind.STAKE_UNLOCKED,
            caller,
            {
                "owner": owner,
                "index": index,
                "released": str(receipt.released),
                "remaining": str(receipt.remaining),
            },
            now,
        )
        return receipt

    def staking_positions(self, address: str) -> list[StakePosition]:
        return list(self._staking.positions(normalize_address(address)))

    def calculate_dividends(self, address: str, now: Optional[datetime] = None) -> int:
        return self._dividends.calculate_dividends(normalize_address(address), now)

    def count_pod(self, address: str, index: int) -> int:
        """Proof-of-deposit share of one position."""
        position = self._staking.position(normalize_address(address), index)
        return self._dividends.proof_of_deposit(position)

    def count_d(self, address: str, index: int, now: Optional[datetime] = None) -> int:
        """Unclaimed dividend share of one position for the current period."""
        if now is None:
            now = datetime.now(timezone.utc)
        position = self._staking.position(normalize_address(address), index)
        return self._dividends.dividend_share(position, year_month(now), now)

    # ------------------------------------------------------------------
    # Maintenance (technical role)
    # ------------------------------------------------------------------

    def refresh_balances(
        self,
        caller: str,
        accounts: Iterable[str],
        now: Optional[datetime] = None,
    ) -> list[DecaySettlement]:
        caller = normalize_address(caller)
        self._roles.require(caller, Role.TECHNICAL)
        addresses = [normalize_address(a) for a in accounts]
        if now is None:
            now = datetime.now(timezone.utc)

        settlements = []
        for address in addresses:
            settlement = self._ledger.refresh(address, now)
            if settlement is not None:
                self._record_settlement(settlement, now)
                settlements.append(settlement)
        self._persist_post_audit()
        return settlements

    def init_dividend_recount(self, caller: str, now: Optional[datetime] = None) -> None:
        caller = normalize_address(caller)
        self._roles.require(caller, Role.TECHNICAL)
        self._dividends.init_recount()
        self._commit(EventKind.RECOUNT_INITIATED, caller, {}, now)

    def recount_dividends(
        self,
        caller: str,
        accounts: Iterable[str],
        now: Optional[datetime] = None,
    ) -> RecountSummary:
        caller = normalize_address(caller)
        self._roles.require(caller, Role.TECHNICAL)
        addresses = [normalize_address(a) for a in accounts]
        summary = self._dividends.recount(addresses, now)
        self._commit(
            EventKind.RECOUNT_BATCH,
            caller,
            {
                "accounts": summary.accounts,
                "positions": summary.positions,
                "compounded": str(summary.compounded),
            },
            now,
        )
        return summary

    def finish_dividend_recount(self, caller: str, now: Optional[datetime] = None) -> None:
        caller = normalize_address(caller)
        self._roles.require(caller, Role.TECHNICAL)
        self._dividends.finish()
        self._commit(
            EventKind.RECOUNT_FINISHED,
            caller,
            {
                "beta": str(self._dividend_state.beta_indicator),
                "snapshot": str(self._dividend_state.pool_snapshot),
            },
            now,
        )

    # ------------------------------------------------------------------
    # Configuration (admin role)
    # ------------------------------------------------------------------

    def set_exempt(
        self,
        caller: str,
        address: str,
        exempt: bool,
        now: Optional[datetime] = None,
    ) -> None:
        caller = normalize_address(caller)
        self._roles.require(caller, Role.ADMIN)
        address = require_recipient(address)
        settlement = self._ledger.set_exempt(address, exempt, now)
        if settlement is not None:
            self._record_settlement(settlement, now)
        self._commit(
            EventKind.EXEMPTION_SET, caller, {"address": address, "exempt": exempt}, now,
        )

    def set_pool_address(
        self,
        caller: str,
        address: str,
        pool_type: int,
        now: Optional[datetime] = None,
    ) -> Optional[PoolKind]:
        """Point a pool slot at ``address``. Unknown pool codes are ignored."""
        caller = normalize_address(caller)
        self._roles.require(caller, Role.ADMIN)
        address = require_recipient(address)
        kind = POOL_TYPE_CODES.get(pool_type)
        if kind is None:
            logger.info("Ignoring unknown pool type %s", pool_type)
            return None
        settlement = self._ledger.set_pool(kind, address, now)
        if settlement is not None:
            self._record_settlement(settlement, now)
        self._commit(EventKind.POOL_SET, caller, {"pool": kind.value, "address": address}, now)
        return kind

    def switch_role(
        self,
        caller: str,
        address: str,
        role_code: int,
        now: Optional[datetime] = None,
    ) -> Optional[bool]:
        """Toggle a role. Returns whether it is now held, or None for unknown codes."""
        caller = normalize_address(caller)
        self._roles.require(caller, Role.ADMIN)
        address = require_recipient(address)
        role = RoleRegistry.role_for_code(role_code)
        if role is None:
            logger.info("Ignoring unknown role code %s", role_code)
            return None
        held = self._roles.switch_role(address, role)
        self._commit(
            EventKind.ROLE_SWITCHED,
            caller,
            {"address": address, "role": role.value, "held": held},
            now,
        )
        return held

    # ------------------------------------------------------------------
    # Status and audit
    # ------------------------------------------------------------------

    def supply_audit(self) -> dict[str, Any]:
        """Check that balances plus staked principal account for total supply."""
        balances = sum(self._ledger.raw_balance(a) for a in self._ledger.addresses())
        staked = self._staking.total_staked()
        return {
            "total_supply": self.total_supply,
            "balances": balances,
            "staked": staked,
            "balanced": balances + staked == self.total_supply,
        }

    def status(self) -> dict[str, Any]:
        state = self._dividend_state
        return {
            "token": {
                "name": self._name,
                "symbol": self._symbol,
                "decimals": self._decimals,
                "total_supply": self.total_supply,
                "total_burned": self.total_burned,
            },
            "owner": self._owner,
            "accounts": len(self.accounts()),
            "staked": self._staking.total_staked(),
            "pools": {kind.value: self._ledger.pool_address(kind) for kind in PoolKind},
            "dividends": state.to_dict(),
            "persistence_degraded": self._persistence_degraded,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self._owner,
            "ledger": self._ledger.to_dict(),
            "positions": self._staking.to_dict(),
            "dividends": self._dividend_state.to_dict(),
            "roles": self._roles.to_dict(),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _record_settlement(self, settlement: DecaySettlement, now: Optional[datetime]) -> None:
        if self._event_log is None:
            return
        self._event_log.record(
            EventKind.DECAY_SETTLED,
            settlement.address,
            {
                "shortfall": str(settlement.shortfall),
                "burned": str(settlement.burned),
                "to_pool": str(settlement.to_pool),
            },
            now,
        )
        self._record_burn(settlement.address, settlement.burned, "decay", now)

    def _record_burn(self, address: str, amount: int, source: str, now: Optional[datetime]) -> None:
        if self._event_log is None or amount <= 0:
            return
        self._event_log.record(
            EventKind.BURN, address, {"amount": str(amount), "source": source}, now,
        )

    def _commit(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        now: Optional[datetime],
    ) -> None:
        """Record an event for a completed mutation, then persist."""
        if self._event_log is not None:
            self._event_log.record(kind, actor, payload, now)
        self._persist_post_audit()

    def _persist_post_audit(self) -> None:
        """Save state after the event is durable.

        A failed write does not undo the in-memory change (the event log
        already records it); the service is flagged as degraded instead.
        """
        if self._state_store is None:
            return
        try:
            self._state_store.save(self.to_dict())
        except OSError as e:
            self._persistence_degraded = True
            logger.error("State store write failed, state is stale: %s", e)
