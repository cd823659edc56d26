"""Decay ledger — raw balances, timestamped portions and lazy decay.

Every credit to an ordinary (non-exempt) account is recorded as a
portion stamped with its arrival time. A portion's spendable value falls
day by day according to a fixed table:

    age 0 days → 100%
    age n days → daily_reductions[n - 1]%
    beyond the table → 0%

Nothing decays in the background. The effective balance is recomputed on
read, and ``refresh`` settles the difference between the stored raw
balance and the effective balance: half of the shortfall is burned, half
goes to the dividend pool.

Spending walks portions oldest-first from a cursor. Portions are never
removed; fully spent ones are zeroed and the cursor moves past them, so
indices stay stable for the life of the ledger.

Exempt accounts (pools, the genesis holder, anyone an admin exempts)
skip all of this: their raw balance is their balance.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

from deflation.accounting.periods import elapsed_days
from deflation.errors import InsufficientBalance, InsufficientPoolBalance, InvalidAmount
from deflation.models.ledger import (
    AccountRecord,
    BalancePortion,
    DecaySettlement,
    PoolKind,
)
from deflation.policy.resolver import PolicyResolver
from deflation.structured_logging import log_event

logger = logging.getLogger("deflation.ledger")


class DecayLedger:
    """Owns balances, portions, pools and total supply.

    Usage:
        ledger = DecayLedger(resolver)
        ledger.mint(owner, 1000, now)
        ledger.append_portion(alice, 100, now)
        ledger.effective_balance(alice, later)   # decayed view
        ledger.refresh(alice, later)             # settle the decay
        ledger.consume(alice, 50, later)         # oldest portions first
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._daily_reductions = resolver.daily_reductions()
        self._burn_share_percent = resolver.decay_burn_share_percent()
        self._accounts: Dict[str, AccountRecord] = {}
        self._pools: Dict[PoolKind, Optional[str]] = {kind: None for kind in PoolKind}
        self.total_supply = 0
        self.total_burned = 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def account(self, address: str) -> AccountRecord:
        """Return the record for ``address``, creating it on first touch."""
        record = self._accounts.get(address)
        if record is None:
            record = AccountRecord(address=address)
            self._accounts[address] = record
        return record

    def has_account(self, address: str) -> bool:
        return address in self._accounts

    def addresses(self) -> Iterator[str]:
        return iter(list(self._accounts))

    def raw_balance(self, address: str) -> int:
        record = self._accounts.get(address)
        return record.balance if record else 0

    def is_exempt(self, address: str) -> bool:
        record = self._accounts.get(address)
        return bool(record and record.exempt)

    def referral_of(self, address: str) -> Optional[str]:
        record = self._accounts.get(address)
        return record.referral if record else None

    def set_referral(self, address: str, referral: Optional[str]) -> None:
        self.account(address).referral = referral

    def portions(self, address: str) -> List[BalancePortion]:
        """Copy of the full portion list, consumed prefix included."""
        record = self._accounts.get(address)
        if record is None:
            return []
        return [BalancePortion(p.amount, p.created_utc) for p in record.portions]

    # ------------------------------------------------------------------
    # Decay arithmetic
    # ------------------------------------------------------------------

    def decay_weight(self, age_days: int) -> int:
        """Percentage (0-100) of a portion still spendable at ``age_days``."""
        if age_days <= 0:
            return 100
        if age_days > len(self._daily_reductions):
            return 0
        return self._daily_reductions[age_days - 1]

    def portion_value(self, portion: BalancePortion, now: datetime) -> int:
        weight = self.decay_weight(elapsed_days(portion.created_utc, now))
        return portion.amount * weight // 100

    def effective_balance(self, address: str, now: Optional[datetime] = None) -> int:
        """Spendable balance at ``now``.

        Exempt: the raw balance. Otherwise the decay-weighted sum of the
        unconsumed portions, never more than the raw balance.
        """
        record = self._accounts.get(address)
        if record is None:
            return 0
        if record.exempt:
            return record.balance
        if now is None:
            now = datetime.now(timezone.utc)
        total = sum(self.portion_value(p, now) for p in record.live_portions())
        return min(total, record.balance)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def refresh(self, address: str, now: Optional[datetime] = None) -> Optional[DecaySettlement]:
        """Settle pending decay for one account.

        No-op (returns None) for exempt accounts, zero raw balances and
        accounts without portions. Calling twice without elapsed time
        settles nothing the second time.
        """
        record = self._accounts.get(address)
        if record is None or record.exempt or record.balance == 0 or not record.portions:
            return None
        if now is None:
            now = datetime.now(timezone.utc)

        self._zero_expired(record, now)
        effective = self.effective_balance(address, now)
        if effective >= record.balance:
            return None

        shortfall = record.balance - effective
        record.balance = effective

        dividend_pool = self._pools[PoolKind.DIVIDEND]
        if dividend_pool is None:
            burned, to_pool = shortfall, 0
        else:
            burned = shortfall * self._burn_share_percent // 100
            to_pool = shortfall - burned
            self.account(dividend_pool).balance += to_pool
        self.burn(burned)

        settlement = DecaySettlement(
            address=address, shortfall=shortfall, burned=burned, to_pool=to_pool,
        )
        log_event(
            logger, "decay_settled",
            address=address, shortfall=shortfall, burned=burned, to_pool=to_pool,
        )
        return settlement

    def require_spendable(self, address: str, amount: int, now: Optional[datetime] = None) -> None:
        """Raise InsufficientBalance unless ``amount`` can be consumed at ``now``."""
        available = self.effective_balance(address, now)
        if available < amount:
            raise InsufficientBalance(
                "balance too low",
                {"address": address, "available": available, "required": amount},
            )

    def consume(self, address: str, amount: int, now: Optional[datetime] = None) -> None:
        """Remove ``amount`` from an account, oldest portions first."""
        if amount < 0:
            raise InvalidAmount("amount must not be negative", {"amount": amount})
        if amount == 0:
            return
        if now is None:
            now = datetime.now(timezone.utc)
        self.require_spendable(address, amount, now)

        record = self.account(address)
        if not record.exempt:
            self._consume_portions(record, amount, now)
        record.balance -= amount

    def append_portion(self, address: str, amount: int, now: Optional[datetime] = None) -> None:
        """Credit ``amount``; ordinary accounts get a new portion stamped ``now``."""
        if amount < 0:
            raise InvalidAmount("amount must not be negative", {"amount": amount})
        if amount == 0:
            return
        if now is None:
            now = datetime.now(timezone.utc)
        record = self.account(address)
        record.balance += amount
        if not record.exempt:
            record.portions.append(BalancePortion(amount=amount, created_utc=now))

    def mint(self, address: str, amount: int, now: Optional[datetime] = None) -> None:
        """Create new supply. Only used at genesis."""
        self.append_portion(address, amount, now)
        self.total_supply += amount

    def burn(self, amount: int) -> None:
        """Destroy ``amount`` already removed from some balance."""
        if amount <= 0:
            return
        self.total_supply -= amount
        self.total_burned += amount

    def set_exempt(
        self, address: str, exempt: bool, now: Optional[datetime] = None,
    ) -> Optional[DecaySettlement]:
        """Toggle decay exemption.

        Exempting settles pending decay first and returns that settlement.
        Removing the exemption turns the current raw balance into a single
        fresh portion.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        record = self.account(address)
        if record.exempt == exempt:
            return None
        if exempt:
            settlement = self.refresh(address, now)
            record.exempt = True
            return settlement

        record.exempt = False
        for portion in record.live_portions():
            portion.amount = 0
        record.portion_start = len(record.portions)
        if record.balance > 0:
            record.portions.append(BalancePortion(amount=record.balance, created_utc=now))
        return None

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

    def set_pool(
        self, kind: PoolKind, address: str, now: Optional[datetime] = None,
    ) -> Optional[DecaySettlement]:
        """Point a pool slot at ``address``; pools are always exempt.

        The address is exempted (and its decay settled) before it takes the
        slot, so its own shortfall is never paid back into it.
        """
        settlement = self.set_exempt(address, True, now)
        self._pools[kind] = address
        return settlement

    def pool_address(self, kind: PoolKind) -> Optional[str]:
        return self._pools[kind]

    def pools_configured(self) -> bool:
        return all(address is not None for address in self._pools.values())

    def pool_balance(self, kind: PoolKind) -> int:
        address = self._pools[kind]
        return self.raw_balance(address) if address else 0

    def deposit_to_pool(self, kind: PoolKind, amount: int, now: Optional[datetime] = None) -> None:
        address = self._pools[kind]
        if address is None:
            raise InsufficientPoolBalance(f"{kind.value} pool is not configured")
        self.append_portion(address, amount, now)

    def withdraw_from_pool(self, kind: PoolKind, amount: int) -> None:
        """Debit a pool. A shortfall here means the books no longer balance."""
        if amount <= 0:
            return
        address = self._pools[kind]
        available = self.raw_balance(address) if address else 0
        if address is None or available < amount:
            raise InsufficientPoolBalance(
                f"{kind.value} pool holds {available}, cannot pay {amount}"
            )
        self.account(address).balance -= amount

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _consume_portions(self, record: AccountRecord, amount: int, now: datetime) -> None:
        remaining = amount
        index = record.portion_start
        while remaining > 0 and index < len(record.portions):
            portion = record.portions[index]
            if portion.amount == 0:
                index += 1
                continue
            weight = self.decay_weight(elapsed_days(portion.created_utc, now))
            if weight == 0:
                portion.amount = 0
                index += 1
                continue
            value = portion.amount * weight // 100
            if value <= remaining:
                remaining -= value
                portion.amount = 0
                index += 1
            else:
                # Round the nominal reduction up so the portion never keeps
                # more value than the raw balance accounts for.
                nominal = -(-remaining * 100 // weight)
                portion.amount -= min(nominal, portion.amount)
                remaining = 0
        self._advance_cursor(record)

    def _zero_expired(self, record: AccountRecord, now: datetime) -> None:
        for portion in record.live_portions():
            if self.decay_weight(elapsed_days(portion.created_utc, now)) > 0:
                break
            portion.amount = 0
        self._advance_cursor(record)

    @staticmethod
    def _advance_cursor(record: AccountRecord) -> None:
        start = record.portion_start
        while start < len(record.portions) and record.portions[start].amount == 0:
            start += 1
        record.portion_start = start

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "total_supply": self.total_supply,
            "total_burned": self.total_burned,
            "pools": {kind.value: address for kind, address in self._pools.items()},
            "accounts": [record.to_dict() for record in self._accounts.values()],
        }

    @classmethod
    def from_dict(cls, resolver: PolicyResolver, data: dict) -> DecayLedger:
        ledger = cls(resolver)
        ledger.total_supply = int(data["total_supply"])
        ledger.total_burned = int(data.get("total_burned", 0))
        for kind_value, address in data.get("pools", {}).items():
            ledger._pools[PoolKind(kind_value)] = address
        for entry in data.get("accounts", []):
            record = AccountRecord.from_dict(entry)
            ledger._accounts[record.address] = record
        return ledger
