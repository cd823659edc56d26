"""Staking engine — multi-year positions, extensions and smooth unlock.

Opening a stake moves principal out of the spendable balance into a
position locked for 1..12 years. Unless the lock is already the longest
tier, 1% of the amount is diverted into a second position pinned to
12 years, so every staker holds some longest-tier weight.

Each position contributes to two global indicators held in the shared
DividendState:

    beta_indicator      += principal × year_weight
    beta_pod_indicator  += principal × lock_years

year_weight depends on the whole years still left on the lock:

    years left: 1  2  3  4  5  6  7  8   9   10  11  12
    weight:     1  2  3  4  5  6  7  10  12  14  16  20

Once a position matures, it can be drained by smooth unlock in roughly
lock_years × 30 equal instalments, one per call.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from deflation.accounting.ledger import DecayLedger
from deflation.accounting.periods import SECONDS_PER_DAY
from deflation.errors import (
    IndexOutOfRange,
    InvalidAmount,
    InvalidDuration,
    PositionNotMatured,
)
from deflation.models.staking import DividendState, StakePosition, StakeState, UnlockReceipt
from deflation.policy.resolver import PolicyResolver
from deflation.structured_logging import log_event

logger = logging.getLogger("deflation.staking")


class StakingEngine:
    """Owns every account's stake positions.

    Usage:
        engine = StakingEngine(resolver, ledger, dividend_state)
        positions = engine.open(alice, amount, years=5, now=now)
        engine.extend(alice, 0, new_years=8, now=now)
        receipt = engine.smooth_unlock(alice, 0, now=later)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: DecayLedger,
        state: DividendState,
    ) -> None:
        self._ledger = ledger
        self._state = state
        params = resolver.staking_params()
        self._min_years = params["min_years"]
        self._max_years = params["max_years"]
        self._days_per_year = params["days_per_year"]
        self._weights = params["year_weights"]
        self._bonus_years = params["bonus_years"]
        self._bonus_share_percent = params["bonus_share_percent"]
        self._instalments_per_year = params["unlock_instalments_per_year"]
        self._positions: Dict[str, List[StakePosition]] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def positions(self, address: str) -> List[StakePosition]:
        """The live position list for ``address`` (empty if none)."""
        return self._positions.get(address, [])

    def position(self, address: str, index: int) -> StakePosition:
        positions = self._positions.get(address, [])
        if index < 0 or index >= len(positions):
            raise IndexOutOfRange(
                "no such stake position",
                {"address": address, "index": index, "count": len(positions)},
            )
        return positions[index]

    def stakers(self) -> List[str]:
        return list(self._positions)

    def total_staked(self) -> int:
        return sum(p.amount for positions in self._positions.values() for p in positions)

    def maturity(self, position: StakePosition) -> Optional[datetime]:
        """Unlock instant, or None when it lies past ``datetime.max``."""
        try:
            return position.start_utc + timedelta(days=position.lock_years * self._days_per_year)
        except OverflowError:
            return None

    def is_matured(self, position: StakePosition, now: datetime) -> bool:
        return self._seconds_left(position.start_utc, position.lock_years, now) <= 0

    def position_state(self, position: StakePosition, now: Optional[datetime] = None) -> StakeState:
        if now is None:
            now = datetime.now(timezone.utc)
        if position.is_closed:
            return StakeState.CLOSED
        if not self.is_matured(position, now):
            return StakeState.OPEN
        if position.finished_amount > 0:
            return StakeState.UNLOCKING
        return StakeState.MATURED

    def year_weight(self, position: StakePosition, now: Optional[datetime] = None) -> int:
        """Dividend weight for the whole years left on the lock."""
        if now is None:
            now = datetime.now(timezone.utc)
        return self._weight_for(position.start_utc, position.lock_years, now)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def open(
        self,
        address: str,
        amount: int,
        years: int,
        now: Optional[datetime] = None,
    ) -> List[StakePosition]:
        """Lock ``amount`` for ``years``; returns the positions created."""
        self.validate_lock(amount, years)
        if now is None:
            now = datetime.now(timezone.utc)
        self._ledger.require_spendable(address, amount, now)

        self._ledger.refresh(address, now)
        self._ledger.consume(address, amount, now)

        if years == self._bonus_years:
            split = [(amount, years)]
        else:
            principal = amount * (100 - self._bonus_share_percent) // 100
            split = [(principal, years), (amount - principal, self._bonus_years)]

        created = []
        positions = self._positions.setdefault(address, [])
        for principal, lock_years in split:
            position = StakePosition(
                initial_amount=principal,
                amount=principal,
                start_utc=now,
                lock_years=lock_years,
            )
            positions.append(position)
            self._add_weight(position, position.amount, now)
            created.append(position)

        log_event(
            logger, "stake_opened",
            address=address, amount=amount, years=years, positions=len(created),
        )
        return created

    def validate_lock(self, amount: int, years: int) -> None:
        """Raise unless ``amount`` and ``years`` describe an openable stake."""
        if amount <= 0:
            raise InvalidAmount("stake amount must be positive", {"amount": amount})
        if not self._min_years <= years <= self._max_years:
            raise InvalidDuration(
                f"lock must be {self._min_years}..{self._max_years} years",
                {"years": years},
            )

    def extend(
        self,
        address: str,
        index: int,
        new_years: int,
        now: Optional[datetime] = None,
    ) -> StakePosition:
        """Change a position's lock length and re-weight it."""
        if new_years < self._min_years:
            raise InvalidDuration(
                f"lock must be at least {self._min_years} year(s)",
                {"years": new_years},
            )
        position = self.position(address, index)
        if now is None:
            now = datetime.now(timezone.utc)

        old_weight = self.year_weight(position, now)
        new_weight = self._weight_for(position.start_utc, new_years, now)
        old_years = position.lock_years
        position.lock_years = new_years

        principal = position.amount
        self._state.beta_indicator = max(
            0, self._state.beta_indicator + principal * (new_weight - old_weight)
        )
        self._state.beta_pod_indicator = max(
            0, self._state.beta_pod_indicator + principal * (new_years - old_years)
        )
        log_event(
            logger, "stake_extended",
            address=address, index=index, old_years=old_years, new_years=new_years,
        )
        return position

    def smooth_unlock(
        self,
        address: str,
        index: int,
        now: Optional[datetime] = None,
    ) -> UnlockReceipt:
        """Release one instalment of a matured position to its owner."""
        position = self.position(address, index)
        if now is None:
            now = datetime.now(timezone.utc)
        if position.amount == 0:
            raise PositionNotMatured(
                "position is closed", {"address": address, "index": index},
            )
        if not self.is_matured(position, now):
            maturity = self.maturity(position)
            raise PositionNotMatured(
                "lock has not expired",
                {
                    "address": address,
                    "index": index,
                    "matures": maturity.isoformat() if maturity is not None else None,
                },
            )

        if position.finished_amount == 0:
            position.finished_amount = position.amount
        instalment = position.finished_amount // (position.lock_years * self._instalments_per_year)
        released = position.amount if instalment == 0 else min(position.amount, instalment)

        self.reduce_principal(position, released, now)
        self._ledger.append_portion(address, released, now)

        log_event(
            logger, "stake_unlocked",
            address=address, index=index, released=released, remaining=position.amount,
        )
        return UnlockReceipt(
            address=address, index=index, released=released, remaining=position.amount,
        )

    def reduce_principal(self, position: StakePosition, amount: int, now: datetime) -> None:
        """Take ``amount`` out of a position and out of the live indicators."""
        self._remove_weight(position, amount, now)
        position.amount -= amount

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _seconds_left(self, start: datetime, lock_years: int, now: datetime) -> int:
        # Integer seconds; a long lock can end past datetime.max.
        lock_seconds = lock_years * self._days_per_year * SECONDS_PER_DAY
        return lock_seconds - int((now - start).total_seconds())

    def _weight_for(self, start: datetime, lock_years: int, now: datetime) -> int:
        seconds_left = self._seconds_left(start, lock_years, now)
        if seconds_left <= 0:
            return self._weights[0]
        days_left = seconds_left // SECONDS_PER_DAY
        if days_left == 0:
            return self._weights[0]
        years_left = min((days_left - 1) // self._days_per_year + 1, self._max_years)
        return self._weights[years_left - 1]

    def _add_weight(self, position: StakePosition, amount: int, now: datetime) -> None:
        self._state.beta_indicator += amount * self.year_weight(position, now)
        self._state.beta_pod_indicator += amount * position.lock_years

    def _remove_weight(self, position: StakePosition, amount: int, now: datetime) -> None:
        self._state.beta_indicator = max(
            0, self._state.beta_indicator - amount * self.year_weight(position, now)
        )
        self._state.beta_pod_indicator = max(
            0, self._state.beta_pod_indicator - amount * position.lock_years
        )

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            address: [p.to_dict() for p in positions]
            for address, positions in self._positions.items()
        }

    def load_dict(self, data: dict) -> None:
        self._positions = {
            address: [StakePosition.from_dict(p) for p in positions]
            for address, positions in data.items()
        }
