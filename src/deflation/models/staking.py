"""Staking and dividend models.

A stake position is a locked principal with a chosen duration in years.
Its lifecycle is a strict state machine:

    OPEN → MATURED        (lock_years × 365 days elapsed)
    MATURED → UNLOCKING   (first smooth unlock snapshots finished_amount)
    UNLOCKING → CLOSED    (amount drained to zero)

A position can also reach CLOSED straight from OPEN or MATURED when
claims draw its whole principal. Closed positions are retained so that
indices stay stable.

Period counters (last_claimed_period, claimed_principal,
claimed_dividends) only describe the period named in last_claimed_period;
a claim in any later period starts from zero.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime


class StakeState(str, enum.Enum):
    """Lifecycle state of a stake position."""
    OPEN = "open"
    MATURED = "matured"
    UNLOCKING = "unlocking"
    CLOSED = "closed"


@dataclass
class StakePosition:
    """A locked principal earning weighted dividend share."""
    initial_amount: int
    amount: int
    start_utc: datetime
    lock_years: int
    finished_amount: int = 0
    last_claimed_period: int = 0
    claimed_principal: int = 0
    claimed_dividends: int = 0
    compounded_period: int = 0

    @property
    def is_closed(self) -> bool:
        return self.amount == 0

    def to_dict(self) -> dict:
        return {
            "initial_amount": self.initial_amount,
            "amount": self.amount,
            "start_utc": self.start_utc.isoformat(),
            "lock_years": self.lock_years,
            "finished_amount": self.finished_amount,
            "last_claimed_period": self.last_claimed_period,
            "claimed_principal": self.claimed_principal,
            "claimed_dividends": self.claimed_dividends,
            "compounded_period": self.compounded_period,
        }

    @classmethod
    def from_dict(cls, data: dict) -> StakePosition:
        return cls(
            initial_amount=int(data["initial_amount"]),
            amount=int(data["amount"]),
            start_utc=datetime.fromisoformat(data["start_utc"]),
            lock_years=int(data["lock_years"]),
            finished_amount=int(data.get("finished_amount", 0)),
            last_claimed_period=int(data.get("last_claimed_period", 0)),
            claimed_principal=int(data.get("claimed_principal", 0)),
            claimed_dividends=int(data.get("claimed_dividends", 0)),
            compounded_period=int(data.get("compounded_period", 0)),
        )


@dataclass
class DividendState:
    """Process-wide dividend indicators.

    One instance is shared by reference between the staking engine (which
    adjusts the live indicators when principal changes) and the dividend
    accountant (which rebuilds them during a recount).

    beta_indicator is only ever replaced wholesale by finish(), so reads
    always see a fully settled snapshot.
    """
    beta_indicator: int = 0
    beta_update_accumulator: int = 0
    beta_pod_indicator: int = 0
    pool_snapshot: int = 0
    active: bool = False

    def to_dict(self) -> dict:
        return {
            "beta_indicator": self.beta_indicator,
            "beta_update_accumulator": self.beta_update_accumulator,
            "beta_pod_indicator": self.beta_pod_indicator,
            "pool_snapshot": self.pool_snapshot,
            "active": self.active,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DividendState:
        return cls(
            beta_indicator=int(data.get("beta_indicator", 0)),
            beta_update_accumulator=int(data.get("beta_update_accumulator", 0)),
            beta_pod_indicator=int(data.get("beta_pod_indicator", 0)),
            pool_snapshot=int(data.get("pool_snapshot", 0)),
            active=bool(data.get("active", False)),
        )


@dataclass(frozen=True)
class ClaimReceipt:
    """Settlement of one dividend claim.

    Invariant: from_dividends + from_principal == amount
    """
    address: str
    index: int
    amount: int
    from_dividends: int
    from_principal: int
    period: int


@dataclass(frozen=True)
class UnlockReceipt:
    """One smooth-unlock instalment."""
    address: str
    index: int
    released: int
    remaining: int


@dataclass(frozen=True)
class RecountSummary:
    """Totals from one recount batch."""
    accounts: int
    positions: int
    compounded: int
    accumulator: int
    pod_indicator: int
