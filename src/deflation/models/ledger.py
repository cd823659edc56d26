"""Ledger models — accounts, balance portions, pools and transfer receipts.

All amounts are integers in base units (10**decimals per token). No floats
and no Decimals inside the engine: every split and decay step uses floor
division so results are reproducible bit for bit.

Structural invariants carried by these models:
- An account's portion list is append-only; only ``amount`` of a portion
  ever changes, and ``portion_start`` only moves forward.
- Every portion before ``portion_start`` has ``amount == 0``.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class PoolKind(str, enum.Enum):
    """Named pool slots that receive commission and decay proceeds."""
    DIVIDEND = "dividend"
    MARKETING = "marketing"
    TECHNICAL = "technical"


# Numeric pool codes accepted by the configuration API.
POOL_TYPE_CODES: Dict[int, PoolKind] = {
    1: PoolKind.DIVIDEND,
    2: PoolKind.MARKETING,
    3: PoolKind.TECHNICAL,
}


@dataclass
class BalancePortion:
    """A timestamped slice of a balance that decays independently."""
    amount: int
    created_utc: datetime

    def to_dict(self) -> dict:
        return {"amount": self.amount, "created_utc": self.created_utc.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> BalancePortion:
        return cls(
            amount=int(data["amount"]),
            created_utc=datetime.fromisoformat(data["created_utc"]),
        )


@dataclass
class AccountRecord:
    """Everything the ledger stores for one address.

    ``balance`` is the raw stored balance: for exempt accounts it is the
    spendable balance; for everyone else it is the effective balance as of
    the last refresh plus anything credited since.
    """
    address: str
    balance: int = 0
    portions: List[BalancePortion] = field(default_factory=list)
    portion_start: int = 0
    exempt: bool = False
    referral: Optional[str] = None
    allowances: Dict[str, int] = field(default_factory=dict)

    def live_portions(self) -> List[BalancePortion]:
        """Portions at or after the consumed-prefix cursor."""
        return self.portions[self.portion_start:]

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "balance": self.balance,
            "portions": [p.to_dict() for p in self.portions],
            "portion_start": self.portion_start,
            "exempt": self.exempt,
            "referral": self.referral,
            "allowances": dict(self.allowances),
        }

    @classmethod
    def from_dict(cls, data: dict) -> AccountRecord:
        return cls(
            address=data["address"],
            balance=int(data["balance"]),
            portions=[BalancePortion.from_dict(p) for p in data.get("portions", [])],
            portion_start=int(data.get("portion_start", 0)),
            exempt=bool(data.get("exempt", False)),
            referral=data.get("referral"),
            allowances={k: int(v) for k, v in data.get("allowances", {}).items()},
        )


@dataclass(frozen=True)
class DecaySettlement:
    """Outcome of settling an account's pending decay.

    Invariant: burned + to_pool == shortfall
    """
    address: str
    shortfall: int
    burned: int
    to_pool: int


@dataclass(frozen=True)
class CommissionSplit:
    """Full breakdown of the fee charged on one transfer.

    Invariant: burned + referral + dividend + marketing + technical == total
    """
    total: int
    burned: int
    referral: int = 0
    dividend: int = 0
    marketing: int = 0
    technical: int = 0
    referral_wallet: Optional[str] = None

    @staticmethod
    def none() -> CommissionSplit:
        return CommissionSplit(total=0, burned=0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "burned": self.burned,
            "referral": self.referral,
            "dividend": self.dividend,
            "marketing": self.marketing,
            "technical": self.technical,
            "referral_wallet": self.referral_wallet,
        }


@dataclass(frozen=True)
class TransferReceipt:
    """What a transfer actually moved."""
    sender: str
    recipient: str
    amount: int
    commission: CommissionSplit
    sender_settlement: Optional[DecaySettlement] = None
