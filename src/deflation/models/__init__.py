"""Core data models for the deflation ledger."""

from deflation.models.ledger import (
    ZERO_ADDRESS,
    AccountRecord,
    BalancePortion,
    CommissionSplit,
    DecaySettlement,
    PoolKind,
    TransferReceipt,
)
from deflation.models.staking import (
    ClaimReceipt,
    DividendState,
    RecountSummary,
    StakePosition,
    StakeState,
    UnlockReceipt,
)

__all__ = [
    "ZERO_ADDRESS",
    "AccountRecord",
    "BalancePortion",
    "ClaimReceipt",
    "CommissionSplit",
    "DecaySettlement",
    "DividendState",
    "PoolKind",
    "RecountSummary",
    "StakePosition",
    "StakeState",
    "TransferReceipt",
    "UnlockReceipt",
]
