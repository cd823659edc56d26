"""Accounting core — decay ledger, commission, staking and dividends.

The four components share state by reference: the staking engine and the
dividend accountant both hold the same DividendState, and every component
reads and writes balances through the one DecayLedger.
"""

from deflation.accounting.commission import CommissionRouter
from deflation.accounting.dividends import DividendAccountant
from deflation.accounting.ledger import DecayLedger
from deflation.accounting.staking import StakingEngine

__all__ = [
    "CommissionRouter",
    "DecayLedger",
    "DividendAccountant",
    "StakingEngine",
]
