"""DeflationCoin ledger — decaying balances, multi-year staking and dividends."""

__version__ = "0.1.0"
