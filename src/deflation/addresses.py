"""Account address handling.

Addresses are 20-byte hex strings. Everything entering the service is
normalized to its EIP-55 checksum form, so the same account is never
stored under two spellings.
"""

from __future__ import annotations

from web3 import Web3

from deflation.errors import InvalidAddress
from deflation.models.ledger import ZERO_ADDRESS


def normalize_address(value: str) -> str:
    """Return the checksum form of ``value``; raise InvalidAddress if malformed."""
    if not isinstance(value, str) or not Web3.is_address(value):
        raise InvalidAddress("not a valid address", {"address": value})
    return Web3.to_checksum_address(value)


def require_recipient(value: str) -> str:
    """Normalize ``value`` and reject the zero address."""
    address = normalize_address(value)
    if address == ZERO_ADDRESS:
        raise InvalidAddress("cannot send to the zero address", {"address": address})
    return address
