"""Commission router — splits the transfer fee between burn, pools and referrer.

Only non-exempt senders pay. The fee is charged on top of the transferred
amount, and depends on the sender's configuration:

    referral wallet set   → 4.5%: 2.25% burned, 2.25% to the referral wallet
    any pool unset        → 5%, all burned
    otherwise             → 5%: 1% burn, 1% dividend, 1% technical, 2% marketing

Each share is computed independently with floor division on basis
points, so transfers below 100 base units carry no fee at all.

The referral wallet is an ordinary account: its share arrives as a new
decaying portion. Pools are exempt and simply accumulate.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from deflation.accounting.ledger import DecayLedger
from deflation.models.ledger import CommissionSplit, PoolKind
from deflation.policy.resolver import PolicyResolver

BPS_DENOMINATOR = 10_000


class CommissionRouter:
    """Computes and distributes transfer commission.

    Usage:
        router = CommissionRouter(resolver, ledger)
        split = router.quote(sender, amount)
        # ... consume amount + split.total from the sender ...
        router.route(split, now)
    """

    def __init__(self, resolver: PolicyResolver, ledger: DecayLedger) -> None:
        self._ledger = ledger
        self._params = resolver.commission_params()

    def quote(self, sender: str, amount: int) -> CommissionSplit:
        """Compute the fee breakdown for ``sender`` moving ``amount``. Pure."""
        if amount <= 0 or self._ledger.is_exempt(sender):
            return CommissionSplit.none()

        referral = self._ledger.referral_of(sender)
        if referral is not None:
            half = amount * (self._params["referral_fee_bps"] // 2) // BPS_DENOMINATOR
            return CommissionSplit(
                total=2 * half,
                burned=half,
                referral=half,
                referral_wallet=referral,
            )

        if not self._ledger.pools_configured():
            fee = amount * self._params["standard_fee_bps"] // BPS_DENOMINATOR
            return CommissionSplit(total=fee, burned=fee)

        burned = self._share(amount, "burn_bps")
        dividend = self._share(amount, "dividend_bps")
        technical = self._share(amount, "technical_bps")
        marketing = self._share(amount, "marketing_bps")
        return CommissionSplit(
            total=burned + dividend + technical + marketing,
            burned=burned,
            dividend=dividend,
            marketing=marketing,
            technical=technical,
        )

    def route(self, split: CommissionSplit, now: Optional[datetime] = None) -> None:
        """Distribute a quoted fee that has already left the sender."""
        self._ledger.burn(split.burned)
        if split.referral and split.referral_wallet is not None:
            self._ledger.append_portion(split.referral_wallet, split.referral, now)
        if split.dividend:
            self._ledger.deposit_to_pool(PoolKind.DIVIDEND, split.dividend, now)
        if split.technical:
            self._ledger.deposit_to_pool(PoolKind.TECHNICAL, split.technical, now)
        if split.marketing:
            self._ledger.deposit_to_pool(PoolKind.MARKETING, split.marketing, now)

    def _share(self, amount: int, key: str) -> int:
        return amount * self._params[key] // BPS_DENOMINATOR
