"""Dividend accountant — the periodic recount and per-position claims.

The dividend pool is shared out in proportion to time-weighted stake. The
weights are not maintained continuously; a technical operator rebuilds
them in a two-phase recount once per period:

    init_recount()          accumulator := 0, PoD := 0, active := False
    recount(batch) × N      compound last period's unclaimed share, then
                            accumulate amount × weight and amount × years
    finish()                beta := accumulator, snapshot := pool balance,
                            active := True

Between ``finish`` calls, a position's entitlement for the current period
is

    principal instalment:  amount // (lock_years × 12)
    dividend share:        amount × weight × pool_snapshot // beta

less whatever was already claimed in the same period. Nothing is
claimable in the calendar month the position was opened.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional

from deflation.accounting.ledger import DecayLedger
from deflation.accounting.periods import previous_period, year_month
from deflation.accounting.staking import StakingEngine
from deflation.errors import InvalidAmount, PeriodNotElapsed
from deflation.models.ledger import PoolKind
from deflation.models.staking import (
    ClaimReceipt,
    DividendState,
    RecountSummary,
    StakePosition,
)
from deflation.policy.resolver import PolicyResolver
from deflation.structured_logging import log_event

logger = logging.getLogger("deflation.dividends")


class DividendAccountant:
    """Runs recounts and settles dividend claims.

    Usage:
        accountant = DividendAccountant(resolver, ledger, staking, state)
        accountant.init_recount()
        accountant.recount(addresses, now)
        accountant.finish()
        accountant.claim(alice, 0, amount, now=next_month)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: DecayLedger,
        staking: StakingEngine,
        state: DividendState,
    ) -> None:
        self._ledger = ledger
        self._staking = staking
        self._state = state
        self._pod_precision = resolver.pod_precision()

    # ------------------------------------------------------------------
    # Recount window
    # ------------------------------------------------------------------

    def init_recount(self) -> None:
        self._state.beta_update_accumulator = 0
        self._state.beta_pod_indicator = 0
        self._state.active = False
        log_event(logger, "recount_initiated")

    def recount(
        self,
        addresses: Iterable[str],
        now: Optional[datetime] = None,
    ) -> RecountSummary:
        """Process one batch of accounts.

        Each position first has the previous period's unclaimed dividend
        share folded into its principal, then contributes its weighted
        amount to the accumulator and PoD indicator.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        previous = previous_period(year_month(now))

        accounts = positions = compounded = 0
        for address in dict.fromkeys(addresses):
            accounts += 1
            for position in self._staking.positions(address):
                positions += 1
                share = self._unclaimed_share(position, previous, now)
                if share > 0:
                    self._ledger.withdraw_from_pool(PoolKind.DIVIDEND, share)
                    position.amount += share
                    compounded += share
                if year_month(position.start_utc) < previous:
                    position.compounded_period = previous

                self._state.beta_update_accumulator += (
                    position.amount * self._staking.year_weight(position, now)
                )
                self._state.beta_pod_indicator += position.amount * position.lock_years

        summary = RecountSummary(
            accounts=accounts,
            positions=positions,
            compounded=compounded,
            accumulator=self._state.beta_update_accumulator,
            pod_indicator=self._state.beta_pod_indicator,
        )
        log_event(
            logger, "recount_batch",
            accounts=accounts, positions=positions, compounded=compounded,
            accumulator=summary.accumulator,
        )
        return summary

    def finish(self) -> None:
        self._state.active = True
        self._state.beta_indicator = self._state.beta_update_accumulator
        self._state.pool_snapshot = self._ledger.pool_balance(PoolKind.DIVIDEND)
        log_event(
            logger, "recount_finished",
            beta=self._state.beta_indicator, snapshot=self._state.pool_snapshot,
        )

    # ------------------------------------------------------------------
    # Entitlements
    # ------------------------------------------------------------------

    def dividend_share(
        self,
        position: StakePosition,
        period: int,
        now: Optional[datetime] = None,
    ) -> int:
        """Pool share for ``position`` in ``period``, net of claims made in it."""
        if self._state.beta_indicator == 0:
            return 0
        if now is None:
            now = datetime.now(timezone.utc)
        weight = self._staking.year_weight(position, now)
        share = position.amount * weight * self._state.pool_snapshot // self._state.beta_indicator
        if position.last_claimed_period == period:
            share -= position.claimed_dividends
        return max(0, share)

    def principal_instalment(self, position: StakePosition, period: int) -> int:
        instalment = position.amount // (position.lock_years * 12)
        if position.last_claimed_period == period:
            instalment -= position.claimed_principal
        return max(0, instalment)

    def withdrawable(self, position: StakePosition, now: Optional[datetime] = None) -> int:
        if now is None:
            now = datetime.now(timezone.utc)
        period = year_month(now)
        if year_month(position.start_utc) >= period:
            return 0
        return self.principal_instalment(position, period) + self.dividend_share(position, period, now)

    def calculate_dividends(self, address: str, now: Optional[datetime] = None) -> int:
        """Total claimable across all of ``address``'s positions this period."""
        if now is None:
            now = datetime.now(timezone.utc)
        return sum(self.withdrawable(p, now) for p in self._staking.positions(address))

    def proof_of_deposit(self, position: StakePosition) -> int:
        """Position's fixed-point share of total amount × years."""
        if self._state.beta_pod_indicator == 0:
            return 0
        return (
            position.amount * position.lock_years * self._pod_precision
            // self._state.beta_pod_indicator
        )

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        address: str,
        index: int,
        amount: int,
        now: Optional[datetime] = None,
    ) -> ClaimReceipt:
        """Withdraw ``amount`` from a position's current-period entitlement.

        The dividend share is paid first out of the dividend pool; anything
        beyond it is drawn from the position's principal.
        """
        position = self._staking.position(address, index)
        if now is None:
            now = datetime.now(timezone.utc)
        period = year_month(now)
        if year_month(position.start_utc) >= period:
            raise PeriodNotElapsed(
                "nothing is claimable in the opening period",
                {"address": address, "index": index, "period": period},
            )
        available = self.withdrawable(position, now)
        if amount <= 0 or amount > available:
            raise InvalidAmount(
                "claim exceeds withdrawable amount",
                {"amount": amount, "withdrawable": available},
            )
        if not self._state.active:
            logger.warning(
                "Claim on %s[%d] while a dividend recount is in progress", address, index,
            )

        if position.last_claimed_period != period:
            position.last_claimed_period = period
            position.claimed_principal = 0
            position.claimed_dividends = 0

        dividends = self.dividend_share(position, period, now)
        from_dividends = min(amount, dividends)
        from_principal = amount - from_dividends

        self._ledger.withdraw_from_pool(PoolKind.DIVIDEND, from_dividends)
        if from_principal:
            self._staking.reduce_principal(position, from_principal, now)
        position.claimed_principal += from_principal
        position.claimed_dividends += from_dividends
        self._ledger.append_portion(address, amount, now)

        log_event(
            logger, "dividends_claimed",
            address=address, index=index, amount=amount,
            from_dividends=from_dividends, from_principal=from_principal, period=period,
        )
        return ClaimReceipt(
            address=address,
            index=index,
            amount=amount,
            from_dividends=from_dividends,
            from_principal=from_principal,
            period=period,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _unclaimed_share(self, position: StakePosition, previous: int, now: datetime) -> int:
        if year_month(position.start_utc) >= previous:
            return 0
        if position.compounded_period == previous:
            return 0
        return self.dividend_share(position, previous, now)
