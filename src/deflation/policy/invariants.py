"""Structural checks on the ledger parameter artifact.

These are the properties the accounting code relies on but cannot
re-derive at runtime: a decay table that only ever goes down and ends at
zero, a weight table covering every lock length, and fee splits that add
up to the advertised fee.
"""

from __future__ import annotations

from deflation.policy.resolver import PolicyResolver


def check_params(resolver: PolicyResolver) -> list[str]:
    """Return a list of violations (empty when the params are sound)."""
    errors: list[str] = []

    # --- Decay table ---
    table = resolver.daily_reductions()
    if not table:
        errors.append("decay.daily_reductions must not be empty")
    else:
        if any(v < 0 or v > 100 for v in table):
            errors.append("decay.daily_reductions entries must be within [0, 100]")
        if any(b > a for a, b in zip(table, table[1:])):
            errors.append("decay.daily_reductions must be non-increasing")
        if table[-1] != 0:
            errors.append("decay.daily_reductions must end at 0 (full decay)")
    burn_share = resolver.decay_burn_share_percent()
    if not 0 <= burn_share <= 100:
        errors.append("decay.burn_share_percent must be within [0, 100]")

    # --- Staking weights ---
    staking = resolver.staking_params()
    weights = staking["year_weights"]
    if len(weights) != staking["max_years"]:
        errors.append(
            f"staking.year_weights must have {staking['max_years']} entries, got {len(weights)}"
        )
    if any(b < a for a, b in zip(weights, weights[1:])):
        errors.append("staking.year_weights must be non-decreasing")
    if weights and weights[0] < 1:
        errors.append("staking.year_weights must start at >= 1")
    if not 1 <= staking["min_years"] <= staking["max_years"]:
        errors.append("staking.min_years must be within [1, max_years]")
    if not staking["min_years"] <= staking["bonus_years"] <= staking["max_years"]:
        errors.append("staking.bonus_years must be a valid lock length")
    if not 0 <= staking["bonus_share_percent"] < 100:
        errors.append("staking.bonus_share_percent must be within [0, 100)")
    if staking["unlock_instalments_per_year"] < 1:
        errors.append("staking.unlock_instalments_per_year must be >= 1")

    # --- Commission splits ---
    commission = resolver.commission_params()
    split_total = (
        commission["burn_bps"]
        + commission["dividend_bps"]
        + commission["technical_bps"]
        + commission["marketing_bps"]
    )
    if split_total != commission["standard_fee_bps"]:
        errors.append(
            f"commission splits sum to {split_total} bps, "
            f"standard_fee_bps is {commission['standard_fee_bps']}"
        )
    if commission["referral_fee_bps"] % 2 != 0:
        errors.append("commission.referral_fee_bps must split evenly into burn and referral")
    if commission["referral_fee_bps"] > commission["standard_fee_bps"]:
        errors.append("commission.referral_fee_bps must not exceed standard_fee_bps")

    # --- Dividends ---
    if resolver.pod_precision() <= 0:
        errors.append("dividends.pod_precision must be positive")

    return errors
