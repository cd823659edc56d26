"""Policy resolver — the single read path for ledger parameters.

Every tunable number in the ledger (decay table, fee basis points, staking
weights, genesis supply) lives in ``config/ledger_params.json``. Components
never hard-code those values; they ask the resolver.

Usage:
    resolver = PolicyResolver.from_config_dir(Path("config"))
    table = resolver.daily_reductions()
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

PARAMS_FILE = "ledger_params.json"

_REQUIRED_SECTIONS = (
    "token",
    "decay",
    "commission",
    "staking",
    "dividends",
    "liquidity_guard",
)


class PolicyResolver:
    """Read-only view over the ledger parameter document."""

    def __init__(self, params: dict[str, Any]) -> None:
        missing = [s for s in _REQUIRED_SECTIONS if s not in params]
        if missing:
            raise ValueError(f"Ledger params missing sections: {', '.join(missing)}")
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load ``ledger_params.json`` from a config directory."""
        path = Path(config_dir) / PARAMS_FILE
        if not path.exists():
            raise ValueError(f"Ledger params not found: {path}")
        with path.open("r", encoding="utf-8") as handle:
            return cls(json.load(handle))

    def raw(self) -> dict[str, Any]:
        return self._params

    # ------------------------------------------------------------------
    # Token
    # ------------------------------------------------------------------

    def token_params(self) -> dict[str, Any]:
        token = self._params["token"]
        return {
            "name": str(token["name"]),
            "symbol": str(token["symbol"]),
            "decimals": int(token["decimals"]),
            "initial_supply": str(token["initial_supply"]),
            "owner": token.get("owner"),
        }

    # ------------------------------------------------------------------
    # Decay
    # ------------------------------------------------------------------

    def daily_reductions(self) -> tuple[int, ...]:
        """Percent of a portion still spendable after 1..N whole days."""
        return tuple(int(v) for v in self._params["decay"]["daily_reductions"])

    def decay_burn_share_percent(self) -> int:
        return int(self._params["decay"].get("burn_share_percent", 50))

    # ------------------------------------------------------------------
    # Commission
    # ------------------------------------------------------------------

    def commission_params(self) -> dict[str, int]:
        return {k: int(v) for k, v in self._params["commission"].items()}

    # ------------------------------------------------------------------
    # Staking
    # ------------------------------------------------------------------

    def staking_params(self) -> dict[str, Any]:
        staking = self._params["staking"]
        return {
            "min_years": int(staking["min_years"]),
            "max_years": int(staking["max_years"]),
            "days_per_year": int(staking["days_per_year"]),
            "year_weights": tuple(int(w) for w in staking["year_weights"]),
            "bonus_years": int(staking["bonus_years"]),
            "bonus_share_percent": int(staking["bonus_share_percent"]),
            "unlock_instalments_per_year": int(staking["unlock_instalments_per_year"]),
        }

    # ------------------------------------------------------------------
    # Dividends
    # ------------------------------------------------------------------

    def pod_precision(self) -> int:
        return int(self._params["dividends"]["pod_precision"])

    # ------------------------------------------------------------------
    # Liquidity guard
    # ------------------------------------------------------------------

    def liquidity_guard(self) -> tuple[Optional[str], Optional[str]]:
        """Return (guarded pool, router). Either may be None (guard off)."""
        guard = self._params["liquidity_guard"]
        return guard.get("pool"), guard.get("router")
