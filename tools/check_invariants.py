#!/usr/bin/env python3
"""Deflation ledger invariant checks against the parameter artifact."""

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from deflation.policy.invariants import check_params
from deflation.policy.resolver import PolicyResolver


def check(config_dir: Path = ROOT / "config") -> int:
    errors = check_params(PolicyResolver.from_config_dir(config_dir))

    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1

    print("Invariant check passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(check())
