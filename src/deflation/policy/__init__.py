"""Ledger policy: parameter loading and artifact checks."""

from deflation.policy.resolver import PolicyResolver

__all__ = ["PolicyResolver"]
