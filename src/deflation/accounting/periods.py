"""Calendar periods — the year-month keys that gate one claim cycle.

A period key is ``year * 100 + month`` (e.g. 202602). It is derived from
whole days since the Unix epoch with the Fliegel–Van Flandern
Julian-day-number conversion, using integer floor division only. Claim
eligibility compares period keys for equality, so this arithmetic must
not be replaced with anything that could disagree at a month boundary.
"""

from __future__ import annotations

from datetime import datetime

SECONDS_PER_DAY = 86400

# Julian day number of 1970-01-01.
_EPOCH_JDN = 2440588


def days_since_epoch(when: datetime) -> int:
    """Whole days between the Unix epoch and ``when``."""
    return int(when.timestamp()) // SECONDS_PER_DAY


def elapsed_days(since: datetime, until: datetime) -> int:
    """Whole days elapsed between two instants (0 if ``until`` is earlier)."""
    seconds = int((until - since).total_seconds())
    if seconds <= 0:
        return 0
    return seconds // SECONDS_PER_DAY


def year_month(when: datetime) -> int:
    """Return the ``year * 100 + month`` period key for an instant."""
    l = days_since_epoch(when) + 68569 + _EPOCH_JDN
    n = (4 * l) // 146097
    l = l - (146097 * n + 3) // 4
    i = (4000 * (l + 1)) // 1461001
    l = l - (1461 * i) // 4 + 31
    j = (80 * l) // 2447
    l = j // 11
    j = j + 2 - 12 * l
    year = 100 * (n - 49) + i + l
    return year * 100 + j


def previous_period(period: int) -> int:
    """The period immediately before ``period`` (January rolls back a year)."""
    year, month = divmod(period, 100)
    if month == 1:
        return (year - 1) * 100 + 12
    return period - 1
