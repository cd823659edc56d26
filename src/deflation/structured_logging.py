"""Structured logging helpers.

Ledger subsystems log through module loggers under the ``deflation``
namespace. Notable engine events (decay settlements, recount phases,
claims, unlocks) are emitted as single JSON lines so they can be grepped
or shipped without a parser.
"""

from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level_name: str | None = None) -> None:
    """Configure the ``deflation`` logger with one stream handler.

    Level comes from the argument, else DEFLATION_LOG_LEVEL, else INFO.
    Safe to call more than once.
    """
    name = (level_name or os.environ.get("DEFLATION_LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, name, logging.INFO)

    root = logging.getLogger("deflation")
    root.setLevel(level)
    if getattr(root, "_deflation_configured", False):  # type: ignore[attr-defined]
        return

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.handlers = [handler]
    root.propagate = False
    setattr(root, "_deflation_configured", True)  # type: ignore[attr-defined]


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    """Emit a single JSON log line for an engine event."""
    payload: Json = {"ts_ms": _now_ms(), "event": event}
    payload.update(fields)
    logger.info(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))
