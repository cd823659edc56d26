"""State store — the full ledger state as one JSON document.

The document is rewritten after every mutation. Writes go to a temporary
file in the same directory which then replaces the target, so a crash
mid-write leaves the previous document intact.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

STATE_VERSION = 1


class StateStore:
    """Load and save the service state document at ``path``."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    def load(self) -> Optional[dict[str, Any]]:
        """Return the stored document, or None if nothing was saved yet."""
        if not self._path.exists():
            return None
        with self._path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        version = data.get("version")
        if version != STATE_VERSION:
            raise ValueError(
                f"Unsupported state version {version!r} in {self._path}"
            )
        return data["state"]

    def save(self, state: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        document = {"version": STATE_VERSION, "state": state}
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, sort_keys=True, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
