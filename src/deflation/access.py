"""Role registry — who may configure the ledger and run maintenance.

Two roles exist:
- ADMIN: pool and exemption configuration, role assignment,
  transfer-and-stake.
- TECHNICAL: balance refresh, dividend recount phases, smooth unlock.

Roles are toggled, not set: switching a role an address already holds
revokes it.
"""

from __future__ import annotations

import enum
from typing import Dict, Optional, Set

from deflation.errors import Unauthorized


class Role(str, enum.Enum):
    TECHNICAL = "technical"
    ADMIN = "admin"


# Numeric role codes accepted by switch_role.
ROLE_CODES: Dict[int, Role] = {
    0: Role.TECHNICAL,
    1: Role.ADMIN,
}


class RoleRegistry:
    """In-memory role membership."""

    def __init__(self) -> None:
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}

    def has_role(self, address: str, role: Role) -> bool:
        return address in self._members[role]

    def require(self, address: str, role: Role) -> None:
        if not self.has_role(address, role):
            raise Unauthorized(
                f"{role.value} role required", {"address": address},
            )

    def grant(self, address: str, role: Role) -> None:
        self._members[role].add(address)

    def switch_role(self, address: str, role: Role) -> bool:
        """Toggle ``role`` for ``address``. Returns True if now held."""
        members = self._members[role]
        if address in members:
            members.discard(address)
            return False
        members.add(address)
        return True

    def members(self, role: Role) -> list[str]:
        return sorted(self._members[role])

    @staticmethod
    def role_for_code(code: int) -> Optional[Role]:
        return ROLE_CODES.get(code)

    def to_dict(self) -> dict:
        return {role.value: sorted(members) for role, members in self._members.items()}

    @classmethod
    def from_dict(cls, data: dict) -> RoleRegistry:
        registry = cls()
        for role_value, members in data.items():
            registry._members[Role(role_value)] = set(members)
        return registry
