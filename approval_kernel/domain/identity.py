"""Acting principal as resolved by the identity gateway."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class Principal:
    """Who is calling, and with which roles.

    The engine trusts the gateway's answer; roles are opaque strings
    compared against the configured admin roles.
    """

    user_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_any_role(self, roles: frozenset[str] | set[str] | tuple[str, ...]) -> bool:
        return bool(self.roles & frozenset(roles))
