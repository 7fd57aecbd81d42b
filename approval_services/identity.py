"""
approval_services.identity -- Identity & authorization gateway.

Responsibility:
    Turns the caller's request context into a ``Principal`` and answers
    project-membership and role questions.  Identity is an external
    concern; ``IdentityGateway`` is the protocol a deployment implements.
    ``StaticIdentityGateway`` is an in-memory implementation for local
    development and tests.

Architecture position:
    Services -- collaborator boundary.  The engines only ever see the
    ``Principal`` this gateway returns.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from approval_kernel.domain.identity import Principal
from approval_kernel.exceptions import UnauthorizedError

# Role ranks.  A role satisfies every chain role at or below its rank.
DEFAULT_ROLE_LEVELS: Mapping[str, int] = {
    "branch-admin": 1,
    "project-admin": 2,
    "country-admin": 3,
    "global-admin": 4,
}

# Roles that see every project without an explicit membership.
DEFAULT_GLOBAL_ROLES: frozenset[str] = frozenset({"global-admin"})


@dataclass(frozen=True)
class RequestContext:
    """What the transport layer knows about the caller."""

    user_id: UUID
    correlation_id: str | None = None


@runtime_checkable
class IdentityGateway(Protocol):
    def resolve_principal(self, request_context: Any) -> Principal: ...

    def is_project_member(self, user_id: UUID, project_id: UUID) -> bool: ...

    def reviewers_for_role(self, project_id: UUID, role: str) -> Sequence[UUID]: ...


@dataclass
class _UserRecord:
    roles: frozenset[str]
    projects: frozenset[UUID]


@dataclass
class StaticIdentityGateway:
    """In-memory users, roles and project memberships.

    ``reviewers_for_role`` returns members of the project whose highest
    role ranks at or above the requested one, closest rank first and then
    in registration order.
    """

    role_levels: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_ROLE_LEVELS))
    global_roles: frozenset[str] = DEFAULT_GLOBAL_ROLES
    _users: dict[UUID, _UserRecord] = field(default_factory=dict, init=False, repr=False)

    def add_user(
        self,
        user_id: UUID,
        roles: Iterable[str] = (),
        projects: Iterable[UUID] = (),
    ) -> None:
        self._users[user_id] = _UserRecord(
            roles=frozenset(roles), projects=frozenset(projects),
        )

    def resolve_principal(self, request_context: Any) -> Principal:
        user_id = getattr(request_context, "user_id", request_context)
        record = self._users.get(user_id)
        if record is None:
            raise UnauthorizedError(
                actor_id=str(user_id),
                action="authenticate",
                target_id="-",
                reason="unknown user",
            )
        return Principal(user_id=user_id, roles=record.roles)

    def is_project_member(self, user_id: UUID, project_id: UUID) -> bool:
        record = self._users.get(user_id)
        if record is None:
            return False
        return project_id in record.projects or bool(record.roles & self.global_roles)

    def reviewers_for_role(self, project_id: UUID, role: str) -> Sequence[UUID]:
        required = self.role_levels.get(role)
        ranked: list[tuple[int, UUID]] = []
        for user_id, record in self._users.items():
            if not self.is_project_member(user_id, project_id):
                continue
            if required is None:
                # Unranked roles match exactly.
                if role in record.roles:
                    ranked.append((0, user_id))
                continue
            level = max((self.role_levels.get(r, 0) for r in record.roles), default=0)
            if level >= required:
                ranked.append((level, user_id))
        # Closest rank first; sort is stable so ties keep registration order.
        ranked.sort(key=lambda item: item[0])
        return tuple(user_id for _, user_id in ranked)
