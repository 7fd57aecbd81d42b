"""
Approval configuration schema.

Frozen dataclasses for the human-authored reviewer-chain configuration.
YAML files are parsed into these types by the loader and validated before
anything else sees them.

Key distinction:
  ApprovalConfigurationSet = source artifact (defaults + per-project overrides)
  ProjectApprovalConfig    = runtime artifact for one project (overrides merged)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID


@dataclass(frozen=True)
class ChainStepDef:
    """One entry of a reviewer chain.

    Exactly one of ``role`` and ``reviewer_id`` is set.  A role is resolved
    to a concrete reviewer through the identity gateway at submit time.
    """

    role: str | None = None
    reviewer_id: UUID | None = None
    can_skip: bool = False
    weight: Decimal = Decimal("1")
    due_in_days: int | None = None


@dataclass(frozen=True)
class ProjectApprovalConfig:
    """Effective configuration for one project."""

    project_id: UUID | None
    approval_chain: tuple[ChainStepDef, ...]
    required_weight: Decimal | None = None
    auto_start: bool = False
    admin_roles: frozenset[str] = frozenset()
    config_id: str = "default"
    config_version: int = 1
    checksum: str = ""

    @property
    def total_weight(self) -> Decimal:
        return sum((s.weight for s in self.approval_chain), Decimal("0"))


@dataclass(frozen=True)
class ApprovalConfigurationSet:
    """A parsed configuration file: defaults plus per-project overrides."""

    config_id: str
    version: int
    defaults: dict = field(default_factory=dict)
    projects: dict[str, dict] = field(default_factory=dict)
    checksum: str = ""
