"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads the reviewer-chain YAML and parses it into typed
``approval_config.schema`` dataclasses.  This is internal tooling; the
single public entry point for runtime config is
``approval_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; no silent defaults for malformed fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from approval_config.schema import (
    ApprovalConfigurationSet,
    ChainStepDef,
    ProjectApprovalConfig,
)

_OVERRIDABLE_KEYS = frozenset({
    "approval_chain", "required_weight", "auto_start", "admin_roles",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    # Floats go through str() so 0.1 stays 0.1.
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field_name}: not a number: {value!r}") from exc


def parse_chain_step(data: dict[str, Any], index: int) -> ChainStepDef:
    """Parse one ``approval_chain`` entry."""
    if not isinstance(data, dict):
        raise ValueError(f"approval_chain[{index}] must be a mapping, got {data!r}")
    unknown = set(data) - {"role", "reviewer_id", "can_skip", "weight", "due_in_days"}
    if unknown:
        raise ValueError(f"approval_chain[{index}]: unknown keys {sorted(unknown)}")

    role = data.get("role")
    reviewer_id = data.get("reviewer_id")
    if (role is None) == (reviewer_id is None):
        raise ValueError(
            f"approval_chain[{index}]: exactly one of 'role' or 'reviewer_id' is required"
        )

    due = data.get("due_in_days")
    return ChainStepDef(
        role=role,
        reviewer_id=UUID(str(reviewer_id)) if reviewer_id is not None else None,
        can_skip=bool(data.get("can_skip", False)),
        weight=parse_decimal(data.get("weight", 1), f"approval_chain[{index}].weight"),
        due_in_days=int(due) if due is not None else None,
    )


def parse_configuration_set(data: dict[str, Any]) -> ApprovalConfigurationSet:
    """Parse a whole configuration file."""
    if "defaults" not in data:
        raise KeyError("Configuration is missing the 'defaults' section")
    projects = data.get("projects") or {}
    for key, override in projects.items():
        unknown = set(override or {}) - _OVERRIDABLE_KEYS
        if unknown:
            raise ValueError(f"projects[{key}]: unknown keys {sorted(unknown)}")
    return ApprovalConfigurationSet(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        defaults=dict(data["defaults"]),
        projects={str(k).lower(): dict(v or {}) for k, v in projects.items()},
        checksum=compute_checksum(data),
    )


def resolve_project_config(
    config_set: ApprovalConfigurationSet,
    project_id: UUID | None,
) -> ProjectApprovalConfig:
    """Merge the project's overrides (if any) onto the defaults.

    Overrides replace whole keys; an overriding ``approval_chain`` replaces
    the default chain rather than extending it.
    """
    merged = dict(config_set.defaults)
    if project_id is not None:
        merged.update(config_set.projects.get(str(project_id).lower(), {}))

    chain = tuple(
        parse_chain_step(step, i) for i, step in enumerate(merged.get("approval_chain") or [])
    )
    required = merged.get("required_weight")
    return ProjectApprovalConfig(
        project_id=project_id,
        approval_chain=chain,
        required_weight=(
            parse_decimal(required, "required_weight") if required is not None else None
        ),
        auto_start=bool(merged.get("auto_start", False)),
        admin_roles=frozenset(merged.get("admin_roles") or ()),
        config_id=config_set.config_id,
        config_version=config_set.version,
        checksum=config_set.checksum,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
