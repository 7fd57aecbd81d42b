"""
Effect records (``approval_kernel.domain.effects``).

Responsibility
--------------
Encode workflow snapshots, and the difference between two snapshots, as
JSON-safe dictionaries stored on status history rows; decode and apply
them again.

Architecture position
---------------------
**Kernel domain layer** -- pure functions.  ZERO I/O.  Used by the
workflow store when writing history and by history replay when reading it.

Invariants enforced
-------------------
* The SUBMIT row carries a full snapshot; every later row carries only
  the fields its transition changed.
* Transitions never add or remove steps.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from approval_kernel.domain.workflow import (
    ApprovalStep,
    ApprovalWorkflow,
    StepAction,
    WorkflowStatus,
)

# Field name -> codec name.  ``id`` is the step key and is never diffed.
_STEP_FIELDS: dict[str, str] = {
    "step_order": "int",
    "reviewer_id": "uuid",
    "created_at": "datetime",
    "delegated_to": "uuid",
    "is_completed": "bool",
    "action": "action",
    "comment": "str",
    "reasoning": "str",
    "completed_at": "datetime",
    "completed_by": "uuid",
    "due_date": "datetime",
    "started_at": "datetime",
    "can_skip": "bool",
    "escalation_level": "int",
    "approval_weight": "decimal",
    "required_role": "str",
}

_WORKFLOW_FIELDS: dict[str, str] = {
    "updated_at": "datetime",
    "required_weight": "decimal",
    "file_ids": "uuid_list",
}


def _encode(value: Any, codec: str) -> Any:
    if value is None:
        return None
    if codec == "uuid":
        return str(value)
    if codec == "uuid_list":
        return [str(v) for v in value]
    if codec == "datetime":
        return value.isoformat()
    if codec == "decimal":
        return str(value)
    if codec in ("action", "status"):
        return value.value
    return value


def _decode(value: Any, codec: str) -> Any:
    if value is None:
        return None
    if codec == "uuid":
        return UUID(value)
    if codec == "uuid_list":
        return tuple(UUID(v) for v in value)
    if codec == "datetime":
        return datetime.fromisoformat(value)
    if codec == "decimal":
        return Decimal(value)
    if codec == "action":
        return StepAction(value)
    if codec == "status":
        return WorkflowStatus(value)
    return value


# =========================================================================
# Snapshots
# =========================================================================


def snapshot_workflow(workflow: ApprovalWorkflow) -> dict[str, Any]:
    """Full JSON-safe snapshot, stored on the SUBMIT history row."""
    data: dict[str, Any] = {
        "id": str(workflow.id),
        "report_id": str(workflow.report_id),
        "project_id": str(workflow.project_id),
        "status": workflow.status.value,
        "created_by": str(workflow.created_by),
        "created_at": workflow.created_at.isoformat(),
    }
    for name, codec in _WORKFLOW_FIELDS.items():
        data[name] = _encode(getattr(workflow, name), codec)
    data["steps"] = [
        {"id": str(step.id)} | {
            name: _encode(getattr(step, name), codec)
            for name, codec in _STEP_FIELDS.items()
        }
        for step in workflow.steps
    ]
    return data


def workflow_from_snapshot(data: dict[str, Any]) -> ApprovalWorkflow:
    steps = tuple(
        ApprovalStep(
            id=UUID(raw["id"]),
            **{name: _decode(raw.get(name), codec) for name, codec in _STEP_FIELDS.items()},
        )
        for raw in data["steps"]
    )
    return ApprovalWorkflow(
        id=UUID(data["id"]),
        report_id=UUID(data["report_id"]),
        project_id=UUID(data["project_id"]),
        status=WorkflowStatus(data["status"]),
        created_by=UUID(data["created_by"]),
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=_decode(data["updated_at"], "datetime"),
        steps=tuple(sorted(steps, key=lambda s: s.step_order)),
        required_weight=_decode(data.get("required_weight"), "decimal"),
        file_ids=_decode(data.get("file_ids"), "uuid_list") or (),
    )


# =========================================================================
# Effect records
# =========================================================================


def diff_workflows(old: ApprovalWorkflow, new: ApprovalWorkflow) -> dict[str, Any]:
    """Effect record for the transition ``old -> new``.

    Shape: ``{"status": ..., "workflow": {field: value},
    "steps": {step_id: {field: value}}}``; keys with no change are omitted.

    Raises:
        ValueError: if the two snapshots do not have the same step ids.
    """
    if {s.id for s in old.steps} != {s.id for s in new.steps}:
        raise ValueError("Transitions may not add or remove steps")

    changes: dict[str, Any] = {}
    if old.status != new.status:
        changes["status"] = new.status.value

    wf_changes = {
        name: _encode(getattr(new, name), codec)
        for name, codec in _WORKFLOW_FIELDS.items()
        if getattr(old, name) != getattr(new, name)
    }
    if wf_changes:
        changes["workflow"] = wf_changes

    old_steps = {s.id: s for s in old.steps}
    step_changes: dict[str, dict[str, Any]] = {}
    for step in new.steps:
        before = old_steps[step.id]
        fields = {
            name: _encode(getattr(step, name), codec)
            for name, codec in _STEP_FIELDS.items()
            if getattr(before, name) != getattr(step, name)
        }
        if fields:
            step_changes[str(step.id)] = fields
    if step_changes:
        changes["steps"] = step_changes
    return changes


def apply_effect(workflow: ApprovalWorkflow, changes: dict[str, Any]) -> ApprovalWorkflow:
    """Apply one effect record to a snapshot."""
    updates: dict[str, Any] = {}
    if "status" in changes:
        updates["status"] = WorkflowStatus(changes["status"])
    for name, raw in changes.get("workflow", {}).items():
        updates[name] = _decode(raw, _WORKFLOW_FIELDS[name])

    step_changes = changes.get("steps", {})
    if step_changes:
        by_id = {str(s.id): s for s in workflow.steps}
        unknown = set(step_changes) - set(by_id)
        if unknown:
            raise ValueError(f"Effect record names unknown steps: {sorted(unknown)}")
        new_steps = []
        for step in workflow.steps:
            fields = step_changes.get(str(step.id))
            if fields:
                step = replace(step, **{
                    name: _decode(raw, _STEP_FIELDS[name]) for name, raw in fields.items()
                })
            new_steps.append(step)
        updates["steps"] = tuple(sorted(new_steps, key=lambda s: s.step_order))

    return replace(workflow, **updates)

