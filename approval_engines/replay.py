"""
approval_engines.replay -- History replay.

Responsibility:
    Fold a workflow's ordered status history back into the workflow it
    describes.  A transition that is not in history did not happen, so the
    fold must reproduce the stored workflow exactly.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - ``replay_history(history)`` equals the stored workflow on every field
      except ``version``, which is a storage counter and not part of the
      recorded state.

Failure modes:
    - ValueError on an empty history, a history that does not start with a
      SUBMIT snapshot, or an effect record that names an unknown step.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace

from approval_engines.tracer import traced_engine
from approval_kernel.domain.effects import apply_effect, workflow_from_snapshot
from approval_kernel.domain.transitions import TransitionKind
from approval_kernel.domain.workflow import ApprovalWorkflow, StatusHistoryEntry


@traced_engine("history_replay", "1.0")
def replay_history(history: Sequence[StatusHistoryEntry]) -> ApprovalWorkflow:
    """Rebuild a workflow from its status history, ordered by ``seq``.

    Raises:
        ValueError: if ``history`` is empty or does not start with SUBMIT.
    """
    if not history:
        raise ValueError("Cannot replay an empty history")
    first, rest = history[0], history[1:]
    if first.transition != TransitionKind.SUBMIT.value or "snapshot" not in first.changes:
        raise ValueError("History must start with a SUBMIT snapshot")

    workflow = workflow_from_snapshot(first.changes["snapshot"])
    for entry in rest:
        workflow = apply_effect(workflow, entry.changes)
    return workflow


def replay_equivalent(a: ApprovalWorkflow, b: ApprovalWorkflow) -> bool:
    """Equality that ignores the storage ``version`` counter."""
    return replace(a, version=0) == replace(b, version=0)
