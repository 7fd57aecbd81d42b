"""
Module: approval_engines
Responsibility:
    Package entrypoint for the pure calculation engines of the approval
    workflow: transition planning and authorization, weighted approval,
    reviewer workload, comment threading and history replay.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import approval_kernel/domain/ types and kernel exceptions.
    MUST NOT import approval_services.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Timestamps are passed
      in as explicit parameters by the calling service.
    - Decimal-only arithmetic for weights.
    - Determinism: identical inputs always produce identical outputs.
"""

from approval_engines.comments import build_thread, thread_root
from approval_engines.replay import replay_equivalent, replay_history
from approval_engines.transitions import (
    can_see_internal_comments,
    plan_submission,
    plan_transition,
    side_channel_notifications,
    submission_notifications,
)
from approval_engines.weighted_approval import compute_weighted_approval
from approval_engines.workload import compute_reviewer_workload

__all__ = [
    "build_thread",
    "can_see_internal_comments",
    "compute_reviewer_workload",
    "compute_weighted_approval",
    "plan_submission",
    "plan_transition",
    "replay_equivalent",
    "replay_history",
    "side_channel_notifications",
    "submission_notifications",
    "thread_root",
]
