"""
Tests for weighted approval (``approval_engines.weighted_approval``).

Invariants tested:
- Skipped steps count toward neither approved nor total weight.
- No threshold means unanimous: required equals total.
- Pure and idempotent.
"""

from dataclasses import replace
from decimal import Decimal

from approval_engines.weighted_approval import compute_weighted_approval
from approval_kernel.domain.workflow import StepAction


def complete(step, action):
    return replace(step, is_completed=True, action=action)


class TestWeightedApproval:
    def test_nothing_approved(self, workflow_factory):
        wf, _ = workflow_factory(chain_size=3, weights=[1, 2, 1])
        result = compute_weighted_approval(wf.steps)
        assert result.approved_weight == Decimal("0")
        assert result.total_weight == Decimal("4")
        assert result.required_weight == Decimal("4")
        assert not result.is_approved

    def test_threshold_reached(self, workflow_factory):
        wf, _ = workflow_factory(chain_size=3, weights=[1, 2, 1])
        steps = (complete(wf.steps[0], StepAction.APPROVE), complete(wf.steps[1], StepAction.APPROVE), wf.steps[2])
        result = compute_weighted_approval(steps, Decimal("3"))
        assert result.approved_weight == Decimal("3")
        assert result.is_approved

    def test_skipped_step_excluded_from_total(self, workflow_factory):
        wf, _ = workflow_factory(chain_size=3, weights=[1, 2, 1])
        steps = (complete(wf.steps[0], StepAction.SKIP),) + wf.steps[1:]
        result = compute_weighted_approval(steps)
        assert result.total_weight == Decimal("3")
        assert result.approved_weight == Decimal("0")

    def test_rejected_step_counts_toward_total_only(self, workflow_factory):
        wf, _ = workflow_factory(chain_size=2)
        steps = (complete(wf.steps[0], StepAction.REJECT), wf.steps[1])
        result = compute_weighted_approval(steps)
        assert result.total_weight == Decimal("2")
        assert result.approved_weight == Decimal("0")

    def test_unanimous_when_all_approve(self, workflow_factory):
        wf, _ = workflow_factory(chain_size=2, weights=["0.5", "1.5"])
        steps = tuple(complete(s, StepAction.APPROVE) for s in wf.steps)
        assert compute_weighted_approval(steps).is_approved

    def test_idempotent(self, workflow_factory):
        wf, _ = workflow_factory(chain_size=3, weights=[1, 2, 1])
        assert compute_weighted_approval(wf.steps, Decimal("2")) == compute_weighted_approval(
            wf.steps, Decimal("2"),
        )
