"""
Tests for the reviewer workload projection (``approval_engines.workload``).
"""

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

from approval_engines.workload import compute_reviewer_workload
from approval_kernel.domain.workflow import StepAction, WorkflowStatus


class TestReviewerWorkload:
    def test_pending_attributed_to_effective_reviewer(self, workflow_factory, clock):
        wf, reviewers = workflow_factory(chain_size=2)
        delegate = uuid4()
        wf = replace(wf, steps=(replace(wf.steps[0], delegated_to=delegate),) + wf.steps[1:])
        result = compute_reviewer_workload(workflows=[wf], as_of=clock.now(), reviewer_id=delegate)
        assert len(result) == 1
        assert result[0].pending_count == 1
        assert result[0].items[0].is_current

        original = compute_reviewer_workload(
            workflows=[wf], as_of=clock.now(), reviewer_id=reviewers[0],
        )
        assert original[0].pending_count == 0

    def test_non_current_steps_count_as_pending(self, workflow_factory, clock):
        wf, reviewers = workflow_factory(chain_size=2)
        result = compute_reviewer_workload(workflows=[wf], as_of=clock.now(), reviewer_id=reviewers[1])
        assert result[0].pending_count == 1
        assert not result[0].items[0].is_current

    def test_overdue_and_days_pending(self, workflow_factory, clock):
        wf, reviewers = workflow_factory(chain_size=1)
        as_of = clock.now() + timedelta(days=5)
        wf = replace(wf, steps=(replace(wf.steps[0], due_date=clock.now() + timedelta(days=2)),))
        (load,) = compute_reviewer_workload(workflows=[wf], as_of=as_of, reviewer_id=reviewers[0])
        assert load.overdue_count == 1
        assert load.items[0].days_pending == 5

    def test_completed_attributed_to_completer(self, workflow_factory, clock):
        wf, reviewers = workflow_factory(chain_size=2)
        done = replace(
            wf.steps[0],
            is_completed=True,
            action=StepAction.APPROVE,
            completed_by=reviewers[0],
            completed_at=wf.steps[0].created_at + timedelta(hours=2),
        )
        wf = replace(wf, steps=(done, wf.steps[1]), status=WorkflowStatus.IN_REVIEW)
        (load,) = compute_reviewer_workload(workflows=[wf], as_of=clock.now(), reviewer_id=reviewers[0])
        assert load.completed_count == 1
        assert load.pending_count == 0
        assert load.average_review_seconds == 7200

    def test_terminal_workflows_have_no_pending_work(self, workflow_factory, clock):
        wf, reviewers = workflow_factory(chain_size=2)
        wf = replace(wf, status=WorkflowStatus.CANCELLED)
        (load,) = compute_reviewer_workload(workflows=[wf], as_of=clock.now(), reviewer_id=reviewers[0])
        assert load.pending_count == 0
        assert load.average_review_seconds is None

    def test_all_reviewers_sorted(self, workflow_factory, clock):
        wf, reviewers = workflow_factory(chain_size=3)
        result = compute_reviewer_workload(workflows=[wf], as_of=clock.now())
        assert [r.reviewer_id for r in result] == sorted(reviewers, key=str)
