"""
End-to-end review scenarios through ``ReportWorkflowService``.

Each scenario runs against a real database: every call is its own
transaction, exactly as a client would drive it.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import StepAction, WorkflowStatus
from approval_kernel.exceptions import (
    AlreadyCompletedError,
    InvalidTransitionError,
    UnauthorizedError,
    ValidationFailedError,
)


class TestScenarioA:
    """3-step unweighted workflow approved step by step."""

    def test_sequential_approvals(self, service, submit, actors, clock):
        wf = submit()
        assert wf.status == WorkflowStatus.PENDING

        for i in range(3):
            clock.advance(60)
            wf = service.review(actors.ctx(actors.reviewers[i]), wf.id, StepAction.APPROVE)

        assert wf.status == WorkflowStatus.APPROVED
        assert all(s.is_completed for s in wf.steps)
        completion_order = [
            s.step_order for s in sorted(wf.steps, key=lambda s: s.completed_at)
        ]
        assert completion_order == [1, 2, 3]
        assert [s.completed_by for s in wf.steps] == actors.reviewers[:3]

    def test_string_actions_parse_strictly(self, service, submit, actors):
        wf = submit()
        wf = service.review(actors.ctx(actors.reviewers[0]), wf.id, "APPROVE")
        assert wf.steps[0].action == StepAction.APPROVE


class TestScenarioB:
    def test_reject_after_approve(self, service, submit, actors):
        wf = submit()
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        wf = service.review(
            actors.ctx(actors.reviewers[1]), wf.id, StepAction.REJECT, note="totals do not add up",
        )
        assert wf.status == WorkflowStatus.REJECTED
        assert wf.steps[1].action == StepAction.REJECT
        assert wf.steps[2].is_completed is False
        assert wf.steps[2].action is None


class TestScenarioC:
    def test_request_changes_then_resubmit(self, service, submit, actors):
        files = [uuid4()]
        wf = submit(file_ids=files)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        wf = service.review(
            actors.ctx(actors.reviewers[1]), wf.id, StepAction.REQUEST_CHANGES,
            note="attach the signed copy",
        )
        assert wf.status == WorkflowStatus.CHANGES_REQUESTED
        assert wf.steps[1].comment == "attach the signed copy"

        new_files = [uuid4(), uuid4()]
        wf = service.resubmit_workflow(actors.ctx(actors.creator), wf.id, file_ids=new_files)
        assert wf.status == WorkflowStatus.PENDING
        assert all(s.is_completed is False for s in wf.steps)
        assert all(s.action is None for s in wf.steps)
        assert list(wf.file_ids) == new_files

    def test_resubmit_keeps_files_when_none_given(self, service, submit, actors):
        files = [uuid4()]
        wf = submit(file_ids=files)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.REJECT)
        wf = service.resubmit_workflow(actors.ctx(actors.creator), wf.id)
        assert list(wf.file_ids) == files

    def test_resubmitted_workflow_can_be_approved(self, service, submit, actors):
        wf = submit()
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.REJECT)
        service.resubmit_workflow(actors.ctx(actors.creator), wf.id)
        for i in range(3):
            wf = service.review(actors.ctx(actors.reviewers[i]), wf.id, StepAction.APPROVE)
        assert wf.status == WorkflowStatus.APPROVED


class TestScenarioD:
    def test_delegated_step(self, service, submit, actors):
        user_a, user_b = actors.reviewers[1], actors.reviewers[3]
        wf = submit()
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)

        wf = service.delegate_review(actors.ctx(user_a), wf.steps[1].id, user_b, "on leave")
        assert wf.steps[1].delegated_to == user_b

        with pytest.raises(UnauthorizedError):
            service.review(actors.ctx(user_a), wf.id, StepAction.APPROVE)

        wf = service.review(actors.ctx(user_b), wf.id, StepAction.APPROVE)
        step = wf.steps[1]
        assert step.is_completed
        assert step.delegated_to == user_b
        assert step.action == StepAction.APPROVE
        assert step.completed_by == user_b


class TestScenarioE:
    def test_weighted_quorum(self, make_service, submit, actors):
        service = make_service(weights=[1, 2, 1], required_weight=3)
        wf = submit(svc=service)

        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        status = service.get_weighted_approval(actors.ctx(actors.creator), wf.id)
        assert status.approved_weight == Decimal("1")
        assert status.required_weight == Decimal("3")
        assert not status.is_approved

        wf = service.review(actors.ctx(actors.reviewers[1]), wf.id, StepAction.APPROVE)
        status = service.get_weighted_approval(actors.ctx(actors.creator), wf.id)
        assert status.approved_weight == Decimal("3")
        assert status.is_approved
        assert wf.status == WorkflowStatus.APPROVED
        assert wf.steps[2].is_completed is False

    def test_weighted_approval_is_idempotent(self, make_service, submit, actors):
        service = make_service(weights=[1, 2, 1], required_weight=3)
        wf = submit(svc=service)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        first = service.get_weighted_approval(actors.ctx(actors.creator), wf.id)
        second = service.get_weighted_approval(actors.ctx(actors.creator), wf.id)
        assert first == second

    def test_skipped_step_ignored_by_quorum(self, make_service, submit, actors):
        service = make_service(weights=[1, 2, 1], can_skip=[True, False, False])
        wf = submit(svc=service)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.SKIP)
        status = service.get_weighted_approval(actors.ctx(actors.creator), wf.id)
        assert status.total_weight == Decimal("3")
        assert status.approved_weight == Decimal("0")

    def test_skip_that_would_miss_quorum_rejected(self, make_service, submit, actors):
        service = make_service(
            weights=[1, 2, 1], can_skip=[False, True, False], required_weight=3,
        )
        wf = submit(svc=service)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)

        with pytest.raises(InvalidTransitionError):
            service.review(actors.ctx(actors.reviewers[1]), wf.id, StepAction.SKIP)

        wf = service.review(actors.ctx(actors.reviewers[1]), wf.id, StepAction.APPROVE)
        status = service.get_weighted_approval(actors.ctx(actors.creator), wf.id)
        assert wf.status == WorkflowStatus.APPROVED
        assert status.is_approved
        assert status.approved_weight == Decimal("3")


class TestRepeatedReview:
    """Same reviewer owning consecutive steps, resending one review."""

    def _covering(self, service, submit, actors):
        wf = submit()
        return service.delegate_review(
            actors.ctx(actors.reviewers[1]), wf.steps[1].id, actors.reviewers[0], "covering",
        )

    def test_resend_with_read_version_is_already_completed(self, service, submit, actors):
        wf = self._covering(service, submit, actors)
        boss = actors.ctx(actors.reviewers[0])
        seen = wf.version

        service.review(boss, wf.id, StepAction.APPROVE, expected_version=seen)
        with pytest.raises(AlreadyCompletedError):
            service.review(boss, wf.id, StepAction.APPROVE, expected_version=seen)

        detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
        assert [s.is_completed for s in detail.workflow.steps] == [True, False, False]

    def test_resend_with_read_step_is_already_completed(self, service, submit, actors):
        wf = self._covering(service, submit, actors)
        boss = actors.ctx(actors.reviewers[0])
        seen = wf.current_step.id

        service.review(boss, wf.id, StepAction.APPROVE, step_id=seen)
        with pytest.raises(AlreadyCompletedError):
            service.review(boss, wf.id, StepAction.APPROVE, step_id=seen)

        detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
        assert [s.is_completed for s in detail.workflow.steps] == [True, False, False]

    def test_unguarded_call_reviews_current_step(self, service, submit, actors):
        wf = self._covering(service, submit, actors)
        boss = actors.ctx(actors.reviewers[0])
        service.review(boss, wf.id, StepAction.APPROVE)
        wf = service.review(boss, wf.id, StepAction.APPROVE)
        assert [s.is_completed for s in wf.steps] == [True, True, False]


class TestOtherTransitions:
    def test_escalate_reassigns_current_step(self, service, submit, actors):
        wf = submit()
        target = actors.reviewers[3]
        wf = service.escalate_review(actors.ctx(actors.creator), wf.id, "no response", target)
        assert wf.status == WorkflowStatus.ESCALATED
        assert wf.steps[0].escalation_level == 1
        assert wf.steps[0].effective_reviewer == target

        wf = service.review(actors.ctx(target), wf.id, StepAction.APPROVE)
        assert wf.status == WorkflowStatus.IN_REVIEW

    def test_escalate_to_current_reviewer_rejected(self, service, submit, actors):
        wf = submit()
        with pytest.raises(ValidationFailedError):
            service.escalate_review(
                actors.ctx(actors.creator), wf.id, "no response", actors.reviewers[0],
            )
        detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
        assert detail.workflow.status == WorkflowStatus.PENDING
        assert detail.workflow.steps[0].escalation_level == 0

    def test_start_review_and_due_date(self, service, submit, actors, clock):
        from datetime import timedelta

        wf = submit()
        wf = service.start_review(actors.ctx(actors.reviewers[0]), wf.steps[0].id)
        assert wf.status == WorkflowStatus.IN_REVIEW
        assert wf.steps[0].started_at == clock.now()

        due = clock.now() + timedelta(days=3)
        wf = service.set_step_due_date(actors.ctx(actors.creator), wf.steps[1].id, due)
        assert wf.steps[1].due_date == due
        assert wf.status == WorkflowStatus.IN_REVIEW

    def test_return_to_step(self, service, submit, actors):
        wf = submit()
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        service.review(actors.ctx(actors.reviewers[1]), wf.id, StepAction.APPROVE)
        wf = service.return_to_step(
            actors.ctx(actors.reviewers[2]), wf.id, wf.steps[1].id, "please re-check page 3",
        )
        assert wf.status == WorkflowStatus.IN_REVIEW
        assert wf.steps[0].is_completed
        assert not wf.steps[1].is_completed
        assert wf.current_step.id == wf.steps[1].id

    def test_cancel(self, service, submit, actors):
        wf = submit()
        wf = service.cancel_workflow(actors.ctx(actors.creator), wf.id, "superseded")
        assert wf.status == WorkflowStatus.CANCELLED

    def test_review_by_report_id(self, service, submit, actors):
        report_id = uuid4()
        submit(report_id=report_id)
        wf = service.review(actors.ctx(actors.reviewers[0]), report_id, StepAction.APPROVE)
        assert wf.report_id == report_id
        assert wf.steps[0].is_completed

    def test_version_increments_per_transition(self, service, submit, actors):
        wf = submit()
        v1 = wf.version
        wf = service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        assert wf.version == v1 + 1
