"""
Bulk approve / reject / reassign.

Each workflow runs in its own transaction; one failure never affects the
others.
"""

from uuid import uuid4

import pytest

from approval_kernel.domain.workflow import StepAction, WorkflowStatus
from approval_kernel.exceptions import AlreadyCompletedError, ConfigurationError
from approval_services.report_workflow_service import ReportWorkflowService


class TestBulkApprove:
    def test_mixed_batch(self, service, submit, actors):
        mine = [submit(), submit()]
        not_mine = submit()
        service.review(actors.ctx(actors.reviewers[0]), not_mine.id, StepAction.APPROVE)
        missing = uuid4()

        result = service.bulk_approve(
            actors.ctx(actors.reviewers[0]),
            [mine[0].id, not_mine.id, missing, mine[1].id],
            comment="batch ok",
        )
        assert result.success == (mine[0].id, mine[1].id)
        assert result.failed == (not_mine.id, missing)
        assert [e.code for e in result.errors] == ["UNAUTHORIZED", "WORKFLOW_NOT_FOUND"]

        pending = service.get_pending_reviews(actors.ctx(actors.reviewers[1]))
        assert {wf.id for wf in pending} == {mine[0].id, mine[1].id, not_mine.id}

    def test_pinned_retry_is_already_completed(self, make_service, submit, actors):
        service = make_service(chain_size=2)
        wf = submit(svc=service)
        first_step = wf.steps[0].id
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        # A retry pinned to the step it saw must not approve step 2.
        with pytest.raises(AlreadyCompletedError):
            service.review(
                actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE, step_id=first_step,
            )


class TestBulkReject:
    def test_rejects_each(self, service, submit, actors):
        workflows = [submit(), submit()]
        result = service.bulk_reject(
            actors.ctx(actors.reviewers[0]), [w.id for w in workflows], "incomplete",
        )
        assert result.failed == ()
        for wf in workflows:
            detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
            assert detail.workflow.status == WorkflowStatus.REJECTED
            assert detail.workflow.steps[0].comment == "incomplete"


class TestBulkReassign:
    def test_reassigns_current_step(self, service, submit, actors):
        workflows = [submit(), submit()]
        target = actors.reviewers[3]
        result = service.bulk_reassign(
            actors.ctx(actors.reviewers[0]), [w.id for w in workflows], target, "vacation",
        )
        assert result.success == tuple(w.id for w in workflows)
        pending = service.get_pending_reviews(actors.ctx(target))
        assert {w.id for w in pending} == {w.id for w in workflows}

    def test_finished_workflow_reported(self, make_service, submit, actors):
        service = make_service(chain_size=1)
        wf = submit(svc=service)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        result = service.bulk_reassign(
            actors.ctx(actors.reviewers[0]), [wf.id], actors.reviewers[3], "vacation",
        )
        assert result.failed == (wf.id,)
        assert result.errors[0].code == "INVALID_TRANSITION"


class TestBrokenConfiguration:
    @pytest.fixture
    def configured(self, session_factory, gateway, clock, write_config, actors, project_id):
        config_dir = write_config(
            approval_chain=[{"reviewer_id": str(r)} for r in actors.reviewers[:2]],
        )
        service = ReportWorkflowService(
            identity=gateway,
            session_factory=session_factory,
            clock=clock,
            config_dir=config_dir,
        )
        workflows = [
            service.submit_report(actors.ctx(actors.creator), uuid4(), project_id)
            for _ in range(3)
        ]
        return service, workflows, config_dir / "default.yaml"

    def test_bulk_records_error_per_workflow(self, configured, actors, captured_logs):
        service, workflows, config_file = configured
        good = config_file.read_text()
        config_file.write_text("defaults: [unclosed\n")

        result = service.bulk_approve(
            actors.ctx(actors.reviewers[0]), [w.id for w in workflows],
        )
        assert result.success == ()
        assert result.failed == tuple(w.id for w in workflows)
        assert {e.code for e in result.errors} == {"CONFIGURATION_ERROR"}
        assert any(
            r["message"] == "approval_config_unavailable" for r in captured_logs()
        )

        config_file.write_text(good)
        for wf in workflows:
            detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
            assert not detail.workflow.steps[0].is_completed

    def test_missing_file_is_typed(self, configured, actors):
        service, workflows, config_file = configured
        config_file.unlink()
        with pytest.raises(ConfigurationError) as exc_info:
            service.review(actors.ctx(actors.reviewers[0]), workflows[0].id, StepAction.APPROVE)
        assert exc_info.value.code == "CONFIGURATION_ERROR"
