"""
Racing transitions on one workflow.

Invariants tested:
- Two transactions acting on the same workflow version: one commits, the
  other fails with AlreadyCompletedError and writes nothing.
- A duplicated review never approves the following step.

The interleaving is forced deterministically: the losing transaction's
policy lookup runs after its snapshot is loaded, and the winning call is
made from inside that lookup.
"""

import os
import threading
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from approval_config import get_active_config
from approval_config.bridges import build_workflow_policy
from approval_kernel.domain.transitions import Cancel, Review
from approval_kernel.domain.workflow import StepAction, WorkflowStatus
from approval_kernel.exceptions import AlreadyCompletedError
from approval_kernel.models.status_history import StatusHistoryModel
from approval_services.report_workflow_service import ReportWorkflowService
from approval_services.transition_engine import TransitionEngine

_ON_POSTGRES = os.environ.get("DATABASE_URL", "").startswith("postgresql")


@pytest.fixture
def race(session_factory, gateway, hook, clock, write_config, actors, project_id):
    """A service plus a way to run a second, interleaved transition."""
    config_dir = write_config(
        approval_chain=[{"reviewer_id": str(r)} for r in actors.reviewers[:3]],
    )
    service = ReportWorkflowService(
        identity=gateway,
        session_factory=session_factory,
        notification_hook=hook,
        clock=clock,
        config_dir=config_dir,
    )

    def run_interleaved(session, principal_ctx, request, winner):
        """Apply ``request`` in ``session``, running ``winner`` mid-transition."""
        fired = []

        def policy_for(pid):
            if not fired:
                fired.append(True)
                winner()
            return build_workflow_policy(get_active_config(pid, config_dir))

        engine = TransitionEngine(
            session,
            policy_for=policy_for,
            is_project_member=gateway.is_project_member,
            clock=clock,
        )
        return engine.apply(gateway.resolve_principal(principal_ctx), request)

    wf = service.submit_report(actors.ctx(actors.creator), uuid4(), project_id)
    return service, wf, run_interleaved


def _history_count(session, workflow_id):
    return session.execute(
        select(func.count()).select_from(StatusHistoryModel)
        .where(StatusHistoryModel.workflow_id == workflow_id)
    ).scalar_one()


@pytest.mark.skipif(_ON_POSTGRES, reason="row locks serialize the interleaving on PostgreSQL")
class TestInterleavedReview:
    def test_duplicate_review_loses(self, race, actors, session, session_factory):
        service, wf, run_interleaved = race
        reviewer = actors.ctx(actors.reviewers[0])
        step_one = wf.steps[0].id

        with pytest.raises(AlreadyCompletedError):
            run_interleaved(
                session,
                reviewer,
                Review(workflow_id=wf.id, action=StepAction.APPROVE, step_id=step_one),
                winner=lambda: service.review(
                    reviewer, wf.id, StepAction.APPROVE, step_id=step_one,
                ),
            )
        session.rollback()

        detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
        assert [s.is_completed for s in detail.workflow.steps] == [True, False, False]
        assert detail.workflow.version == 2
        with session_factory() as check:
            assert _history_count(check, wf.id) == 2

    def test_cancel_racing_approve(self, race, actors, session):
        service, wf, run_interleaved = race

        with pytest.raises(AlreadyCompletedError):
            run_interleaved(
                session,
                actors.ctx(actors.creator),
                Cancel(workflow_id=wf.id, reason="withdrawn"),
                winner=lambda: service.review(
                    actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE,
                ),
            )
        session.rollback()

        detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
        assert detail.workflow.status == WorkflowStatus.IN_REVIEW
        assert [h.transition for h in detail.history] == ["SUBMIT", "REVIEW"]

    def test_loser_may_retry_on_fresh_state(self, race, actors, session):
        service, wf, run_interleaved = race

        with pytest.raises(AlreadyCompletedError):
            run_interleaved(
                session,
                actors.ctx(actors.creator),
                Cancel(workflow_id=wf.id, reason="withdrawn"),
                winner=lambda: service.review(
                    actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE,
                ),
            )
        session.rollback()

        cancelled = service.cancel_workflow(actors.ctx(actors.creator), wf.id, "withdrawn")
        assert cancelled.status == WorkflowStatus.CANCELLED


class TestPinnedRetry:
    def test_retry_after_commit_is_already_completed(self, race, actors):
        service, wf, _ = race
        reviewer = actors.ctx(actors.reviewers[0])
        service.review(reviewer, wf.id, StepAction.APPROVE, step_id=wf.steps[0].id)

        with pytest.raises(AlreadyCompletedError):
            service.review(reviewer, wf.id, StepAction.APPROVE, step_id=wf.steps[0].id)


@pytest.mark.postgres
@pytest.mark.skipif(not _ON_POSTGRES, reason="needs DATABASE_URL pointing at PostgreSQL")
class TestThreadedReview:
    def test_parallel_duplicate_reviews(self, race, actors):
        service, wf, _ = race
        reviewer = actors.ctx(actors.reviewers[0])
        barrier = threading.Barrier(4)
        outcomes = []
        lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                service.review(reviewer, wf.id, StepAction.APPROVE, step_id=wf.steps[0].id)
                result = "ok"
            except AlreadyCompletedError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "conflict", "conflict", "ok"]
        detail = service.get_report_by_id(actors.ctx(actors.creator), wf.id)
        assert [s.is_completed for s in detail.workflow.steps] == [True, False, False]
