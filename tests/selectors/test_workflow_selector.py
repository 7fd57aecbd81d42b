"""
WorkflowSelector listing queries.

The selector narrows candidates in SQL and decides "current step" on the
loaded DTO, so delegated and partially reviewed workflows list correctly.
"""

from uuid import uuid4

from approval_kernel.domain.workflow import StepAction, WorkflowStatus
from approval_kernel.selectors.workflow_selector import WorkflowSelector


class TestPendingForReviewer:
    def test_delegate_sees_step_original_reviewer_does_not(
        self, service, submit, actors, session,
    ):
        wf = submit()
        service.delegate_review(
            actors.ctx(actors.reviewers[0]), wf.steps[0].id, actors.reviewers[3], "leave",
        )
        selector = WorkflowSelector(session)
        assert selector.list_pending_for_reviewer(actors.reviewers[0]) == ()
        assert [w.id for w in selector.list_pending_for_reviewer(actors.reviewers[3])] == [wf.id]

    def test_later_step_reviewer_not_pending_yet(self, service, submit, actors, session):
        submit()
        selector = WorkflowSelector(session)
        assert selector.list_pending_for_reviewer(actors.reviewers[2]) == ()

    def test_terminal_workflows_excluded(self, service, submit, actors, session):
        wf = submit()
        service.cancel_workflow(actors.ctx(actors.creator), wf.id, "withdrawn")
        selector = WorkflowSelector(session)
        assert selector.list_pending_for_reviewer(actors.reviewers[0]) == ()

    def test_project_filter(self, service, submit, actors, session, project_id):
        wf = submit()
        selector = WorkflowSelector(session)
        assert selector.list_pending_for_reviewer(actors.reviewers[0], project_id)[0].id == wf.id
        assert selector.list_pending_for_reviewer(actors.reviewers[0], uuid4()) == ()


class TestSubmittedByUser:
    def test_newest_first_and_status_filter(self, service, submit, actors, session, clock):
        older = submit()
        clock.advance(60)
        newer = submit()
        service.review(actors.ctx(actors.reviewers[0]), newer.id, StepAction.REJECT, note="no")

        selector = WorkflowSelector(session)
        assert [w.id for w in selector.list_submitted_by_user(actors.creator)] == [
            newer.id, older.id,
        ]
        rejected = selector.list_submitted_by_user(
            actors.creator, status=WorkflowStatus.REJECTED,
        )
        assert [w.id for w in rejected] == [newer.id]


class TestListForProject:
    def test_involving_filter(self, service, submit, actors, session, project_id, clock):
        first = submit()
        clock.advance(60)
        second = submit(reviewer_ids=[actors.reviewers[3]])

        selector = WorkflowSelector(session)
        assert [w.id for w in selector.list_for_project(project_id)] == [first.id, second.id]
        assert [w.id for w in selector.list_for_project(project_id, involving=actors.reviewers[3])] == [
            second.id,
        ]
        assert [w.id for w in selector.list_for_project(project_id, involving=actors.reviewers[0])] == [
            first.id,
        ]
