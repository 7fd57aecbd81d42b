"""
Notification outbox delivery.

Invariants tested:
- Notifications go out only after commit, addressed to affected
  principals, never to the actor.
- A failing hook never fails or rolls back the transition; the outbox
  row keeps the failure for redelivery.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from approval_kernel.domain.workflow import StepAction, WorkflowStatus
from approval_kernel.exceptions import UnauthorizedError
from approval_kernel.models.outbox import NotificationOutboxModel
from approval_services.notifications import OutboxDispatcher, RecordingNotificationHook
from approval_services.report_workflow_service import ReportWorkflowService


class ExplodingHook:
    def __init__(self):
        self.calls = 0

    def notify(self, notification):
        self.calls += 1
        raise ConnectionError("mail relay down")


class TestDelivery:
    def test_submit_notifies_first_reviewer(self, service, submit, actors, hook):
        submit()
        assert hook.events() == ["review_requested"]
        assert hook.delivered[0].recipients == (actors.reviewers[0],)

    def test_actor_never_notified(self, service, submit, actors, hook):
        wf = submit()
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        for notification in hook.delivered:
            if notification.event_type == "review_requested" and notification.payload["step_order"] == 2:
                assert actors.reviewers[0] not in notification.recipients
                assert notification.recipients == (actors.reviewers[1],)

    def test_final_approval_notifies_creator(self, make_service, submit, actors, hook):
        service = make_service(chain_size=1)
        wf = submit(svc=service)
        service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        approved = [n for n in hook.delivered if n.event_type == "workflow_approved"]
        assert approved[0].recipients == (actors.creator,)

    def test_rows_marked_delivered(self, service, submit, session):
        submit()
        rows = session.execute(select(NotificationOutboxModel)).scalars().all()
        assert rows and all(r.delivered_at is not None for r in rows)
        assert all(r.attempts == 1 for r in rows)

    def test_failed_transition_sends_nothing(self, service, submit, actors, hook):
        wf = submit()
        before = len(hook.delivered)
        with pytest.raises(UnauthorizedError):
            service.cancel_workflow(actors.ctx(actors.reviewers[0]), wf.id, "nope")
        assert len(hook.delivered) == before


class TestFailingHook:
    def test_transition_survives_hook_failure(
        self, session_factory, gateway, clock, write_config, actors, project_id, captured_logs, session,
    ):
        hook = ExplodingHook()
        service = ReportWorkflowService(
            identity=gateway,
            session_factory=session_factory,
            notification_hook=hook,
            clock=clock,
            config_dir=write_config(
                approval_chain=[{"reviewer_id": str(r)} for r in actors.reviewers[:2]],
            ),
        )
        wf = service.submit_report(actors.ctx(actors.creator), uuid4(), project_id)
        wf = service.review(actors.ctx(actors.reviewers[0]), wf.id, StepAction.APPROVE)
        assert wf.status == WorkflowStatus.IN_REVIEW
        assert hook.calls >= 2

        failures = [r for r in captured_logs() if r["message"] == "notification_delivery_failed"]
        assert failures
        assert failures[0]["level"] == "WARNING"

        rows = session.execute(select(NotificationOutboxModel)).scalars().all()
        assert all(r.delivered_at is None for r in rows)
        assert all("mail relay down" in r.last_error for r in rows)

    def test_redelivery_after_recovery(
        self, session_factory, gateway, clock, write_config, actors, project_id, session,
    ):
        service = ReportWorkflowService(
            identity=gateway,
            session_factory=session_factory,
            notification_hook=ExplodingHook(),
            clock=clock,
            config_dir=write_config(approval_chain=[{"reviewer_id": str(actors.reviewers[0])}]),
        )
        service.submit_report(actors.ctx(actors.creator), uuid4(), project_id)

        recovered = RecordingNotificationHook()
        delivered = OutboxDispatcher(session_factory, recovered, clock).dispatch()
        assert delivered == 1
        assert recovered.events() == ["review_requested"]
        row = session.execute(select(NotificationOutboxModel)).scalar_one()
        assert row.attempts == 2
        assert row.last_error is None
