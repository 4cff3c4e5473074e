"""Tests for notification fan-out, the outbox and the dispatcher."""
from uuid import uuid4

import pytest
from fastapi import BackgroundTasks

from pm_core import notifications
from pm_core.models import Notification, NotificationType
from pm_core.notifications import (
    NotificationDispatcher,
    NotificationOutbox,
    collect_recipients,
    fan_out,
    task_update_events,
)
from pm_core.permissions import AccessContext
from pm_core.schemas import NotificationIntent


@pytest.fixture
def setup(db_session, admin, manager, other_manager, member, other_member, client_user, make_project, make_task):
    """Project owned by ``manager`` and managed by ``other_manager`` with two assigned tasks."""
    project = make_project(manager, manager_id=other_manager.id)
    task = make_task(project, manager, title="Fix login", assigned_to=member.id)
    make_task(project, manager, title="Write docs", assigned_to=other_member.id)
    return project, task


class TestRecipients:
    """Test recipient ordering and deduplication."""

    def test_order(self, db_session, admin, manager, other_manager, member, other_member, client_user, setup):
        """Admins, manager, task creator/owner, assignee, then other members."""
        project, task = setup
        recipients = collect_recipients(db_session, client_user.id, project=project, task=task)
        assert recipients == [admin.id, other_manager.id, manager.id, member.id, other_member.id]

    def test_actor_excluded(self, db_session, admin, manager, member, setup):
        project, task = setup
        recipients = collect_recipients(db_session, member.id, task=task)
        assert member.id not in recipients
        assert recipients[0] == admin.id

    def test_no_duplicates(self, db_session, admin, manager, make_project, make_task):
        """A user holding several roles on the project is notified once."""
        project = make_project(manager, manager_id=manager.id)
        task = make_task(project, manager, assigned_to=manager.id)
        recipients = collect_recipients(db_session, admin.id, task=task)
        assert recipients == [manager.id]

    def test_inactive_admins_skipped(self, db_session, admin, manager, setup):
        project, _ = setup
        admin.is_active = False
        db_session.commit()
        assert admin.id not in collect_recipients(db_session, manager.id, project=project)


class TestFanOut:
    """Test intent generation."""

    def test_comment_never_notifies_author(self, db_session, member, setup):
        project, task = setup
        ctx = AccessContext.from_user(member)
        intents = fan_out(db_session, NotificationType.COMMENT, ctx, task.title, task=task)

        assert intents
        assert all(i.user_id != member.id for i in intents)
        assert all(i.message == "Tom Member commented on task: Fix login" for i in intents)
        assert all(i.task_id == task.id and i.project_id == project.id for i in intents)

    def test_assignment_messages(self, db_session, manager, member, setup):
        """The assignee gets a personal message, everyone else the general one."""
        _, task = setup
        ctx = AccessContext.from_user(manager)
        intents = {i.user_id: i.message for i in fan_out(db_session, NotificationType.TASK_ASSIGNED, ctx, task.title, task=task)}

        assert intents[member.id] == "Paula Manager assigned you to task: Fix login"
        others = [msg for uid, msg in intents.items() if uid != member.id]
        assert others
        assert all(msg == "Paula Manager assigned task to Tom Member: Fix login" for msg in others)

    def test_status_message(self, db_session, member, setup):
        _, task = setup
        ctx = AccessContext.from_user(member)
        intents = fan_out(db_session, NotificationType.TASK_STATUS, ctx, task.title, task=task, status="review")
        assert intents[0].message == "Tom Member updated task status to review: Fix login"

    def test_deleted_task_is_not_referenced(self, db_session, manager, setup):
        _, task = setup
        ctx = AccessContext.from_user(manager)
        intents = fan_out(db_session, NotificationType.TASK_DELETED, ctx, task.title, task=task)
        assert intents
        assert all(i.task_id is None for i in intents)

    def test_nobody_to_notify(self, db_session, admin):
        """An admin acting on a resource with no other participants produces nothing."""
        ctx = AccessContext.from_user(admin)
        assert fan_out(db_session, NotificationType.FILE, ctx, "notes.txt") == []


class TestTaskUpdateEvents:
    """Test mapping task changes to events."""

    def test_status_and_assignment(self):
        changes = [("status", "todo", "review"), ("assigned_to", None, uuid4())]
        assert task_update_events(changes) == [NotificationType.TASK_STATUS, NotificationType.TASK_ASSIGNED]

    def test_other_fields(self):
        changes = [("title", "a", "b"), ("due_date", None, "2024-05-01")]
        assert task_update_events(changes) == [NotificationType.TASK_UPDATED]

    def test_unassignment_is_a_plain_update(self):
        assert task_update_events([("assigned_to", uuid4(), None)]) == [NotificationType.TASK_UPDATED]

    def test_no_changes(self):
        assert task_update_events([]) == []


class _BrokenSession:
    """Session stand-in whose commits always fail."""

    def __init__(self):
        self.rollbacks = 0

    def add_all(self, items):
        list(items)

    def commit(self):
        raise RuntimeError("database is unavailable")

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        pass


class TestDispatcher:
    """Test persisting intents."""

    def test_persists_intents(self, db_session, dispatcher, member):
        intents = [NotificationIntent(type=NotificationType.COMMENT, message="hi", user_id=member.id)]
        assert dispatcher.dispatch(intents) == 1

        stored = db_session.query(Notification).filter(Notification.user_id == member.id).all()
        assert len(stored) == 1
        assert stored[0].read is False

    def test_retries_then_drops(self):
        """Persist failures are retried and then swallowed."""
        session = _BrokenSession()
        dispatcher = NotificationDispatcher(lambda: session, max_attempts=3)
        intents = [NotificationIntent(type=NotificationType.FILE, message="x", user_id=uuid4())]

        assert dispatcher.dispatch(intents) == 0
        assert session.rollbacks == 3

    def test_empty_batch(self, dispatcher):
        assert dispatcher.dispatch([]) == 0


class TestOutbox:
    """Test the request-scoped outbox."""

    def test_queues_background_dispatch(self, db_session, dispatcher, member, setup):
        _, task = setup
        background = BackgroundTasks()
        outbox = NotificationOutbox(dispatcher, background)

        queued = outbox.emit(db_session, NotificationType.COMMENT, AccessContext.from_user(member), task.title, task=task)

        assert queued > 0
        assert len(background.tasks) == 1
        # Nothing is written until the background task runs
        assert db_session.query(Notification).count() == 0

    def test_fan_out_failure_is_swallowed(self, db_session, dispatcher, member, setup, monkeypatch):
        _, task = setup

        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(notifications, "fan_out", explode)
        background = BackgroundTasks()
        outbox = NotificationOutbox(dispatcher, background)

        assert outbox.emit(db_session, NotificationType.COMMENT, AccessContext.from_user(member), task.title, task=task) == 0
        assert background.tasks == []
