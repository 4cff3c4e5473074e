"""Notification fan-out and delivery.

Fan-out is a pure read: ``fan_out`` turns one domain event into a list of
``NotificationIntent`` objects, one per recipient. Nothing is written while
the request is being served. ``NotificationOutbox`` collects the intents for
a request and hands them to ``NotificationDispatcher`` as a FastAPI
background task, which persists them in its own session after the response
has been produced.

Recipients, in order, deduplicated and never including the actor:

1. every active admin
2. the project's manager
3. the resource owner (task creator, then project owner)
4. the task assignee
5. the remaining project members (distinct assignees of the project's tasks)
"""
import logging
from typing import Callable, Iterable, Optional
from uuid import UUID

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from . import models
from .crud import get_project_member_ids
from .models import NotificationType, UserRole
from .permissions import AccessContext
from .schemas import NotificationIntent

logger = logging.getLogger("pm-core.notifications")


MESSAGE_TEMPLATES: dict[NotificationType, str] = {
    NotificationType.PROJECT_CREATED: "{actor} created a new project: {title}",
    NotificationType.TASK_CREATED: "{actor} created a new task: {title}",
    NotificationType.TASK_ASSIGNED: "{actor} assigned task to {assignee}: {title}",
    NotificationType.TASK_STATUS: "{actor} updated task status to {status}: {title}",
    NotificationType.TASK_UPDATED: "{actor} updated task: {title}",
    NotificationType.TASK_DELETED: "{actor} deleted task: {title}",
    NotificationType.COMMENT: "{actor} commented on task: {title}",
    NotificationType.FILE: "{actor} uploaded a file: {title}",
    NotificationType.RISK_CREATED: "{actor} reported a new risk: {title}",
    NotificationType.RISK_MITIGATED: "{actor} marked risk as mitigated: {title}",
}

# Message the assignee receives instead of the generic assignment text
ASSIGNEE_TEMPLATE = "{actor} assigned you to task: {title}"


def collect_recipients(
    db: Session,
    actor_id: UUID,
    project: Optional[models.Project] = None,
    task: Optional[models.Task] = None,
) -> list[UUID]:
    """
    Build the ordered recipient list for an event.

    Args:
        db: Database session
        actor_id: User who triggered the event (always excluded)
        project: Project the event belongs to, if any
        task: Task the event belongs to, if any

    Returns:
        Distinct user UUIDs in notification order
    """
    if project is None and task is not None:
        project = task.project

    candidates: list[Optional[UUID]] = []

    admins = (
        db.query(models.User.id)
        .filter(models.User.role == UserRole.ADMIN, models.User.is_active.is_(True))
        .order_by(models.User.created_at)
        .all()
    )
    candidates.extend(user_id for (user_id,) in admins)

    if project is not None:
        candidates.append(project.manager_id)
    if task is not None:
        candidates.append(task.created_by)
    if project is not None:
        candidates.append(project.owner_id)
    if task is not None:
        candidates.append(task.assigned_to)
    if project is not None:
        candidates.extend(get_project_member_ids(db, project.id))

    recipients: dict[UUID, None] = {}
    for user_id in candidates:
        if user_id is None or user_id == actor_id:
            continue
        recipients.setdefault(user_id, None)
    return list(recipients)


def render_message(event: NotificationType, actor: str, title: str, **details) -> str:
    """Format the message text for an event."""
    return MESSAGE_TEMPLATES[event].format(actor=actor, title=title, **details)


def fan_out(
    db: Session,
    event: NotificationType,
    ctx: AccessContext,
    subject_title: str,
    project: Optional[models.Project] = None,
    task: Optional[models.Task] = None,
    **details,
) -> list[NotificationIntent]:
    """
    Compute the notifications caused by one event.

    Args:
        db: Database session
        event: Event tag
        ctx: Acting user
        subject_title: Title of the resource the message names
        project: Project the event belongs to
        task: Task the event belongs to; pass None for deleted tasks
        **details: Extra template fields (``status``, ``assignee``)

    Returns:
        One intent per recipient, never addressed to the actor
    """
    event = NotificationType(event)
    if project is None and task is not None:
        project = task.project

    recipients = collect_recipients(db, ctx.user_id, project=project, task=task)
    if not recipients:
        return []

    if event == NotificationType.TASK_ASSIGNED and "assignee" not in details:
        assignee = db.get(models.User, task.assigned_to) if task and task.assigned_to else None
        details["assignee"] = assignee.name if assignee else "nobody"

    message = render_message(event, ctx.name, subject_title, **details)
    assignee_message = ASSIGNEE_TEMPLATE.format(actor=ctx.name, title=subject_title)

    project_id = project.id if project is not None else None
    # A deleted task is referenced by title only
    task_id = task.id if task is not None and event != NotificationType.TASK_DELETED else None

    intents = []
    for user_id in recipients:
        text = message
        if event == NotificationType.TASK_ASSIGNED and task is not None and user_id == task.assigned_to:
            text = assignee_message
        intents.append(
            NotificationIntent(
                type=event,
                message=text,
                user_id=user_id,
                project_id=project_id,
                task_id=task_id,
            )
        )
    return intents


def task_update_events(changes: Iterable[tuple[str, object, object]]) -> list[NotificationType]:
    """
    Map the field changes of a task update to the events to announce.

    A status change and an assignment each get their own event; anything
    else, unassigning included, collapses into a single task_updated.
    """
    events = []
    fields = {field: new for field, _old, new in changes}
    if "status" in fields:
        events.append(NotificationType.TASK_STATUS)
    generic = set(fields) - {"status"}
    if fields.get("assigned_to") is not None:
        events.append(NotificationType.TASK_ASSIGNED)
        generic.discard("assigned_to")
    if generic:
        events.append(NotificationType.TASK_UPDATED)
    return events


class NotificationDispatcher:
    """
    Persists notification intents outside of the request that produced them.

    Each dispatch opens its own session. A failed batch is retried up to
    ``max_attempts`` times and then dropped with an error log.
    """

    def __init__(self, session_factory: Callable[[], Session], max_attempts: int = 3):
        self.session_factory = session_factory
        self.max_attempts = max(1, max_attempts)

    def dispatch(self, intents: list[NotificationIntent]) -> int:
        """
        Store a batch of intents.

        Returns:
            Number of notifications written (0 when the batch was dropped)
        """
        if not intents:
            return 0

        for attempt in range(1, self.max_attempts + 1):
            db = self.session_factory()
            try:
                db.add_all(models.Notification(**intent.model_dump()) for intent in intents)
                db.commit()
                logger.info(f"Delivered {len(intents)} notification(s) ({intents[0].type.value})")
                return len(intents)
            except Exception as e:
                db.rollback()
                logger.error(
                    f"Notification delivery failed (attempt {attempt}/{self.max_attempts}): {e}",
                    exc_info=True,
                )
            finally:
                db.close()

        logger.error(f"Dropped {len(intents)} notification(s) after {self.max_attempts} attempts")
        return 0


class NotificationOutbox:
    """
    Request-scoped collector for notifications.

    Routers call ``emit`` after the primary action has committed. A failure
    while computing recipients is logged and swallowed so the primary
    action is never affected.
    """

    def __init__(self, dispatcher: NotificationDispatcher, background_tasks: BackgroundTasks):
        self.dispatcher = dispatcher
        self.background_tasks = background_tasks

    def emit(
        self,
        db: Session,
        event: NotificationType,
        ctx: AccessContext,
        subject_title: str,
        project: Optional[models.Project] = None,
        task: Optional[models.Task] = None,
        **details,
    ) -> int:
        """
        Queue the notifications for one event.

        Returns:
            Number of intents queued
        """
        try:
            intents = fan_out(db, event, ctx, subject_title, project=project, task=task, **details)
        except Exception as e:
            logger.error(f"Failed to compute {event} notifications: {e}", exc_info=True)
            db.rollback()
            return 0

        if intents:
            self.background_tasks.add_task(self.dispatcher.dispatch, intents)
        return len(intents)
