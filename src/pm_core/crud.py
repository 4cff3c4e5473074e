"""CRUD operations for users, projects, tasks, comments, files, risks and notifications.

Authorization is not checked here: routers resolve visibility and mutation
rights before calling into this module. Listing helpers that take an
``AccessContext`` start from the visibility queries so that filters are
always applied on top of the role scope.
"""
import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import case, or_
from sqlalchemy.orm import Session

from . import models, schemas
from .metrics import validate_expenditure
from .permissions import AccessContext
from .visibility import visible_files, visible_projects, visible_risks, visible_tasks

logger = logging.getLogger("pm-core.crud")


class CommentThreadError(ValueError):
    """Raised when a reply does not attach to a top-level comment of the same task."""
    pass


# ============================================================================
# Users
# ============================================================================

def create_user(
    db: Session,
    name: str,
    email: str,
    role: models.UserRole = models.UserRole.TEAM_MEMBER,
) -> models.User:
    """
    Create a new user.

    Args:
        db: Database session
        name: Display name
        email: Unique email address
        role: Application role

    Returns:
        Created user instance
    """
    user = models.User(name=name, email=email.lower(), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Created user {user.email} ({user.role.value})")
    return user


def get_user(db: Session, user_id: UUID) -> Optional[models.User]:
    """Get a user by ID."""
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    """Get a user by email (case-insensitive)."""
    return db.query(models.User).filter(models.User.email == email.lower()).first()


def list_users(db: Session, role: Optional[models.UserRole] = None) -> list[models.User]:
    """List active users, optionally limited to one role, ordered by name."""
    query = db.query(models.User).filter(models.User.is_active.is_(True))
    if role:
        query = query.filter(models.User.role == role)
    return query.order_by(models.User.name).all()


# ============================================================================
# Projects
# ============================================================================

def _budget_lines(budget: Optional[list]) -> Optional[list[dict]]:
    """Normalize budget lines (schemas or dicts) into JSON-serializable dicts."""
    if budget is None:
        return None
    return [
        line.model_dump() if isinstance(line, schemas.BudgetLine) else dict(line)
        for line in budget
    ]


def create_project(
    db: Session,
    project_data: schemas.ProjectCreate,
    owner_id: UUID,
) -> models.Project:
    """
    Create a new project owned by the acting user.

    Args:
        db: Database session
        project_data: Project creation data
        owner_id: UUID of the creating user

    Returns:
        Created project instance

    Raises:
        BudgetValidationError: If actual_expenditure exceeds the budget total
    """
    budget = _budget_lines(project_data.budget)
    validate_expenditure(budget, project_data.actual_expenditure)

    db_project = models.Project(
        name=project_data.name,
        description=project_data.description,
        start_date=project_data.start_date,
        end_date=project_data.end_date,
        status=project_data.status,
        manager_id=project_data.manager_id,
        budget=budget,
        actual_expenditure=project_data.actual_expenditure,
        owner_id=owner_id,
    )
    db.add(db_project)
    db.commit()
    db.refresh(db_project)
    logger.debug(f"Created project {db_project.id} ({db_project.name})")
    return db_project


def get_project(db: Session, project_id: UUID) -> Optional[models.Project]:
    """
    Get a project by ID.

    Args:
        db: Database session
        project_id: Project UUID

    Returns:
        Project instance or None if not found
    """
    return db.query(models.Project).filter(models.Project.id == project_id).first()


def get_projects(
    db: Session,
    ctx: AccessContext,
    status_filter: Optional[models.ProjectStatus] = None,
    search: Optional[str] = None,
) -> list[models.Project]:
    """
    List projects visible to the acting user.

    Args:
        db: Database session
        ctx: Acting user
        status_filter: Optional status filter
        search: Optional search in name and description

    Returns:
        Projects, newest first
    """
    query = visible_projects(db, ctx)

    if status_filter:
        query = query.filter(models.Project.status == status_filter)

    if search:
        search_pattern = f"%{search}%"
        query = query.filter(
            or_(
                models.Project.name.ilike(search_pattern),
                models.Project.description.ilike(search_pattern),
            )
        )

    return query.order_by(models.Project.created_at.desc()).all()


def update_project(
    db: Session,
    db_project: models.Project,
    project_update: schemas.ProjectUpdate,
) -> models.Project:
    """
    Update a project with the fields present in the request.

    Budget and expenditure are validated against the merged (stored and
    incoming) values before anything is changed, so a rejected update leaves
    the project untouched.

    Raises:
        BudgetValidationError: If the resulting expenditure exceeds the budget
        ValueError: If the resulting end_date precedes start_date
    """
    changes = project_update.model_dump(exclude_unset=True)
    if "budget" in changes:
        changes["budget"] = _budget_lines(project_update.budget)

    budget = changes.get("budget", db_project.budget)
    expenditure = changes.get("actual_expenditure", db_project.actual_expenditure)
    validate_expenditure(budget, expenditure)

    start_date = changes.get("start_date") or db_project.start_date
    end_date = changes.get("end_date", db_project.end_date)
    if end_date is not None and start_date is not None and end_date < start_date:
        raise ValueError("end_date must be on or after start_date")

    for field, value in changes.items():
        if field == "start_date" and value is None:
            continue
        setattr(db_project, field, value)

    db.commit()
    db.refresh(db_project)
    logger.debug(f"Updated project {db_project.id}")
    return db_project


def delete_project(db: Session, db_project: models.Project) -> None:
    """
    Delete a project together with its tasks, risks and task comments.

    Args:
        db: Database session
        db_project: Project to delete
    """
    project_id = db_project.id
    db.delete(db_project)
    db.commit()
    logger.debug(f"Deleted project {project_id}")


def get_project_member_ids(db: Session, project_id: UUID) -> list[UUID]:
    """
    Users taking part in a project: the distinct assignees of its tasks.

    Returns:
        User UUIDs in order of first assignment
    """
    rows = (
        db.query(models.Task.assigned_to)
        .filter(
            models.Task.project_id == project_id,
            models.Task.assigned_to.isnot(None),
        )
        .order_by(models.Task.created_at)
        .all()
    )
    member_ids: dict[UUID, None] = {}
    for (user_id,) in rows:
        member_ids.setdefault(user_id, None)
    return list(member_ids)


# ============================================================================
# Tasks
# ============================================================================

def _apply_completion(task: models.Task, old_status: Optional[models.TaskStatus]) -> None:
    """Stamp completed_at when entering completed, clear it on any other status."""
    if task.status == models.TaskStatus.COMPLETED:
        if old_status != models.TaskStatus.COMPLETED or task.completed_at is None:
            task.completed_at = datetime.utcnow()
    else:
        task.completed_at = None


def create_task(
    db: Session,
    task_data: schemas.TaskCreate,
    user_id: Optional[UUID] = None,
) -> models.Task:
    """
    Create a new task.

    Args:
        db: Database session
        task_data: Task creation data
        user_id: UUID of the user creating the task

    Returns:
        Created Task object
    """
    task = models.Task(
        project_id=task_data.project_id,
        title=task_data.title,
        description=task_data.description,
        assigned_to=task_data.assigned_to,
        status=task_data.status,
        priority=task_data.priority,
        start_date=task_data.start_date,
        due_date=task_data.due_date,
        time_estimated=task_data.time_estimated,
        time_spent=task_data.time_spent,
        created_by=user_id,
    )
    _apply_completion(task, None)
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info(f"Created task {task.id}: {task.title}")
    return task


def get_task(db: Session, task_id: UUID) -> Optional[models.Task]:
    """Get a task by ID."""
    return db.query(models.Task).filter(models.Task.id == task_id).first()


def get_tasks(
    db: Session,
    ctx: AccessContext,
    project_id: Optional[UUID] = None,
    assigned_to_me: bool = False,
    status: Optional[models.TaskStatus] = None,
    priority: Optional[models.TaskPriority] = None,
    limit: Optional[int] = None,
) -> list[models.Task]:
    """
    List tasks visible to the acting user.

    Args:
        db: Database session
        ctx: Acting user
        project_id: Filter by project
        assigned_to_me: Only tasks assigned to the acting user
        status: Filter by status
        priority: Filter by priority
        limit: Maximum number of tasks to return

    Returns:
        Tasks ordered by priority (urgent first), then due date, then newest
    """
    query = visible_tasks(db, ctx, project_id=project_id)

    if assigned_to_me:
        query = query.filter(models.Task.assigned_to == ctx.user_id)

    if status:
        query = query.filter(models.Task.status == status)

    if priority:
        query = query.filter(models.Task.priority == priority)

    priority_order = [
        models.TaskPriority.URGENT,
        models.TaskPriority.HIGH,
        models.TaskPriority.MEDIUM,
        models.TaskPriority.LOW,
    ]
    query = query.order_by(
        case(
            *[(models.Task.priority == p, i) for i, p in enumerate(priority_order)],
            else_=99
        ),
        models.Task.due_date.asc().nulls_last(),
        models.Task.created_at.desc()
    )

    if limit:
        query = query.limit(limit)

    return query.all()


def update_task(
    db: Session,
    task: models.Task,
    task_update: schemas.TaskUpdate,
) -> list[tuple[str, object, object]]:
    """
    Update a task with the fields present in the request.

    Concurrent updates are not coordinated; the last write wins.

    Args:
        db: Database session
        task: Task to update
        task_update: Update data

    Returns:
        List of (field, old_value, new_value) for every field that changed
    """
    changes = []
    old_status = task.status

    for field, value in task_update.model_dump(exclude_unset=True).items():
        if field in ("title", "status", "priority", "project_id") and value is None:
            continue
        old_value = getattr(task, field)
        if old_value != value:
            changes.append((field, old_value, value))
            setattr(task, field, value)

    _apply_completion(task, old_status)

    db.commit()
    db.refresh(task)
    logger.info(f"Updated task {task.id} ({', '.join(c[0] for c in changes) or 'no changes'})")
    return changes


def delete_task(db: Session, task: models.Task) -> None:
    """Delete a task and its comments."""
    task_id = task.id
    db.delete(task)
    db.commit()
    logger.info(f"Deleted task {task_id}")


# ============================================================================
# Comments
# ============================================================================

def get_task_comments(db: Session, task_id: UUID) -> list[models.Comment]:
    """
    Top-level comments of a task, newest first.

    Replies are reachable through ``Comment.replies`` in chronological order.
    """
    return (
        db.query(models.Comment)
        .filter(
            models.Comment.task_id == task_id,
            models.Comment.parent_id.is_(None),
        )
        .order_by(models.Comment.created_at.desc())
        .all()
    )


def get_comment(db: Session, comment_id: UUID) -> Optional[models.Comment]:
    """Get a comment by ID."""
    return db.query(models.Comment).filter(models.Comment.id == comment_id).first()


def create_comment(
    db: Session,
    task: models.Task,
    user_id: UUID,
    comment_data: schemas.CommentCreate,
) -> models.Comment:
    """
    Post a comment or a one-level-deep reply on a task.

    Raises:
        CommentThreadError: If parent_id does not name a top-level comment of this task
    """
    if comment_data.parent_id is not None:
        parent = get_comment(db, comment_data.parent_id)
        if parent is None or parent.task_id != task.id:
            raise CommentThreadError("Parent comment must belong to the same task")
        if parent.parent_id is not None:
            raise CommentThreadError("Replies can only be added to top-level comments")

    comment = models.Comment(
        task_id=task.id,
        user_id=user_id,
        parent_id=comment_data.parent_id,
        content=comment_data.content,
    )
    db.add(comment)
    db.commit()
    db.refresh(comment)
    logger.info(f"User {user_id} commented on task {task.id}")
    return comment


def update_comment(db: Session, comment: models.Comment, content: str) -> models.Comment:
    """Replace a comment's content."""
    comment.content = content
    db.commit()
    db.refresh(comment)
    return comment


def delete_comment(db: Session, comment: models.Comment) -> None:
    """Delete a comment and its replies."""
    db.delete(comment)
    db.commit()


# ============================================================================
# Files
# ============================================================================

def create_file_record(
    db: Session,
    name: str,
    path: str,
    mime_type: Optional[str],
    size: int,
    user_id: UUID,
    task_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
) -> models.StoredFile:
    """Persist metadata for a file already written to the blob store."""
    stored_file = models.StoredFile(
        name=name,
        path=path,
        mime_type=mime_type,
        size=size,
        user_id=user_id,
        task_id=task_id,
        project_id=project_id,
    )
    db.add(stored_file)
    db.commit()
    db.refresh(stored_file)
    logger.info(f"Stored file {stored_file.name} ({stored_file.size} bytes) as {stored_file.path}")
    return stored_file


def get_file(db: Session, file_id: UUID) -> Optional[models.StoredFile]:
    """Get a file record by ID."""
    return db.query(models.StoredFile).filter(models.StoredFile.id == file_id).first()


def get_files(
    db: Session,
    ctx: AccessContext,
    task_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
) -> list[models.StoredFile]:
    """List file records visible to the acting user, newest first."""
    query = visible_files(db, ctx, task_id=task_id, project_id=project_id)
    return query.order_by(models.StoredFile.created_at.desc()).all()


def delete_file_record(db: Session, stored_file: models.StoredFile) -> None:
    """Delete a file record (the blob is removed by the caller)."""
    db.delete(stored_file)
    db.commit()


# ============================================================================
# Risks
# ============================================================================

def create_risk(
    db: Session,
    risk_data: schemas.RiskCreate,
    user_id: Optional[UUID] = None,
) -> models.Risk:
    """Record a new risk on a project."""
    risk = models.Risk(
        project_id=risk_data.project_id,
        title=risk_data.title,
        description=risk_data.description,
        severity=risk_data.severity,
        status=risk_data.status,
        mitigation=risk_data.mitigation,
        created_by=user_id,
    )
    db.add(risk)
    db.commit()
    db.refresh(risk)
    logger.info(f"Created risk {risk.id} ({risk.severity.value}) on project {risk.project_id}")
    return risk


def get_risk(db: Session, risk_id: UUID) -> Optional[models.Risk]:
    """Get a risk by ID."""
    return db.query(models.Risk).filter(models.Risk.id == risk_id).first()


def get_risks(
    db: Session,
    ctx: AccessContext,
    project_id: Optional[UUID] = None,
    severity: Optional[models.RiskSeverity] = None,
    status: Optional[models.RiskStatus] = None,
) -> list[models.Risk]:
    """List risks visible to the acting user, newest first."""
    query = visible_risks(db, ctx, project_id=project_id)
    if severity:
        query = query.filter(models.Risk.severity == severity)
    if status:
        query = query.filter(models.Risk.status == status)
    return query.order_by(models.Risk.created_at.desc()).all()


def update_risk(db: Session, risk: models.Risk, risk_update: schemas.RiskUpdate) -> models.RiskStatus:
    """
    Update a risk with the fields present in the request.

    Returns:
        The risk status before the update
    """
    old_status = risk.status
    for field, value in risk_update.model_dump(exclude_unset=True).items():
        if value is None and field != "mitigation":
            continue
        setattr(risk, field, value)
    db.commit()
    db.refresh(risk)
    return old_status


def delete_risk(db: Session, risk: models.Risk) -> None:
    """Delete a risk."""
    db.delete(risk)
    db.commit()


# ============================================================================
# Notifications
# ============================================================================

def get_notifications(db: Session, user_id: UUID, unread_only: bool = False) -> list[models.Notification]:
    """Notifications addressed to a user, newest first."""
    query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if unread_only:
        query = query.filter(models.Notification.read.is_(False))
    return query.order_by(models.Notification.created_at.desc()).all()


def get_notification(db: Session, notification_id: UUID) -> Optional[models.Notification]:
    """Get a notification by ID."""
    return db.query(models.Notification).filter(models.Notification.id == notification_id).first()


def count_unread_notifications(db: Session, user_id: UUID) -> int:
    """Number of unread notifications for a user."""
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id, models.Notification.read.is_(False))
        .count()
    )


def mark_notification_read(db: Session, notification: models.Notification) -> models.Notification:
    """Mark a notification as read. Already-read notifications are left as is."""
    if not notification.read:
        notification.read = True
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_notifications_read(db: Session, user_id: UUID) -> int:
    """
    Mark every unread notification of a user as read.

    Returns:
        Number of notifications updated
    """
    updated = (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id, models.Notification.read.is_(False))
        .update({models.Notification.read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


def delete_notification(db: Session, notification: models.Notification) -> None:
    """Delete a notification."""
    db.delete(notification)
    db.commit()
