"""Read-side authorization: which projects, tasks, risks and files a user can see.

Each role maps to exactly one read scope in ``VISIBILITY_SCOPES``:

- admin: everything
- project_manager: resources of projects they created or are the manager of
- team_member: tasks assigned to them, the projects containing such tasks,
  and the risks of those projects
- client: resources of projects they created

Listing functions return SQLAlchemy queries so callers can add filters,
ordering and pagination. ``can_view_*`` functions answer the same question
for a single loaded row (detail endpoints).
"""
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.orm import Query, Session

from . import models
from .models import UserRole
from .permissions import AccessContext, AccessScope, PermissionDeniedError, manages_project, owns_project

logger = logging.getLogger("pm-core.visibility")


VISIBILITY_SCOPES: dict[UserRole, AccessScope] = {
    UserRole.ADMIN: AccessScope.ALL,
    UserRole.PROJECT_MANAGER: AccessScope.MANAGED_PROJECT,
    UserRole.TEAM_MEMBER: AccessScope.ASSIGNED,
    UserRole.CLIENT: AccessScope.OWNED_PROJECT,
}


def read_scope(ctx: AccessContext) -> AccessScope:
    """
    Resolve the read scope for the acting user.

    Raises:
        PermissionDeniedError: If the user's role is not recognized
    """
    scope = VISIBILITY_SCOPES.get(ctx.role) if ctx.role is not None else None
    if scope is None:
        logger.warning(f"Read denied for user {ctx.user_id} with unrecognized role")
        raise PermissionDeniedError("Your role does not grant access to any resources", action="read")
    return scope


def _project_filter(ctx: AccessContext, scope: AccessScope):
    """SQL predicate over ``models.Project`` for a non-ALL scope."""
    if scope == AccessScope.MANAGED_PROJECT:
        return or_(models.Project.owner_id == ctx.user_id, models.Project.manager_id == ctx.user_id)
    if scope == AccessScope.OWNED_PROJECT:
        return models.Project.owner_id == ctx.user_id
    # ASSIGNED: projects holding at least one task assigned to the user
    return models.Project.tasks.any(models.Task.assigned_to == ctx.user_id)


def visible_projects(db: Session, ctx: AccessContext) -> Query:
    """Query of projects the user may see."""
    scope = read_scope(ctx)
    query = db.query(models.Project)
    if scope == AccessScope.ALL:
        return query
    return query.filter(_project_filter(ctx, scope))


def visible_tasks(db: Session, ctx: AccessContext, project_id: Optional[UUID] = None) -> Query:
    """
    Query of tasks the user may see, optionally limited to one project.

    Project-scoped roles are filtered by joining the owning project, so the
    same predicate applies whether or not ``project_id`` is given.
    """
    scope = read_scope(ctx)
    query = db.query(models.Task)
    if project_id:
        query = query.filter(models.Task.project_id == project_id)

    if scope == AccessScope.ALL:
        return query
    if scope == AccessScope.ASSIGNED:
        return query.filter(models.Task.assigned_to == ctx.user_id)
    return query.join(models.Task.project).filter(_project_filter(ctx, scope))


def visible_risks(db: Session, ctx: AccessContext, project_id: Optional[UUID] = None) -> Query:
    """Query of risks belonging to projects the user may see."""
    scope = read_scope(ctx)
    query = db.query(models.Risk)
    if project_id:
        query = query.filter(models.Risk.project_id == project_id)

    if scope == AccessScope.ALL:
        return query
    return query.join(models.Risk.project).filter(_project_filter(ctx, scope))


def visible_files(
    db: Session,
    ctx: AccessContext,
    task_id: Optional[UUID] = None,
    project_id: Optional[UUID] = None,
) -> Query:
    """
    Query of file records the user may see.

    A file is visible to its uploader, and otherwise follows its task (when
    attached to one) or else its project.
    """
    scope = read_scope(ctx)
    query = db.query(models.StoredFile)
    if task_id:
        query = query.filter(models.StoredFile.task_id == task_id)
    if project_id:
        query = query.filter(models.StoredFile.project_id == project_id)

    if scope == AccessScope.ALL:
        return query

    task_ids = visible_tasks(db, ctx).with_entities(models.Task.id).scalar_subquery()
    project_ids = visible_projects(db, ctx).with_entities(models.Project.id).scalar_subquery()
    return query.filter(
        or_(
            models.StoredFile.user_id == ctx.user_id,
            models.StoredFile.task_id.in_(task_ids),
            and_(
                models.StoredFile.task_id.is_(None),
                models.StoredFile.project_id.in_(project_ids),
            ),
        )
    )


def can_view_project(ctx: AccessContext, project: models.Project) -> bool:
    """Whether a single project is visible to the user."""
    scope = read_scope(ctx)
    if scope == AccessScope.ALL:
        return True
    if scope == AccessScope.MANAGED_PROJECT:
        return manages_project(ctx, project)
    if scope == AccessScope.OWNED_PROJECT:
        return owns_project(ctx, project)
    return any(task.assigned_to == ctx.user_id for task in project.tasks)


def can_view_task(ctx: AccessContext, task: models.Task) -> bool:
    """Whether a single task is visible to the user."""
    scope = read_scope(ctx)
    if scope == AccessScope.ALL:
        return True
    if scope == AccessScope.ASSIGNED:
        return task.assigned_to == ctx.user_id
    return can_view_project(ctx, task.project)


def can_view_risk(ctx: AccessContext, risk: models.Risk) -> bool:
    """Whether a single risk is visible to the user."""
    return can_view_project(ctx, risk.project)


def can_view_file(ctx: AccessContext, stored_file: models.StoredFile) -> bool:
    """Whether a single file record is visible to the user."""
    scope = read_scope(ctx)
    if scope == AccessScope.ALL or stored_file.user_id == ctx.user_id:
        return True
    if stored_file.task is not None:
        return can_view_task(ctx, stored_file.task)
    if stored_file.project is not None:
        return can_view_project(ctx, stored_file.project)
    return False


def ensure_can_view(ctx: AccessContext, allowed: bool, resource: str) -> None:
    """
    Raise when a detail lookup is not visible to the user.

    Raises:
        PermissionDeniedError: If ``allowed`` is False
    """
    if not allowed:
        logger.warning(f"Denied read of {resource} for user {ctx.user_id}")
        raise PermissionDeniedError(f"You do not have permission to view this {resource}", action="read", resource=resource)
