"""Task API endpoints."""
import logging
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context, get_outbox
from pm_core.database import get_db
from pm_core.notifications import NotificationOutbox, task_update_events
from pm_core.permissions import (
    AccessContext,
    Action,
    ResourceKind,
    ensure_can_add_to_project,
    ensure_can_mutate,
)
from pm_core.visibility import can_view_task, ensure_can_view

logger = logging.getLogger("pm-core.tasks")

router = APIRouter(tags=["tasks"])


def _task_to_response(task: models.Task) -> schemas.TaskResponse:
    """Convert Task model to TaskResponse schema."""
    is_overdue = (
        task.due_date is not None
        and task.due_date < date.today()
        and task.status != models.TaskStatus.COMPLETED
    )
    return schemas.TaskResponse(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        start_date=task.start_date,
        due_date=task.due_date,
        time_estimated=task.time_estimated,
        time_spent=task.time_spent,
        assigned_to=task.assigned_to,
        assigned_user=schemas.UserSummary.model_validate(task.assignee) if task.assignee else None,
        project=schemas.ProjectSummary.model_validate(task.project) if task.project else None,
        created_by=task.created_by,
        is_overdue=is_overdue,
        created_at=task.created_at,
        updated_at=task.updated_at,
        completed_at=task.completed_at,
    )


def get_visible_task(db: Session, ctx: AccessContext, task_id: UUID) -> models.Task:
    """Load a task the user can see, or raise 404/403."""
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    ensure_can_view(ctx, can_view_task(ctx, task), "task")
    return task


def _load_target_project(db: Session, project_id: UUID) -> models.Project:
    project = crud.get_project(db, project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    return project


def _check_assignee(db: Session, user_id: Optional[UUID]) -> None:
    if user_id is None:
        return
    user = crud.get_user(db, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=422, detail=f"Assignee not found: {user_id}")


@router.get("/", response_model=schemas.TaskListEnvelope)
def list_tasks(
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    assigned_to_me: bool = Query(False, description="Only tasks assigned to the current user"),
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    priority: Optional[models.TaskPriority] = Query(None, description="Filter by priority"),
    limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum number of tasks"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """
    List tasks visible to the current user.

    Tasks are ordered by priority (urgent first), then due date (earliest
    first, undated last), then newest.
    """
    tasks = crud.get_tasks(
        db,
        ctx,
        project_id=project_id,
        assigned_to_me=assigned_to_me,
        status=status,
        priority=priority,
        limit=limit,
    )
    return schemas.TaskListEnvelope(tasks=[_task_to_response(t) for t in tasks])


@router.post("/", response_model=schemas.TaskEnvelope, status_code=201)
def create_task(
    task_data: schemas.TaskCreate,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """
    Create a new task in a project.

    Managers of the project may add tasks, and so may team members already
    assigned to a task in it. Creating a task with an assignee also notifies
    about the assignment.
    """
    project = _load_target_project(db, task_data.project_id)
    ensure_can_add_to_project(ctx, project, ResourceKind.TASK)
    _check_assignee(db, task_data.assigned_to)

    task = crud.create_task(db, task_data, ctx.user_id)

    outbox.emit(db, models.NotificationType.TASK_CREATED, ctx, task.title, task=task)
    if task.assigned_to is not None:
        outbox.emit(db, models.NotificationType.TASK_ASSIGNED, ctx, task.title, task=task)
    return schemas.TaskEnvelope(task=_task_to_response(task))


@router.get("/{task_id}", response_model=schemas.TaskEnvelope)
def get_task(
    task_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Get a task by ID."""
    task = get_visible_task(db, ctx, task_id)
    return schemas.TaskEnvelope(task=_task_to_response(task))


@router.put("/{task_id}", response_model=schemas.TaskEnvelope)
def update_task(
    task_id: UUID,
    task_update: schemas.TaskUpdate,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """
    Update a task.

    Moving the status into completed stamps `completed_at`; moving it out
    clears it. Moving the task to another project requires update rights on
    that project.
    """
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    ensure_can_mutate(ctx, task, Action.UPDATE)

    fields = task_update.model_fields_set
    if "project_id" in fields and task_update.project_id and task_update.project_id != task.project_id:
        target = _load_target_project(db, task_update.project_id)
        ensure_can_add_to_project(ctx, target, ResourceKind.TASK)
    if "assigned_to" in fields:
        _check_assignee(db, task_update.assigned_to)

    changes = crud.update_task(db, task, task_update)

    for event in task_update_events(changes):
        outbox.emit(db, event, ctx, task.title, task=task, status=task.status.value)
    return schemas.TaskEnvelope(task=_task_to_response(task))


@router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """Delete a task and its comments."""
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
    ensure_can_mutate(ctx, task, Action.DELETE)

    # Recipients are resolved while the task still exists
    outbox.emit(db, models.NotificationType.TASK_DELETED, ctx, task.title, task=task)
    crud.delete_task(db, task)
