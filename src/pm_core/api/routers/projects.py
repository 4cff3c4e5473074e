"""Project API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context, get_outbox
from pm_core.database import get_db
from pm_core.metrics import allocated_budget
from pm_core.notifications import NotificationOutbox
from pm_core.permissions import AccessContext, Action, ensure_can_create_project, ensure_can_mutate
from pm_core.visibility import can_view_project, ensure_can_view

from .tasks import _task_to_response

logger = logging.getLogger("pm-core.projects")

router = APIRouter(tags=["projects"])


def _project_to_response(project: models.Project) -> schemas.ProjectResponse:
    """Convert Project model to ProjectResponse schema."""
    return schemas.ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        start_date=project.start_date,
        end_date=project.end_date,
        status=project.status,
        budget=project.budget,
        actual_expenditure=project.actual_expenditure,
        total_budget=allocated_budget(project.budget),
        owner_id=project.owner_id,
        manager_id=project.manager_id,
        owner=schemas.UserSummary.model_validate(project.owner) if project.owner else None,
        manager=schemas.UserSummary.model_validate(project.manager) if project.manager else None,
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def get_visible_project(db: Session, ctx: AccessContext, project_id: UUID) -> models.Project:
    """Load a project the user can see, or raise 404/403."""
    project = crud.get_project(db, project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    ensure_can_view(ctx, can_view_project(ctx, project), "project")
    return project


def _check_manager(db: Session, manager_id: Optional[UUID]) -> None:
    if manager_id is not None and not crud.get_user(db, manager_id):
        raise HTTPException(status_code=422, detail=f"Manager not found: {manager_id}")


@router.get("/", response_model=schemas.ProjectListEnvelope)
def list_projects(
    status: Optional[models.ProjectStatus] = Query(None, description="Filter by status"),
    search: Optional[str] = Query(None, description="Search in name and description"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """
    List projects visible to the current user.

    Admins see every project, project managers the projects they created or
    manage, team members the projects holding tasks assigned to them, and
    clients the projects they created.
    """
    projects = crud.get_projects(db, ctx, status_filter=status, search=search)
    return schemas.ProjectListEnvelope(
        projects=[_project_to_response(p) for p in projects],
        user_role=ctx.role,
    )


@router.post("/", response_model=schemas.ProjectEnvelope, status_code=201)
def create_project(
    project_data: schemas.ProjectCreate,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """
    Create a new project owned by the current user.

    - **name**: Project name
    - **start_date** / **end_date**: Schedule (end on or after start)
    - **manager_id**: Responsible project manager (optional)
    - **budget**: List of `{item, amount}` lines (optional)
    - **actual_expenditure**: Spent so far; may not exceed the budget total
    """
    ensure_can_create_project(ctx)
    _check_manager(db, project_data.manager_id)

    try:
        project = crud.create_project(db, project_data, owner_id=ctx.user_id)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"Created project {project.id}: {project.name}")
    outbox.emit(db, models.NotificationType.PROJECT_CREATED, ctx, project.name, project=project)
    return schemas.ProjectEnvelope(project=_project_to_response(project))


@router.get("/{project_id}", response_model=schemas.ProjectEnvelope)
def get_project(
    project_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Get a project by ID."""
    project = get_visible_project(db, ctx, project_id)
    return schemas.ProjectEnvelope(project=_project_to_response(project))


@router.put("/{project_id}", response_model=schemas.ProjectEnvelope)
def update_project(
    project_id: UUID,
    project_update: schemas.ProjectUpdate,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """
    Update a project.

    Only the fields present in the request body are changed. A budget or
    expenditure change that would leave expenditure above the budget total
    is rejected with 422 and nothing is saved.
    """
    project = crud.get_project(db, project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    ensure_can_mutate(ctx, project, Action.UPDATE)
    _check_manager(db, project_update.manager_id)

    try:
        project = crud.update_project(db, project, project_update)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"Updated project {project.id}")
    return schemas.ProjectEnvelope(project=_project_to_response(project))


@router.delete("/{project_id}", status_code=204)
def delete_project(
    project_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Delete a project with its tasks, risks and task comments."""
    project = crud.get_project(db, project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project not found: {project_id}")
    ensure_can_mutate(ctx, project, Action.DELETE)

    crud.delete_project(db, project)
    logger.info(f"Deleted project {project_id}")


@router.get("/{project_id}/tasks", response_model=schemas.TaskListEnvelope)
def list_project_tasks(
    project_id: UUID,
    status: Optional[models.TaskStatus] = Query(None, description="Filter by status"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """List the tasks of a project that the current user can see."""
    get_visible_project(db, ctx, project_id)
    tasks = crud.get_tasks(db, ctx, project_id=project_id, status=status)
    return schemas.TaskListEnvelope(tasks=[_task_to_response(t) for t in tasks])
