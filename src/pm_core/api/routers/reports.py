"""Project report endpoints: progress, budget, task and risk statistics."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pm_core import crud, metrics, models, schemas
from pm_core.api.dependencies import get_access_context
from pm_core.database import get_db
from pm_core.permissions import AccessContext

from .projects import get_visible_project

logger = logging.getLogger("pm-core.reports")

router = APIRouter(tags=["reports"])


def _project_report(project: models.Project) -> schemas.ProjectReport:
    """Aggregate figures over every task of a project."""
    statuses = [task.status for task in project.tasks]
    return schemas.ProjectReport(
        project_id=project.id,
        name=project.name,
        status=project.status,
        progress=metrics.project_progress(statuses),
        budget=schemas.BudgetSummary(**metrics.budget_summary(project.budget, project.actual_expenditure)),
        tasks=schemas.TaskCounts(**metrics.task_status_counts(statuses)),
    )


@router.get("/projects", response_model=schemas.ProjectReportListEnvelope)
def list_project_reports(
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Reports for every project visible to the current user."""
    projects = crud.get_projects(db, ctx)
    return schemas.ProjectReportListEnvelope(reports=[_project_report(p) for p in projects])


@router.get("/projects/{project_id}/data", response_model=schemas.ProjectReportEnvelope)
def get_project_report(
    project_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Progress, budget summary and task counts for one project."""
    project = get_visible_project(db, ctx, project_id)
    return schemas.ProjectReportEnvelope(report=_project_report(project))


@router.get("/projects/{project_id}/risk-metrics", response_model=schemas.RiskMetricsResponse)
def get_risk_metrics(
    project_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Risk counts by severity and mitigation state."""
    project = get_visible_project(db, ctx, project_id)
    return schemas.RiskMetricsResponse(
        project_id=project.id,
        metrics=schemas.RiskMetrics(**metrics.risk_metrics(project.risks)),
    )


@router.get("/projects/{project_id}/task-trends", response_model=schemas.TaskTrendsResponse)
def get_task_trends(
    project_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Completed tasks per completion day."""
    project = get_visible_project(db, ctx, project_id)
    trends = metrics.task_completion_trends(db, project.id)
    return schemas.TaskTrendsResponse(
        project_id=project.id,
        trends=[schemas.TrendPoint(**point) for point in trends],
    )
