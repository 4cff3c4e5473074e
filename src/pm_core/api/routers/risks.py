"""Risk API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context, get_outbox
from pm_core.database import get_db
from pm_core.notifications import NotificationOutbox
from pm_core.permissions import (
    AccessContext,
    Action,
    ResourceKind,
    ensure_can_add_to_project,
    ensure_can_mutate,
)
from pm_core.visibility import can_view_risk, ensure_can_view

logger = logging.getLogger("pm-core.risks")

router = APIRouter(tags=["risks"])


def _load_risk(db: Session, risk_id: UUID) -> models.Risk:
    risk = crud.get_risk(db, risk_id)
    if not risk:
        raise HTTPException(status_code=404, detail=f"Risk not found: {risk_id}")
    return risk


@router.get("/", response_model=schemas.RiskListEnvelope)
def list_risks(
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    severity: Optional[models.RiskSeverity] = Query(None, description="Filter by severity"),
    status: Optional[models.RiskStatus] = Query(None, description="Filter by status"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """List risks of the projects visible to the current user."""
    risks = crud.get_risks(db, ctx, project_id=project_id, severity=severity, status=status)
    return schemas.RiskListEnvelope(risks=[schemas.RiskResponse.model_validate(r) for r in risks])


@router.post("/", response_model=schemas.RiskEnvelope, status_code=201)
def create_risk(
    risk_data: schemas.RiskCreate,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """
    Record a new risk on a project.

    - **severity**: low, medium, high or critical
    - **status**: open, in_progress or mitigated
    - **mitigation**: Planned or applied mitigation (optional)
    """
    project = crud.get_project(db, risk_data.project_id)
    if not project:
        raise HTTPException(status_code=404, detail=f"Project not found: {risk_data.project_id}")
    ensure_can_add_to_project(ctx, project, ResourceKind.RISK)

    risk = crud.create_risk(db, risk_data, ctx.user_id)
    outbox.emit(db, models.NotificationType.RISK_CREATED, ctx, risk.title, project=project)
    return schemas.RiskEnvelope(risk=schemas.RiskResponse.model_validate(risk))


@router.get("/{risk_id}", response_model=schemas.RiskEnvelope)
def get_risk(
    risk_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Get a risk by ID."""
    risk = _load_risk(db, risk_id)
    ensure_can_view(ctx, can_view_risk(ctx, risk), "risk")
    return schemas.RiskEnvelope(risk=schemas.RiskResponse.model_validate(risk))


@router.put("/{risk_id}", response_model=schemas.RiskEnvelope)
def update_risk(
    risk_id: UUID,
    risk_update: schemas.RiskUpdate,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """Update a risk. Marking it mitigated notifies the project."""
    risk = _load_risk(db, risk_id)
    ensure_can_mutate(ctx, risk, Action.UPDATE)

    old_status = crud.update_risk(db, risk, risk_update)
    logger.info(f"Updated risk {risk.id}")

    if old_status != models.RiskStatus.MITIGATED and risk.status == models.RiskStatus.MITIGATED:
        outbox.emit(db, models.NotificationType.RISK_MITIGATED, ctx, risk.title, project=risk.project)
    return schemas.RiskEnvelope(risk=schemas.RiskResponse.model_validate(risk))


@router.delete("/{risk_id}", status_code=204)
def delete_risk(
    risk_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Delete a risk."""
    risk = _load_risk(db, risk_id)
    ensure_can_mutate(ctx, risk, Action.DELETE)

    crud.delete_risk(db, risk)
    logger.info(f"Deleted risk {risk_id}")
