"""User API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context
from pm_core.database import get_db
from pm_core.permissions import AccessContext, ensure_can_manage_users

logger = logging.getLogger("pm-core.users")

router = APIRouter(tags=["users"])


@router.get("/", response_model=schemas.UserListEnvelope)
def list_users(
    role: Optional[models.UserRole] = Query(None, description="Filter by role"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """List active users, e.g. to pick a task assignee or project manager."""
    users = crud.list_users(db, role=role)
    return schemas.UserListEnvelope(users=[schemas.UserResponse.model_validate(u) for u in users])


@router.post("/", response_model=schemas.UserEnvelope, status_code=201)
def create_user(
    user_data: schemas.UserCreate,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Create a user account (admin only)."""
    ensure_can_manage_users(ctx)

    if crud.get_user_by_email(db, user_data.email):
        raise HTTPException(status_code=422, detail=f"A user with email {user_data.email} already exists")

    user = crud.create_user(db, name=user_data.name, email=user_data.email, role=user_data.role)
    return schemas.UserEnvelope(user=schemas.UserResponse.model_validate(user))


@router.get("/{user_id}", response_model=schemas.UserEnvelope)
def get_user(
    user_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Get a user by ID."""
    user = crud.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail=f"User not found: {user_id}")
    return schemas.UserEnvelope(user=schemas.UserResponse.model_validate(user))

