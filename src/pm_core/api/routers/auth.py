"""Authentication endpoints: token issuing and the current user."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import bearer_token, get_current_user
from pm_core.auth import hash_token, issue_token, revoke_token
from pm_core.config import get_settings
from pm_core.database import get_db

logger = logging.getLogger("pm-core.auth_api")

router = APIRouter(tags=["auth"])


@router.post("/token", response_model=schemas.TokenResponse, status_code=201)
def create_token(
    token_data: schemas.TokenCreate,
    db: Session = Depends(get_db),
):
    """
    Issue a personal access token for a user.

    - **email**: Email of an active user
    - **name**: Label for the token

    The raw token is only returned in this response.
    """
    user = crud.get_user_by_email(db, token_data.email)
    if not user or not user.is_active:
        logger.warning(f"Token request for unknown or inactive user {token_data.email}")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    raw_token, token = issue_token(db, user, name=token_data.name, ttl_days=get_settings().token_ttl_days)
    return schemas.TokenResponse(
        token=raw_token,
        expires_at=token.expires_at,
        user=schemas.UserResponse.model_validate(user),
    )


@router.get("/me", response_model=schemas.UserEnvelope)
def read_me(user: models.User = Depends(get_current_user)):
    """Return the authenticated user."""
    return schemas.UserEnvelope(user=schemas.UserResponse.model_validate(user))


@router.post("/logout", status_code=204)
def logout(
    authorization: Optional[str] = Header(None),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Revoke the token used for this request."""
    token = (
        db.query(models.PersonalAccessToken)
        .filter(models.PersonalAccessToken.token_hash == hash_token(bearer_token(authorization)))
        .first()
    )
    if token:
        revoke_token(db, token)
    logger.info(f"User {user.email} logged out")
