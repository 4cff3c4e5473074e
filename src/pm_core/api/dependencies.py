"""FastAPI dependencies: authentication, access context, outbox and blob store."""
import logging
from typing import Optional

from fastapi import BackgroundTasks, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from pm_core import models
from pm_core.auth import resolve_token
from pm_core.database import get_db
from pm_core.notifications import NotificationDispatcher, NotificationOutbox
from pm_core.permissions import AccessContext
from pm_core.storage import BlobStore

logger = logging.getLogger("pm-core.api.dependencies")


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user_optional(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[models.User]:
    """Resolve the user from a bearer token, or None when missing or invalid."""
    token = bearer_token(authorization)
    if token is None:
        return None
    return resolve_token(db, token)


def get_current_user(
    user: Optional[models.User] = Depends(get_current_user_optional),
) -> models.User:
    """Require an authenticated user."""
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_access_context(user: models.User = Depends(get_current_user)) -> AccessContext:
    """Build the request-scoped access context for the authenticated user."""
    return AccessContext.from_user(user)


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notification_dispatcher


def get_outbox(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationOutbox:
    """Notification outbox bound to this request's background tasks."""
    return NotificationOutbox(dispatcher, background_tasks)


def get_blob_store(request: Request) -> BlobStore:
    return request.app.state.blob_store
