"""Notification API endpoints. Users only ever see their own notifications."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context
from pm_core.database import get_db
from pm_core.permissions import AccessContext, Action, ensure_can_mutate

logger = logging.getLogger("pm-core.notifications_api")

router = APIRouter(tags=["notifications"])


def _load_notification(db: Session, notification_id: UUID) -> models.Notification:
    notification = crud.get_notification(db, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return notification


@router.get("/", response_model=schemas.NotificationListEnvelope)
def list_notifications(
    unread_only: bool = Query(False, description="Only unread notifications"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """List the current user's notifications, newest first."""
    notifications = crud.get_notifications(db, ctx.user_id, unread_only=unread_only)
    return schemas.NotificationListEnvelope(
        notifications=[schemas.NotificationResponse.model_validate(n) for n in notifications]
    )


@router.get("/unread-count", response_model=schemas.UnreadCountResponse)
def unread_count(
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Number of unread notifications for the current user."""
    return schemas.UnreadCountResponse(count=crud.count_unread_notifications(db, ctx.user_id))


@router.post("/read-all", response_model=schemas.MessageResponse)
def mark_all_read(
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Mark every notification of the current user as read."""
    updated = crud.mark_all_notifications_read(db, ctx.user_id)
    logger.info(f"Marked {updated} notification(s) read for user {ctx.user_id}")
    return schemas.MessageResponse(message=f"Marked {updated} notification(s) as read")


@router.post("/{notification_id}/read", response_model=schemas.NotificationEnvelope)
def mark_read(
    notification_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Mark one notification as read. Marking an already-read notification succeeds."""
    notification = _load_notification(db, notification_id)
    ensure_can_mutate(ctx, notification, Action.UPDATE)

    notification = crud.mark_notification_read(db, notification)
    return schemas.NotificationEnvelope(
        notification=schemas.NotificationResponse.model_validate(notification)
    )


@router.delete("/{notification_id}", status_code=204)
def delete_notification(
    notification_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Delete one of the current user's notifications."""
    notification = _load_notification(db, notification_id)
    ensure_can_mutate(ctx, notification, Action.DELETE)

    crud.delete_notification(db, notification)
