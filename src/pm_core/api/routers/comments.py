"""Task comment API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context, get_outbox
from pm_core.crud import CommentThreadError
from pm_core.database import get_db
from pm_core.notifications import NotificationOutbox
from pm_core.permissions import AccessContext, Action, ensure_can_mutate
from pm_core.visibility import can_view_task, ensure_can_view

from .tasks import get_visible_task

logger = logging.getLogger("pm-core.comments")

router = APIRouter(tags=["comments"])


def _load_comment(db: Session, comment_id: UUID) -> models.Comment:
    comment = crud.get_comment(db, comment_id)
    if not comment:
        raise HTTPException(status_code=404, detail=f"Comment not found: {comment_id}")
    return comment


@router.get("/tasks/{task_id}/comments", response_model=schemas.CommentListEnvelope)
def list_comments(
    task_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """List the top-level comments of a task with their replies, newest first."""
    get_visible_task(db, ctx, task_id)
    comments = crud.get_task_comments(db, task_id)
    return schemas.CommentListEnvelope(
        comments=[schemas.CommentResponse.model_validate(c) for c in comments]
    )


@router.post("/tasks/{task_id}/comments", response_model=schemas.CommentEnvelope, status_code=201)
def create_comment(
    task_id: UUID,
    comment_data: schemas.CommentCreate,
    ctx: AccessContext = Depends(get_access_context),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """
    Comment on a task, or reply to a top-level comment of the same task.

    Anyone who can see the task can comment on it.
    """
    task = get_visible_task(db, ctx, task_id)

    try:
        comment = crud.create_comment(db, task, ctx.user_id, comment_data)
    except CommentThreadError as e:
        raise HTTPException(status_code=422, detail=str(e))

    outbox.emit(db, models.NotificationType.COMMENT, ctx, task.title, task=task)
    return schemas.CommentEnvelope(comment=schemas.CommentResponse.model_validate(comment))


@router.get("/comments/{comment_id}", response_model=schemas.CommentEnvelope)
def get_comment(
    comment_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Get a comment by ID."""
    comment = _load_comment(db, comment_id)
    ensure_can_view(ctx, can_view_task(ctx, comment.task), "comment")
    return schemas.CommentEnvelope(comment=schemas.CommentResponse.model_validate(comment))


@router.put("/comments/{comment_id}", response_model=schemas.CommentEnvelope)
def update_comment(
    comment_id: UUID,
    comment_update: schemas.CommentUpdate,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Edit a comment. Allowed for the author, admins and the project owner."""
    comment = _load_comment(db, comment_id)
    ensure_can_mutate(ctx, comment, Action.UPDATE)

    comment = crud.update_comment(db, comment, comment_update.content)
    return schemas.CommentEnvelope(comment=schemas.CommentResponse.model_validate(comment))


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Delete a comment and its replies."""
    comment = _load_comment(db, comment_id)
    ensure_can_mutate(ctx, comment, Action.DELETE)

    crud.delete_comment(db, comment)
    logger.info(f"Deleted comment {comment_id}")
