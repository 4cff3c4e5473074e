"""File attachment API endpoints."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from pm_core import crud, models, schemas
from pm_core.api.dependencies import get_access_context, get_blob_store, get_outbox
from pm_core.database import get_db
from pm_core.notifications import NotificationOutbox
from pm_core.permissions import AccessContext, Action, ensure_can_mutate
from pm_core.storage import BlobStore, FileTooLargeError
from pm_core.visibility import can_view_file, ensure_can_view

from .projects import get_visible_project
from .tasks import get_visible_task

logger = logging.getLogger("pm-core.files")

router = APIRouter(tags=["files"])


def _load_visible_file(db: Session, ctx: AccessContext, file_id: UUID) -> models.StoredFile:
    stored_file = crud.get_file(db, file_id)
    if not stored_file:
        raise HTTPException(status_code=404, detail=f"File not found: {file_id}")
    ensure_can_view(ctx, can_view_file(ctx, stored_file), "file")
    return stored_file


@router.get("/", response_model=schemas.StoredFileListEnvelope)
def list_files(
    task_id: Optional[UUID] = Query(None, description="Filter by task"),
    project_id: Optional[UUID] = Query(None, description="Filter by project"),
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """List file records visible to the current user, newest first."""
    files = crud.get_files(db, ctx, task_id=task_id, project_id=project_id)
    return schemas.StoredFileListEnvelope(
        files=[schemas.StoredFileResponse.model_validate(f) for f in files]
    )


@router.post("/", response_model=schemas.StoredFileEnvelope, status_code=201)
def upload_file(
    file: UploadFile = File(...),
    task_id: Optional[UUID] = Form(None),
    project_id: Optional[UUID] = Form(None),
    ctx: AccessContext = Depends(get_access_context),
    store: BlobStore = Depends(get_blob_store),
    outbox: NotificationOutbox = Depends(get_outbox),
    db: Session = Depends(get_db),
):
    """
    Upload a file, optionally attached to a task or a project.

    The target task or project must be visible to the current user. A file
    attached to a task is also attached to the task's project.
    """
    task = get_visible_task(db, ctx, task_id) if task_id else None
    if task is not None:
        if project_id and project_id != task.project_id:
            raise HTTPException(status_code=422, detail="Task does not belong to the specified project")
        project = task.project
    else:
        project = get_visible_project(db, ctx, project_id) if project_id else None

    filename = file.filename or "file"
    try:
        key, size = store.save(file.file, filename)
    except FileTooLargeError as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        stored_file = crud.create_file_record(
            db,
            name=filename,
            path=key,
            mime_type=file.content_type,
            size=size,
            user_id=ctx.user_id,
            task_id=task.id if task else None,
            project_id=project.id if project else None,
        )
    except Exception:
        db.rollback()
        store.delete(key)
        raise

    outbox.emit(db, models.NotificationType.FILE, ctx, stored_file.name, project=project, task=task)
    return schemas.StoredFileEnvelope(file=schemas.StoredFileResponse.model_validate(stored_file))


@router.get("/{file_id}", response_model=schemas.StoredFileEnvelope)
def get_file(
    file_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    db: Session = Depends(get_db),
):
    """Get file metadata by ID."""
    stored_file = _load_visible_file(db, ctx, file_id)
    return schemas.StoredFileEnvelope(file=schemas.StoredFileResponse.model_validate(stored_file))


@router.get("/{file_id}/download")
def download_file(
    file_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    store: BlobStore = Depends(get_blob_store),
    db: Session = Depends(get_db),
):
    """Download the file contents."""
    stored_file = _load_visible_file(db, ctx, file_id)
    if not store.exists(stored_file.path):
        logger.error(f"Blob {stored_file.path} for file {file_id} is missing")
        raise HTTPException(status_code=404, detail=f"File contents not found: {file_id}")

    return FileResponse(
        store.path_for(stored_file.path),
        media_type=stored_file.mime_type or "application/octet-stream",
        filename=stored_file.name,
    )


@router.delete("/{file_id}", status_code=204)
def delete_file(
    file_id: UUID,
    ctx: AccessContext = Depends(get_access_context),
    store: BlobStore = Depends(get_blob_store),
    db: Session = Depends(get_db),
):
    """Delete a file. Allowed for the uploader, admins and the owner of the file's project."""
    stored_file = crud.get_file(db, file_id)
    if not stored_file:
        raise HTTPException(status_code=404, detail=f"File not found: {file_id}")
    ensure_can_mutate(ctx, stored_file, Action.DELETE)

    key = stored_file.path
    crud.delete_file_record(db, stored_file)
    store.delete(key)
    logger.info(f"Deleted file {file_id}")
