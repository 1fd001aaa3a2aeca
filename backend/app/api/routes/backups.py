from __future__ import annotations

import datetime as dt
import itertools
import logging

from fastapi import APIRouter, Depends, File, Header, HTTPException, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import get_retention, get_scheduler, get_settings, require_backup_operator
from app.core.config import Settings
from app.db.session import get_db, get_engine
from app.models.user import User
from app.schemas.backup import (
    BackupListOut,
    BackupNowOut,
    DeleteOut,
    ImportOut,
    ImportTableOut,
    PruneFailureOut,
    PruneOut,
    PruneRequest,
    SnapshotOut,
)
from app.services import activity_log as activity
from app.services.errors import CopyFailed, IntrospectionFailed, InvalidDocument, UnsafeFilename
from app.services.logical_backup import import_all, iter_export_json, load_document
from app.services.retention import SnapshotRetention
from app.services.scheduler import BackupScheduler

logger = logging.getLogger(__name__)
router = APIRouter()

# Value the client must send in X-Confirm-Restore before a destructive import.
RESTORE_CONFIRMATION = "RESTORE"


@router.get("/list", response_model=BackupListOut)
def list_backups(
    retention: SnapshotRetention = Depends(get_retention),
    settings: Settings = Depends(get_settings),
    _=Depends(require_backup_operator),
) -> BackupListOut:
    items = retention.list_snapshot_info(limit=settings.backup_list_limit)
    return BackupListOut(
        backups=[i.name for i in items],
        items=[SnapshotOut(name=i.name, size_bytes=i.size_bytes, created_at=i.created_at, reason=i.reason) for i in items],
    )


@router.post("/now", response_model=BackupNowOut)
def backup_now(
    db: Session = Depends(get_db),
    scheduler: BackupScheduler = Depends(get_scheduler),
    user: User = Depends(require_backup_operator),
) -> BackupNowOut:
    try:
        path = scheduler.take_snapshot("manual")
    except CopyFailed as e:
        logger.error("Manual backup failed: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Backup failed")
    activity.log_activity(db, action=activity.ACTION_BACKUP_NOW, user_id=user.id, details={"file": path.name})
    return BackupNowOut(file=path.name)


@router.post("/prune", response_model=PruneOut)
def prune_backups(
    payload: PruneRequest | None = None,
    db: Session = Depends(get_db),
    retention: SnapshotRetention = Depends(get_retention),
    user: User = Depends(require_backup_operator),
) -> PruneOut:
    payload = payload or PruneRequest()
    try:
        result = retention.prune_by_ratio(payload.mode, payload.ratio, payload.keep_min)
    except OSError as e:
        logger.exception("Prune failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.strerror or "Prune failed")

    out = PruneOut(
        mode=result.mode,
        ratio=result.ratio,
        total=result.total,
        deleted_count=len(result.deleted),
        failed_count=len(result.failed),
        deleted=result.deleted,
        failed=[PruneFailureOut(file=f.file, reason=f.reason) for f in result.failed],
    )
    if result.deleted or result.failed:
        activity.log_activity(
            db,
            action=activity.ACTION_BACKUP_PRUNE,
            user_id=user.id,
            details=out.model_dump(mode="json", exclude={"ok"}),
        )
    return out


@router.delete("/file/{name}", response_model=DeleteOut)
def delete_backup(
    name: str,
    db: Session = Depends(get_db),
    retention: SnapshotRetention = Depends(get_retention),
    user: User = Depends(require_backup_operator),
) -> DeleteOut:
    try:
        existed = retention.delete_one(name)
    except UnsafeFilename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid filename")
    except OSError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.strerror or "Delete failed")
    if not existed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Backup not found")
    activity.log_activity(db, action=activity.ACTION_BACKUP_DELETE, user_id=user.id, details={"file": name})
    return DeleteOut(deleted=name)


@router.get("/export")
def export_backup(
    engine: Engine = Depends(get_engine),
    db: Session = Depends(get_db),
    user: User = Depends(require_backup_operator),
) -> StreamingResponse:
    """
    Streams the logical export document (every table, every row) as a JSON
    attachment. Nothing is stored server-side.
    """
    chunks = iter_export_json(engine)
    try:
        first = next(chunks)
    except IntrospectionFailed as e:
        logger.error("Export failed: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    stamp = dt.datetime.now(dt.timezone.utc).date().isoformat()
    filename = f"portal_backup_{stamp}.json"
    activity.log_activity(db, action=activity.ACTION_BACKUP_EXPORT, user_id=user.id, details={"file_name": filename})

    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    return StreamingResponse(
        itertools.chain([first], chunks),
        media_type="application/json; charset=utf-8",
        headers=headers,
    )


@router.post("/import", response_model=ImportOut)
def import_backup(
    file: UploadFile | None = File(default=None),
    x_confirm_restore: str | None = Header(default=None),
    engine: Engine = Depends(get_engine),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    user: User = Depends(require_backup_operator),
) -> ImportOut:
    """
    Destructive: replaces the contents of every live table named in the
    uploaded document. Requires X-Confirm-Restore: RESTORE.
    """
    if x_confirm_restore != RESTORE_CONFIRMATION:
        raise HTTPException(
            status_code=status.HTTP_428_PRECONDITION_REQUIRED,
            detail=f"Restore must be confirmed with X-Confirm-Restore: {RESTORE_CONFIRMATION}",
        )
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file uploaded")

    raw = file.file.read(settings.backup_upload_max_bytes + 1)
    if len(raw) > settings.backup_upload_max_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Backup file too large")

    user_id = user.id
    try:
        result = import_all(engine, load_document(raw))
    except InvalidDocument as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except IntrospectionFailed as e:
        logger.error("Import failed: %s", e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    except SQLAlchemyError as e:
        logger.exception("Import failed, transaction rolled back")
        reason = getattr(e, "orig", None) or e
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Import failed: {reason}")

    # The users table may have been replaced along with everything else.
    db.rollback()
    if db.query(User.id).filter(User.id == user_id).first() is None:
        user_id = None
    activity.log_activity(db, action=activity.ACTION_BACKUP_IMPORT, user_id=user_id, details=result.as_details())

    return ImportOut(
        tables=[ImportTableOut(**t) for t in result.tables],
        rows_total=result.rows_total,
        skipped_tables=result.skipped_tables,
        skipped_columns=result.skipped_columns,
    )
