"""Audit trail for operator-triggered backup operations."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.activity_log import ActivityLog

logger = logging.getLogger(__name__)

ACTION_BACKUP_NOW = "backup_now"
ACTION_BACKUP_PRUNE = "backup_prune"
ACTION_BACKUP_DELETE = "backup_delete"
ACTION_BACKUP_EXPORT = "backup_export"
ACTION_BACKUP_IMPORT = "backup_import"


def log_activity(
    db: Session,
    *,
    action: str,
    entity_type: str = "backup",
    entity_id: int | None = None,
    user_id: int | None = None,
    details: dict | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        details=details,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    logger.info("activity %s by user %s", action, user_id, extra={"action": action, "details": details})
    return entry
