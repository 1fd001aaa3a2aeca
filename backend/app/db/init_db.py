from __future__ import annotations

import logging

from sqlalchemy import Engine

from app.core.config import Settings
from app.db.session import Base, make_session_factory
from app.services.users import ensure_bootstrap_admin

# Ensure all models are imported so Base.metadata includes all tables.
import app.models  # noqa: F401

logger = logging.getLogger(__name__)


def init_store(engine: Engine, settings: Settings) -> None:
    """
    Bring the store file up: WAL journal, schema, bootstrap admin.
    Every step writes to disk, so this is where a full disk shows up first.
    """
    settings.database_path.parent.mkdir(parents=True, exist_ok=True)
    with engine.connect() as conn:
        mode = conn.exec_driver_sql("PRAGMA journal_mode = WAL").scalar()
        conn.commit()
    Base.metadata.create_all(bind=engine)

    db = make_session_factory(engine)()
    try:
        ensure_bootstrap_admin(
            db,
            username=settings.bootstrap_admin_username,
            password=settings.bootstrap_admin_password,
        )
    finally:
        db.close()
    logger.info("Store ready at %s (journal_mode=%s)", settings.database_path, mode)
