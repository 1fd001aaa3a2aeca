from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.router import api_router
from app.core.config import Settings, settings as default_settings
from app.core.logging import configure_logging
from app.db.init_db import init_store
from app.db.session import make_engine, make_session_factory
from app.services.recovery import init_store_with_recovery
from app.services.retention import SnapshotRetention
from app.services.scheduler import BackupScheduler

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level, json_lines=settings.log_json)

    app = FastAPI(title=settings.app_name)

    engine = make_engine(settings.database_path)
    retention = SnapshotRetention(settings.resolved_backup_dir)
    scheduler = BackupScheduler(
        database_path=settings.database_path,
        retention=retention,
        keep_max=settings.backup_keep_max,
        interval_seconds=settings.backup_interval_seconds,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.retention = retention
    app.state.backup_scheduler = scheduler

    logger.info("CORS allow_origins=%s", settings.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition"],
    )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def _startup() -> None:
        """
        - Create the backup dir and bring the store up, pruning snapshots once if the disk is full.
        - Start the interval backups and hook SIGINT/SIGTERM backups.
        """
        retention.ensure_dir()
        init_store_with_recovery(lambda: init_store(engine, settings), retention)
        scheduler.start()
        if settings.backup_signal_handlers:
            scheduler.install_signal_handlers()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await scheduler.stop()
        scheduler.restore_signal_handlers()
        engine.dispose()

    app.include_router(api_router)
    return app


app = create_app()
