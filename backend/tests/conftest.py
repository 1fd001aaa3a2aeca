"""Pytest fixtures for the backup subsystem tests."""

import datetime as dt

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.db.init_db import init_store
from app.db.session import make_engine, make_session_factory
from app.main import create_app
from app.services.retention import SnapshotRetention, build_snapshot_name

ADMIN_PASSWORD = "admin1234"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_path=tmp_path / "data" / "db.sqlite",
        backup_dir=tmp_path / "backups",
        backup_signal_handlers=False,
        bootstrap_admin_username="admin",
        bootstrap_admin_password=ADMIN_PASSWORD,
    )


@pytest.fixture
def engine(settings):
    """A file-backed store with the full schema and the bootstrap admin."""
    engine = make_engine(settings.database_path)
    init_store(engine, settings)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def retention(settings):
    r = SnapshotRetention(settings.resolved_backup_dir)
    r.ensure_dir()
    return r


@pytest.fixture
def make_snapshots(retention):
    """Create `count` snapshot files one minute apart; returns their names oldest first."""

    def _make(count: int, *, start: dt.datetime | None = None, reason: str = "interval") -> list[str]:
        start = start or dt.datetime(2025, 1, 1, tzinfo=dt.timezone.utc)
        names = []
        for i in range(count):
            name = build_snapshot_name(reason, start + dt.timedelta(minutes=i))
            (retention.backup_dir / name).write_bytes(b"snapshot %d" % i)
            names.append(name)
        return names

    return _make


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_client(client):
    r = client.post("/auth/login", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    return client
