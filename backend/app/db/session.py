from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

from fastapi import Request
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


def _apply_sqlite_pragmas(dbapi_connection, connection_record) -> None:  # noqa: ANN001
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute("PRAGMA busy_timeout = 5000")
    finally:
        cursor.close()


def make_engine(database_path: Path | str, *, echo: bool = False) -> Engine:
    """
    Engine for the single-file store.
    Every pooled connection starts with FK enforcement on and a 5s busy wait;
    WAL is a property of the file and is switched on in init_store().
    """
    path = Path(database_path)
    # Export responses are streamed from Starlette's threadpool, so a connection may hop threads.
    engine = create_engine(
        f"sqlite+pysqlite:///{path}", echo=echo, connect_args={"check_same_thread": False}
    )
    event.listen(engine, "connect", _apply_sqlite_pragmas)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
