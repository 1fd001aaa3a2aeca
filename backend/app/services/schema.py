"""
Live schema introspection for the SQLite store.

Table and column names are discovered at runtime, so any statement that embeds
them goes through quote_ident(); values are always bound parameters.
"""

from __future__ import annotations

from sqlalchemy import Connection, inspect
from sqlalchemy.exc import SQLAlchemyError

from app.services.errors import IntrospectionFailed

RESERVED_TABLE_PREFIX = "sqlite_"


def quote_ident(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'


def list_tables(conn: Connection) -> list[str]:
    try:
        names = inspect(conn).get_table_names()
    except SQLAlchemyError as e:
        raise IntrospectionFailed(f"Could not list tables: {e}") from e
    return sorted(n for n in names if not n.startswith(RESERVED_TABLE_PREFIX))


def list_columns(conn: Connection, table: str) -> list[str]:
    """Column names of `table` in declared order."""
    try:
        return [c["name"] for c in inspect(conn).get_columns(table)]
    except SQLAlchemyError as e:
        raise IntrospectionFailed(f"Could not list columns of {table!r}: {e}") from e


def list_primary_key(conn: Connection, table: str) -> list[str]:
    try:
        pk = inspect(conn).get_pk_constraint(table)
    except SQLAlchemyError as e:
        raise IntrospectionFailed(f"Could not read primary key of {table!r}: {e}") from e
    return list(pk.get("constrained_columns") or [])
