"""
Logical (table-by-table JSON) export and restore of the store.

Document shape:

    {"meta": {"version": 1, "exported_at": "<ISO-8601>"},
     "tables": [{"name": str, "columns": [str], "rows": [{column: scalar|null}]}]}

Restore is schema-tolerant: it only touches tables that exist in the live
store and only writes columns present both in the document and in the live
table, so a document from an older or newer schema still restores.
"""

from __future__ import annotations

import base64
import binascii
import datetime as dt
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Union

from sqlalchemy import Connection, Engine

from app.services.errors import InvalidDocument
from app.services.schema import list_columns, list_primary_key, list_tables, quote_ident

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

# JSON has no bytes type; BLOB cells travel as {"$blob": "<base64>"}.
BLOB_KEY = "$blob"

Scalar = Union[None, int, float, str, bytes]


@dataclass
class TableDump:
    name: str
    columns: list[str]
    rows: list[dict[str, Any]]


@dataclass
class ImportResult:
    tables: list[dict[str, Any]] = field(default_factory=list)
    skipped_tables: list[str] = field(default_factory=list)
    skipped_columns: dict[str, list[str]] = field(default_factory=dict)

    @property
    def rows_total(self) -> int:
        return sum(t["rows"] for t in self.tables)

    def as_details(self) -> dict[str, Any]:
        return {
            "tables": self.tables,
            "rows_total": self.rows_total,
            "skipped_tables": self.skipped_tables,
            "skipped_columns": self.skipped_columns,
        }


def utc_now_iso() -> str:
    now = dt.datetime.now(dt.timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_value(v: Scalar) -> Any:
    if isinstance(v, (bytes, bytearray, memoryview)):
        return {BLOB_KEY: base64.b64encode(bytes(v)).decode("ascii")}
    return v


def decode_value(v: Any, *, table: str, column: str) -> Scalar:
    if v is None or isinstance(v, (int, float, str)):
        return v
    if isinstance(v, dict) and set(v) == {BLOB_KEY} and isinstance(v[BLOB_KEY], str):
        try:
            return base64.b64decode(v[BLOB_KEY], validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidDocument(f"Bad blob in {table}.{column}") from e
    # Node's JSON form of a Buffer, as found in exports from the older server.
    if isinstance(v, dict) and v.get("type") == "Buffer" and isinstance(v.get("data"), list):
        try:
            return bytes(v["data"])
        except (TypeError, ValueError) as e:
            raise InvalidDocument(f"Bad blob in {table}.{column}") from e
    raise InvalidDocument(f"Unsupported value in {table}.{column}: {type(v).__name__}")


# ---- export ---------------------------------------------------------------


def _meta() -> dict[str, Any]:
    return {"version": FORMAT_VERSION, "exported_at": utc_now_iso()}


def _iter_rows(conn: Connection, table: str, columns: list[str]) -> Iterator[dict[str, Any]]:
    sql = f"SELECT {', '.join(quote_ident(c) for c in columns)} FROM {quote_ident(table)}"
    pk = list_primary_key(conn, table)
    if pk:
        sql += " ORDER BY " + ", ".join(quote_ident(c) for c in pk)
    for row in conn.exec_driver_sql(sql):
        yield {c: encode_value(v) for c, v in zip(columns, row)}


def export_all(conn: Connection) -> dict[str, Any]:
    tables = []
    for name in list_tables(conn):
        columns = list_columns(conn, name)
        tables.append({"name": name, "columns": columns, "rows": list(_iter_rows(conn, name, columns))})
    return {"meta": _meta(), "tables": tables}


def iter_export_json(engine: Engine) -> Iterator[str]:
    """
    Same document as export_all(), produced as JSON text chunks one row at a
    time. The table list is read before the first chunk is yielded, so an
    unreadable schema fails on the first next().
    """
    with engine.connect() as conn:
        names = list_tables(conn)
        yield '{"meta": ' + json.dumps(_meta()) + ', "tables": ['
        for i, name in enumerate(names):
            columns = list_columns(conn, name)
            head = json.dumps({"name": name, "columns": columns}, ensure_ascii=False)[:-1]
            yield ("," if i else "") + head + ', "rows": ['
            for j, row in enumerate(_iter_rows(conn, name, columns)):
                yield ("," if j else "") + json.dumps(row, ensure_ascii=False)
            yield "]}"
        yield "]}"


# ---- import ---------------------------------------------------------------


def load_document(raw: bytes) -> Any:
    try:
        return json.loads(raw.decode("utf-8-sig"))
    except (UnicodeDecodeError, ValueError) as e:
        raise InvalidDocument("Invalid JSON") from e


def parse_document(payload: Any) -> list[TableDump]:
    """
    Check the document shape up front. Cell values are only decoded later, for
    the columns the live table still has.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("tables"), list):
        raise InvalidDocument("Invalid backup format: expected an object with a 'tables' list")

    dumps: list[TableDump] = []
    for idx, entry in enumerate(payload["tables"]):
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            raise InvalidDocument(f"Invalid backup format: tables[{idx}] has no name")
        name = entry["name"]

        columns = entry.get("columns") or []
        if not isinstance(columns, list) or not all(isinstance(c, str) for c in columns):
            raise InvalidDocument(f"Invalid backup format: columns of {name!r} must be a list of strings")
        columns = list(dict.fromkeys(columns))

        raw_rows = entry.get("rows") or []
        if not isinstance(raw_rows, list):
            raise InvalidDocument(f"Invalid backup format: rows of {name!r} must be a list")

        rows: list[dict[str, Any]] = []
        for raw in raw_rows:
            if not isinstance(raw, dict):
                raise InvalidDocument(f"Invalid backup format: row in {name!r} is not an object")
            rows.append({c: raw.get(c) for c in columns})

        dumps.append(TableDump(name=name, columns=columns, rows=rows))
    return dumps


@contextmanager
def foreign_keys_disabled(conn: Connection) -> Iterator[Connection]:
    """
    Turn FK enforcement off for the duration of the block. SQLite ignores this
    pragma inside a transaction, so it is committed on its own before the
    caller begins one, and switched back on whatever happens in the block.
    """
    conn.exec_driver_sql("PRAGMA foreign_keys = OFF")
    conn.commit()
    try:
        yield conn
    finally:
        conn.exec_driver_sql("PRAGMA foreign_keys = ON")
        conn.commit()


def _log_skip(table: str, columns: list[str] | None = None) -> None:
    logger.info(
        "import_partial_skip table=%s columns=%s",
        table,
        columns or "*",
        extra={"event": "import_partial_skip", "table": table, "columns": columns},
    )


def import_all(engine: Engine, payload: Any) -> ImportResult:
    """
    Replace the contents of every live table named in `payload`.

    Every value that will be written is decoded before the first statement,
    so a bad cell rejects the document without touching the store. All
    deletes and inserts run in one transaction with FK enforcement off; on
    any error the transaction rolls back and the error propagates.
    """
    dumps = parse_document(payload)
    result = ImportResult()

    with engine.connect() as conn:
        existing = set(list_tables(conn))
        plans: list[tuple[str, list[str], list[tuple[Scalar, ...]]]] = []
        for d in dumps:
            if d.name not in existing:
                result.skipped_tables.append(d.name)
                _log_skip(d.name)
                continue

            live = set(list_columns(conn, d.name))
            columns = [c for c in d.columns if c in live]
            dropped = [c for c in d.columns if c not in live]
            if dropped:
                result.skipped_columns[d.name] = dropped
                _log_skip(d.name, dropped)
            params = []
            if columns:
                params = [tuple(decode_value(row[c], table=d.name, column=c) for c in columns) for row in d.rows]
            plans.append((d.name, columns, params))

        with foreign_keys_disabled(conn), conn.begin():
            for name, _, _ in plans:
                conn.exec_driver_sql(f"DELETE FROM {quote_ident(name)}")

            for name, columns, params in plans:
                if params:
                    sql = "INSERT INTO {} ({}) VALUES ({})".format(
                        quote_ident(name),
                        ", ".join(quote_ident(c) for c in columns),
                        ", ".join("?" for _ in columns),
                    )
                    conn.exec_driver_sql(sql, params)
                result.tables.append({"name": name, "rows": len(params)})

    logger.info(
        "Logical import finished: %d tables, %d rows",
        len(result.tables),
        result.rows_total,
        extra={"skipped_tables": result.skipped_tables, "skipped_columns": result.skipped_columns},
    )
    return result
