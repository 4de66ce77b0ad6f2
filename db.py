"""
db.py
SQLite-backed document store: collections of JSON documents, optionally owned
by a parent document, ordered by createdAt.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from pathlib import Path

logger = logging.getLogger(__name__)

DB_FILE = Path(os.environ.get("SPORTS_ADMIN_DB", Path(__file__).with_name("sports_admin.db")))


@contextmanager
def get_conn():
    conn = sqlite3.connect(DB_FILE, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


@contextmanager
def transaction():
    """
    Single-writer transaction: reads inside see a stable view and no other
    writer can interleave until commit.
    """
    with get_conn() as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise


@contextmanager
def _using(conn):
    if conn is not None:
        yield conn
    else:
        with get_conn() as own:
            yield own


def execute(sql: str, params: tuple = (), conn=None) -> int:
    with _using(conn) as c:
        cur = c.execute(sql, params)
        return cur.lastrowid


def fetch_one(sql: str, params: tuple = (), conn=None):
    with _using(conn) as c:
        cur = c.execute(sql, params)
        return cur.fetchone()


def fetch_all(sql: str, params: tuple = (), conn=None) -> list[sqlite3.Row]:
    with _using(conn) as c:
        cur = c.execute(sql, params)
        return cur.fetchall()


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    raise TypeError(f"Cannot store {type(value).__name__} in a document")


def _dumps(data: dict) -> str:
    return json.dumps(data, default=_json_default, sort_keys=True)


def _row_to_doc(row) -> dict:
    doc = json.loads(row["data"])
    doc["id"] = row["id"]
    if row["parent_id"] is not None:
        doc["parentId"] = row["parent_id"]
    return doc


def new_id() -> str:
    return uuid.uuid4().hex[:20]


def _create_tables() -> None:
    execute(
        """
        CREATE TABLE IF NOT EXISTS documents (
            seq INTEGER PRIMARY KEY AUTOINCREMENT,
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            parent_id TEXT,
            created_at TEXT NOT NULL,
            data TEXT NOT NULL,
            UNIQUE(collection, id)
        )
        """
    )
    execute(
        """
        CREATE INDEX IF NOT EXISTS idx_documents_parent
        ON documents(collection, parent_id, created_at)
        """
    )

    # Running counters (invoice sequence per payments collection)
    execute(
        """
        CREATE TABLE IF NOT EXISTS counters (
            key TEXT PRIMARY KEY,
            value INTEGER NOT NULL
        )
        """
    )


def init_db() -> None:
    _create_tables()
    logger.debug("Document store ready at %s", DB_FILE)


def create_doc(collection: str, data: dict, parent_id: str | None = None,
               doc_id: str | None = None, conn=None) -> str:
    doc_id = doc_id or new_id()
    data = {k: v for k, v in data.items() if k not in ("id", "parentId")}
    created_at = data.get("createdAt") or datetime.now().isoformat(timespec="seconds")
    data["createdAt"] = created_at
    execute(
        "INSERT INTO documents(collection, id, parent_id, created_at, data) VALUES(?,?,?,?,?)",
        (collection, doc_id, parent_id, str(created_at), _dumps(data)),
        conn=conn,
    )
    return doc_id


def get_doc(collection: str, doc_id: str, conn=None) -> dict | None:
    row = fetch_one(
        "SELECT * FROM documents WHERE collection = ? AND id = ?",
        (collection, doc_id),
        conn=conn,
    )
    return _row_to_doc(row) if row else None


def update_doc(collection: str, doc_id: str, partial: dict, conn=None) -> None:
    """
    Merge partial into an existing document. Raises KeyError when missing.
    """
    with _using(conn) as c:
        row = fetch_one(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id),
            conn=c,
        )
        if not row:
            raise KeyError(f"{collection}/{doc_id}")
        data = json.loads(row["data"])
        data.update({k: v for k, v in partial.items() if k not in ("id", "parentId", "createdAt")})
        c.execute(
            "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
            (_dumps(data), collection, doc_id),
        )


def _where_clause(parent_id: str | None, where: dict | None) -> tuple[str, list]:
    sql = ""
    params: list = []
    if parent_id is not None:
        sql += " AND parent_id = ?"
        params.append(parent_id)
    for field_name, value in (where or {}).items():
        sql += " AND json_extract(data, ?) = ?"
        params.extend([f"$.{field_name}", value])
    return sql, params


def list_docs(collection: str, parent_id: str | None = None, where: dict | None = None,
              order_by: str = "createdAt", desc: bool = True, limit: int | None = None,
              conn=None) -> list[dict]:
    sql = "SELECT * FROM documents WHERE collection = ?"
    params: list = [collection]
    extra, extra_params = _where_clause(parent_id, where)
    sql += extra
    params.extend(extra_params)

    direction = "DESC" if desc else "ASC"
    if order_by == "createdAt":
        sql += f" ORDER BY created_at {direction}, seq {direction}"
    else:
        sql += f" ORDER BY json_extract(data, ?) {direction}, seq {direction}"
        params.append(f"$.{order_by}")

    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))

    return [_row_to_doc(r) for r in fetch_all(sql, tuple(params), conn=conn)]


def latest_doc(collection: str, parent_id: str, where: dict | None = None, conn=None) -> dict | None:
    """
    Most recently created document of a parent (limit 1), or None.
    """
    docs = list_docs(collection, parent_id=parent_id, where=where, limit=1, conn=conn)
    return docs[0] if docs else None


def delete_doc(collection: str, doc_id: str, conn=None) -> None:
    execute("DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id), conn=conn)


def delete_docs(collection: str, parent_id: str | None = None, where: dict | None = None, conn=None) -> int:
    sql = "DELETE FROM documents WHERE collection = ?"
    params: list = [collection]
    extra, extra_params = _where_clause(parent_id, where)
    with _using(conn) as c:
        cur = c.execute(sql + extra, tuple(params + extra_params))
        return cur.rowcount


def next_counter(key: str, conn=None) -> int:
    """
    Increment and return a named counter (starts at 1).
    """
    with _using(conn) as c:
        row = fetch_one("SELECT value FROM counters WHERE key = ?", (key,), conn=c)
        value = (int(row["value"]) if row else 0) + 1
        c.execute(
            """
            INSERT INTO counters(key, value) VALUES(?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (key, value),
        )
        return value
