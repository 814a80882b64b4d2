"""Row-level access to the ``knowledge_items`` table.

Two backends share the :class:`KnowledgeStore` protocol: a hosted Supabase
table reached through its PostgREST API, and a local SQLite file. Both return
plain row dictionaries; tag normalization is left to the caller so that the
store's native tag representation (JSON text or array) is passed through.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Protocol
from uuid import uuid4

import httpx

from .config import Settings
from .errors import StoreError
from .models import KNOWLEDGE_COLUMNS
from .tags import normalize_tags, serialize_tags

logger = logging.getLogger(__name__)

Row = dict[str, Any]

_WRITABLE_COLUMNS = frozenset({"category", "content", "tags", "embedding"})


class KnowledgeStore(Protocol):
    """Operations the knowledge service needs from persistence."""

    backend_name: str

    def list_items(self) -> List[Row]:
        """Return every row ordered by ``created_at`` descending."""
        ...

    def find_by_category(self, category: str) -> Row | None:
        """Return the first row whose category matches exactly."""
        ...

    def get_item(self, item_id: str) -> Row | None:
        ...

    def insert_item(self, fields: Mapping[str, Any]) -> Row:
        ...

    def update_item(self, item_id: str, fields: Mapping[str, Any]) -> Row | None:
        ...

    def delete_item(self, item_id: str) -> None:
        ...

    def close(self) -> None:
        ...


def build_store(settings: Settings) -> KnowledgeStore:
    """Instantiate the backend selected by ``STORE_BACKEND``."""

    if settings.is_supabase_store:
        return SupabaseKnowledgeStore.from_settings(settings)
    return SQLiteKnowledgeStore(settings.sqlite_db_path(), table=settings.knowledge_table)


def _writable(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - _WRITABLE_COLUMNS
    if unknown:
        raise StoreError(f"Cannot write read-only or unknown columns: {', '.join(sorted(unknown))}")
    return dict(fields)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteKnowledgeStore:
    """Knowledge items in a local SQLite database with JSON-encoded tags and vectors."""

    backend_name = "sqlite"

    def __init__(
        self,
        db_path: Path,
        *,
        table: str = "knowledge_items",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if not table.isidentifier():
            raise ValueError(f"Invalid table name: {table!r}")
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._table = table
        self._clock = clock
        self._ensure_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id TEXT PRIMARY KEY,
                    category TEXT NOT NULL CHECK (length(category) > 0),
                    content TEXT NOT NULL DEFAULT '',
                    tags TEXT NOT NULL DEFAULT '[]',
                    embedding TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    last_updated TEXT NOT NULL
                )
                """
            )
            conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self._table}_category ON {self._table}(category)"
            )

    def list_items(self) -> List[Row]:
        return self._fetch_all(
            f"SELECT * FROM {self._table} ORDER BY created_at DESC, rowid DESC",
            (),
        )

    def find_by_category(self, category: str) -> Row | None:
        rows = self._fetch_all(
            f"SELECT * FROM {self._table} WHERE category = ? ORDER BY rowid LIMIT 1",
            (category,),
        )
        return rows[0] if rows else None

    def get_item(self, item_id: str) -> Row | None:
        rows = self._fetch_all(f"SELECT * FROM {self._table} WHERE id = ?", (item_id,))
        return rows[0] if rows else None

    def insert_item(self, fields: Mapping[str, Any]) -> Row:
        values = _writable(fields)
        item_id = uuid4().hex
        now = self._clock().isoformat()
        record = (
            item_id,
            values.get("category"),
            values.get("content") or "",
            serialize_tags(normalize_tags(values.get("tags"))),
            json.dumps(list(values.get("embedding") or [])),
            now,
            now,
        )
        self._execute(
            f"""
            INSERT INTO {self._table} (id, category, content, tags, embedding, created_at, last_updated)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            record,
        )
        logger.debug("store.sqlite.inserted id=%s", item_id)
        row = self.get_item(item_id)
        if row is None:  # pragma: no cover - defensive guard
            raise StoreError(f"Inserted row {item_id} could not be read back")
        return row

    def update_item(self, item_id: str, fields: Mapping[str, Any]) -> Row | None:
        values = _writable(fields)
        assignments: list[str] = []
        params: list[Any] = []
        for column, value in values.items():
            if column == "tags":
                value = serialize_tags(normalize_tags(value))
            elif column == "embedding":
                value = json.dumps(list(value or []))
            assignments.append(f"{column} = ?")
            params.append(value)
        assignments.append("last_updated = ?")
        params.append(self._clock().isoformat())
        params.append(item_id)

        rowcount = self._execute(
            f"UPDATE {self._table} SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        if rowcount == 0:
            return None
        return self.get_item(item_id)

    def delete_item(self, item_id: str) -> None:
        self._execute(f"DELETE FROM {self._table} WHERE id = ?", (item_id,))

    def close(self) -> None:
        """Close resources (connections are opened per operation)."""

        return

    def _execute(self, sql: str, params: Iterable[Any]) -> int:
        try:
            with self._connect() as conn:
                cursor = conn.execute(sql, tuple(params))
                return cursor.rowcount
        except sqlite3.Error as exc:
            raise StoreError(str(exc), code=type(exc).__name__) from exc

    def _fetch_all(self, sql: str, params: Iterable[Any]) -> List[Row]:
        try:
            with self._connect() as conn:
                rows = conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc), code=type(exc).__name__) from exc
        return [dict(row) for row in rows]


class SupabaseKnowledgeStore:
    """Knowledge items in a Supabase table, accessed through PostgREST."""

    backend_name = "supabase"

    def __init__(
        self,
        client: httpx.Client,
        *,
        table: str = "knowledge_items",
    ) -> None:
        self._client = client
        self._table = table
        self._select = ",".join(KNOWLEDGE_COLUMNS)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseKnowledgeStore":
        client = httpx.Client(
            base_url=settings.supabase_rest_url(),
            headers=settings.supabase_headers(),
            timeout=settings.store_timeout,
        )
        return cls(client, table=settings.knowledge_table)

    def list_items(self) -> List[Row]:
        return self._request("GET", params={"select": self._select, "order": "created_at.desc"})

    def find_by_category(self, category: str) -> Row | None:
        rows = self._request(
            "GET",
            params={"select": self._select, "category": f"eq.{category}", "limit": "1"},
        )
        return rows[0] if rows else None

    def get_item(self, item_id: str) -> Row | None:
        rows = self._request(
            "GET",
            params={"select": self._select, "id": f"eq.{item_id}", "limit": "1"},
        )
        return rows[0] if rows else None

    def insert_item(self, fields: Mapping[str, Any]) -> Row:
        values = _writable(fields)
        values["tags"] = normalize_tags(values.get("tags"))
        rows = self._request(
            "POST",
            params={"select": self._select},
            body=[values],
            headers={"Prefer": "return=representation"},
        )
        if not rows:
            raise StoreError("Insert did not return the created row")
        logger.debug("store.supabase.inserted id=%s", rows[0].get("id"))
        return rows[0]

    def update_item(self, item_id: str, fields: Mapping[str, Any]) -> Row | None:
        values = _writable(fields)
        if "tags" in values:
            values["tags"] = normalize_tags(values["tags"])
        rows = self._request(
            "PATCH",
            params={"select": self._select, "id": f"eq.{item_id}"},
            body=values,
            headers={"Prefer": "return=representation"},
        )
        return rows[0] if rows else None

    def delete_item(self, item_id: str) -> None:
        self._request("DELETE", params={"id": f"eq.{item_id}"})

    def close(self) -> None:
        self._client.close()

    def _request(
        self,
        method: str,
        *,
        params: Mapping[str, str],
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> List[Row]:
        path = f"/{self._table}"
        try:
            response = self._client.request(method, path, params=params, json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("store.supabase.unreachable method=%s error=%s", method, exc)
            raise StoreError(f"Knowledge store unreachable: {exc}") from exc

        if response.is_error:
            message, code = _postgrest_error(response)
            logger.error(
                "store.supabase.error method=%s status=%s code=%s message=%s",
                method,
                response.status_code,
                code,
                message,
            )
            raise StoreError(message, status_code=response.status_code, code=code)

        if not response.content:
            return []
        try:
            data = response.json()
        except ValueError as exc:
            raise StoreError("Knowledge store returned a non-JSON body") from exc
        if isinstance(data, dict):
            return [data]
        return list(data)


def _postgrest_error(response: httpx.Response) -> tuple[str, str | None]:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}", None
    if isinstance(data, dict):
        message = data.get("message") or data.get("error") or f"HTTP {response.status_code}"
        return str(message), data.get("code")
    return str(data), None
