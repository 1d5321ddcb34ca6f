from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from teamspace.core.database import create_local_engine, create_session_factory
from teamspace.persistence.models import LocalRecord


logger = logging.getLogger("teamspace.persistence.local")

ID_PREFIXES = {
    "tasks": "task",
    "projects": "project",
    "project_members": "member",
    "project_documents": "doc",
    "project_notes": "note",
    "task_comments": "comment",
    "email_templates": "tpl",
    "team_activity": "act",
    "notifications": "notif",
}

# Columns the remote server fills on insert; the local store mirrors them.
TIMESTAMP_FIELDS = {"team_activity": "timestamp"}

_RESERVED_PARAMS = {"select", "order", "limit", "offset"}


def new_local_id(collection: str) -> str:
    prefix = ID_PREFIXES.get(collection, collection.rstrip("s"))
    return f"{prefix}-{uuid.uuid4().hex}"


def _as_text(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_set(operand: str) -> set[str]:
    inner = operand.strip()
    if inner.startswith("{") and inner.endswith("}"):
        inner = inner[1:-1]
    return {item.strip().strip('"') for item in inner.split(",") if item.strip()}


def _matches(row: Mapping[str, Any], field: str, condition: str) -> bool:
    operator, _, operand = condition.partition(".")
    value = row.get(field)
    if operator == "eq":
        return _as_text(value) == operand
    if operator == "neq":
        return _as_text(value) != operand
    if operator == "is":
        return _as_text(value) == operand
    if operator == "in":
        return _as_text(value) in _parse_set(operand.replace("(", "{").replace(")", "}"))
    if operator == "cs":
        if not isinstance(value, list):
            return False
        return _parse_set(operand).issubset({_as_text(item) for item in value})
    raise ValueError(f"unsupported filter operator '{operator}' for field '{field}'")


def _sort_key(value: Any) -> tuple[int, Any]:
    if value is None:
        return (3, "")
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (1, value)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return (2, value)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return (0, parsed)
    return (2, str(value))


def apply_params(rows: list[dict[str, Any]], params: Mapping[str, Any] | None) -> list[dict[str, Any]]:
    """Interpret PostgREST-style query params against rows held in insertion order."""
    if not params:
        return rows

    selected = rows
    for field, condition in params.items():
        if field in _RESERVED_PARAMS:
            continue
        selected = [row for row in selected if _matches(row, field, str(condition))]

    order = params.get("order")
    if order:
        field, _, direction = str(order).partition(".")
        descending = direction.startswith("desc")
        source = selected[::-1] if descending else selected
        selected = sorted(source, key=lambda row: _sort_key(row.get(field)), reverse=descending)

    offset = params.get("offset")
    if offset is not None:
        selected = selected[int(offset):]

    limit = params.get("limit")
    if limit is not None:
        selected = selected[: int(limit)]
    return selected


class LocalStore:
    """Fallback store: one serialized collection per entity kind, kept in SQLite.

    Read-modify-write is last-write-wins; there is no version check.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, database_url: str) -> "LocalStore":
        return cls(create_session_factory(create_local_engine(database_url)))

    def execute(
        self,
        collection: str,
        record_id: str | None,
        verb: str,
        body: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        method = verb.upper()
        # Calls arrive from worker threads; one at a time keeps read-modify-write whole.
        with self._lock:
            if method == "GET":
                return self.select(collection, record_id, params)
            if method == "POST":
                rows = body if isinstance(body, list) else [body]
                return self.insert(collection, rows)
            if method == "PATCH":
                return self.update(collection, record_id, dict(body or {}), params)
            if method == "DELETE":
                return self.delete(collection, record_id, params)
        raise ValueError(f"unsupported verb '{verb}'")

    def select(
        self,
        collection: str,
        record_id: str | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            records = self._load(session, collection, record_id)
            return apply_params([dict(record.payload) for record in records], params)

    def insert(self, collection: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        timestamp_field = TIMESTAMP_FIELDS.get(collection, "created_at")
        created: list[dict[str, Any]] = []
        with self._session_factory() as session:
            for row in rows:
                payload = dict(row)
                payload["id"] = payload.get("id") or new_local_id(collection)
                if not payload.get(timestamp_field):
                    payload[timestamp_field] = datetime.now(timezone.utc).isoformat()
                session.add(LocalRecord(collection=collection, record_id=payload["id"], payload=payload))
                created.append(payload)
            session.commit()
        logger.debug("local.insert", extra={"collection": collection, "entity_id": [row["id"] for row in created]})
        return created

    def update(
        self,
        collection: str,
        record_id: str | None,
        patch: dict[str, Any],
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        updated: list[dict[str, Any]] = []
        with self._session_factory() as session:
            for record in self._load(session, collection, record_id):
                if params and not apply_params([record.payload], params):
                    continue
                merged = {**record.payload, **patch, "id": record.record_id}
                # Reassign so the JSON column is flagged dirty.
                record.payload = merged
                updated.append(merged)
            session.commit()
        return updated

    def delete(
        self,
        collection: str,
        record_id: str | None,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        with self._session_factory() as session:
            doomed = [
                record
                for record in self._load(session, collection, record_id)
                if not params or apply_params([record.payload], params)
            ]
            if not doomed:
                return []
            removed = [dict(record.payload) for record in doomed]
            session.execute(delete(LocalRecord).where(LocalRecord.seq.in_([record.seq for record in doomed])))
            session.commit()
        return removed

    def clear(self, collection: str | None = None) -> None:
        with self._session_factory() as session:
            stmt = delete(LocalRecord)
            if collection is not None:
                stmt = stmt.where(LocalRecord.collection == collection)
            session.execute(stmt)
            session.commit()

    @staticmethod
    def _load(session: Session, collection: str, record_id: str | None) -> list[LocalRecord]:
        stmt = select(LocalRecord).where(LocalRecord.collection == collection)
        if record_id is not None:
            stmt = stmt.where(LocalRecord.record_id == record_id)
        return list(session.scalars(stmt.order_by(LocalRecord.seq.asc())).all())
