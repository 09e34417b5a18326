"""Server side of ``POST /batch``.

Applies externally submitted mutations straight to the task table, which is
canonical on this side: rows are marked synced and nothing is queued.
Problems with individual items become error outcomes; only store failures
escape.
"""

import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from .models import SYNC_SYNCED, Task, new_id, utcnow
from .schemas import (
    BatchItem,
    CreatePayload,
    DeletePayload,
    ItemOutcome,
    TaskSnapshot,
    UpdatePayload,
    parse_payload,
)

logger = logging.getLogger(__name__)

OPERATIONS = ("create", "update", "delete")
NOT_FOUND = "Task not found"


def apply_batch(session: Session, items: list[Any]) -> list[ItemOutcome]:
    now = utcnow()
    outcomes = [_apply_item(session, raw, now) for raw in items]
    rejected = sum(1 for o in outcomes if o.status == "error")
    logger.info("Applied batch of %d item(s), %d rejected", len(outcomes), rejected)
    return outcomes


def _rejected(client_id: str, error: str) -> ItemOutcome:
    return ItemOutcome(client_id=client_id, server_id=None, status="error", error=error)


def _accepted(task: Task) -> ItemOutcome:
    return ItemOutcome(
        client_id=task.id,
        server_id=task.server_id,
        status="success",
        resolved_data=TaskSnapshot.model_validate(task),
    )


def _apply_item(session: Session, raw: Any, now: datetime) -> ItemOutcome:
    try:
        item = BatchItem.model_validate(raw)
    except SchemaError:
        client_id = raw.get("client_id") if isinstance(raw, dict) else None
        return _rejected(
            client_id if isinstance(client_id, str) and client_id else "unknown",
            "Missing required fields: client_id, operation, or data",
        )

    if item.operation not in OPERATIONS:
        return _rejected(item.client_id, f"Unknown operation: {item.operation}")

    try:
        payload = parse_payload(item.operation, item.data)
    except SchemaError as e:
        return _rejected(item.client_id, f"Invalid {item.operation} data: {e.error_count()} error(s)")

    if isinstance(payload, CreatePayload):
        return _apply_create(session, item.client_id, payload.task, now)
    if isinstance(payload, UpdatePayload):
        return _apply_update(session, item.client_id, payload.changes.provided(), now)
    if isinstance(payload, DeletePayload):
        return _apply_delete(session, item.client_id, now)
    return _rejected(item.client_id, f"Unknown operation: {item.operation}")


def _settle(task: Task, now: datetime) -> ItemOutcome:
    if not task.server_id:
        task.server_id = new_id()
    task.sync_status = SYNC_SYNCED
    task.updated_at = now
    task.last_synced_at = now
    return _accepted(task)


def _apply_create(session: Session, client_id: str, snapshot: TaskSnapshot, now: datetime) -> ItemOutcome:
    if not snapshot.title.strip():
        return _rejected(client_id, "Title is required")

    task = session.get(Task, client_id)
    if task is None:
        task = Task(id=client_id, created_at=snapshot.created_at or now)
        session.add(task)
        # later items in the same batch must find it through session.get()
        task.title = snapshot.title.strip()
        session.flush()

    # Replays of the same create simply overwrite.
    task.title = snapshot.title.strip()
    task.description = snapshot.description.strip()
    task.completed = snapshot.completed
    task.is_deleted = snapshot.is_deleted
    return _settle(task, now)


def _apply_update(session: Session, client_id: str, fields: dict[str, Any], now: datetime) -> ItemOutcome:
    task = session.get(Task, client_id)
    if task is None or task.is_deleted:
        return _rejected(client_id, NOT_FOUND)

    if "title" in fields:
        if not fields["title"].strip():
            return _rejected(client_id, "Title must be a non-empty string")
        fields["title"] = fields["title"].strip()
    if "description" in fields:
        fields["description"] = fields["description"].strip()

    for name, value in fields.items():
        setattr(task, name, value)
    return _settle(task, now)


def _apply_delete(session: Session, client_id: str, now: datetime) -> ItemOutcome:
    task = session.get(Task, client_id)
    if task is None:
        return _rejected(client_id, NOT_FOUND)

    task.is_deleted = True
    return _settle(task, now)
