"""Durable mutation queue.

Entries are written in the same transaction as the task change that caused
them and read back in ``(created_at, seq)`` order, which is the order the
remote authority must see them in.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .models import SYNC_ERROR, MutationQueueEntry, Task, new_id, utcnow
from .schemas import MutationPayload, parse_payload


@dataclass(frozen=True)
class QueuedMutation:
    """Detached, validated view of a queue row."""

    seq: int
    id: str
    task_id: str
    operation: str
    payload: MutationPayload
    created_at: datetime
    retry_count: int = 0
    error_message: str | None = None

    @classmethod
    def from_row(cls, row: MutationQueueEntry) -> "QueuedMutation":
        data = json.loads(row.payload) if row.payload else {}
        return cls(
            seq=row.seq,
            id=row.id,
            task_id=row.task_id,
            operation=row.operation,
            payload=parse_payload(row.operation, data),
            created_at=row.created_at,
            retry_count=row.retry_count,
            error_message=row.error_message,
        )

    def to_data(self) -> dict:
        return self.payload.to_data()


def enqueue(session: Session, task_id: str, payload: MutationPayload) -> MutationQueueEntry:
    """Add a queue entry to the caller's open transaction."""
    entry = MutationQueueEntry(
        id=new_id(),
        task_id=task_id,
        operation=payload.operation,
        payload=json.dumps(payload.to_data()),
        created_at=utcnow(),
        retry_count=0,
    )
    session.add(entry)
    return entry


def load_pending(session: Session) -> list[QueuedMutation]:
    """All entries eligible for submission, oldest first.

    Entries of tasks already in the ``error`` state are held back until a
    new local change or a manual retry puts the task back to ``pending``.
    """
    errored = select(Task.id).where(Task.sync_status == SYNC_ERROR)
    stmt = (
        select(MutationQueueEntry)
        .where(MutationQueueEntry.task_id.not_in(errored))
        .order_by(MutationQueueEntry.created_at, MutationQueueEntry.seq)
    )
    return [QueuedMutation.from_row(row) for row in session.execute(stmt).scalars()]


def queue_size(session: Session, task_id: str | None = None) -> int:
    stmt = select(func.count()).select_from(MutationQueueEntry)
    if task_id is not None:
        stmt = stmt.where(MutationQueueEntry.task_id == task_id)
    return session.scalar(stmt) or 0


def partition(entries: Sequence[QueuedMutation], size: int) -> Iterator[list[QueuedMutation]]:
    if size < 1:
        raise ValueError(f"batch size must be at least 1, got {size}")
    for start in range(0, len(entries), size):
        yield list(entries[start : start + size])
