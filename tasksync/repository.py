"""Task storage with change capture.

Every mutating call writes the task row and appends one queue entry inside a
single transaction, so a task change is never visible without the entry that
will replay it, and vice versa.
"""

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import sessionmaker

from .errors import ValidationError
from .models import (
    SYNC_ERROR,
    SYNC_PENDING,
    MutationQueueEntry,
    Task,
    new_id,
    utcnow,
)
from .mutation_queue import enqueue, queue_size
from .schemas import CreatePayload, DeletePayload, TaskChanges, TaskSnapshot, UpdatePayload

logger = logging.getLogger(__name__)


def _clean_title(title: Any) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required and must be a non-empty string")
    return title.strip()


def _clean_description(description: Any) -> str:
    if description is None:
        return ""
    if not isinstance(description, str):
        raise ValidationError("Description must be a string")
    return description.strip()


class TaskRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, title: str, description: str | None = "") -> Task:
        now = utcnow()
        task = Task(
            id=new_id(),
            title=_clean_title(title),
            description=_clean_description(description),
            completed=False,
            is_deleted=False,
            sync_status=SYNC_PENDING,
            created_at=now,
            updated_at=now,
            last_synced_at=None,
            server_id=None,
        )
        with self._session_factory.begin() as session:
            session.add(task)
            enqueue(session, task.id, CreatePayload(task=TaskSnapshot.model_validate(task)))

        logger.debug("Created task %s", task.id)
        return task

    def get(self, task_id: str) -> Task | None:
        with self._session_factory() as session:
            task = session.get(Task, task_id)
        if task is None or task.is_deleted:
            return None
        return task

    def list_tasks(self) -> list[Task]:
        with self._session_factory() as session:
            return list(session.execute(select(Task).where(Task.is_deleted.is_(False))).scalars())

    def update(self, task_id: str, changes: TaskChanges | dict[str, Any]) -> Task | None:
        if not isinstance(changes, TaskChanges):
            changes = TaskChanges.model_validate(changes)

        fields = changes.provided()
        if "title" in fields:
            fields["title"] = _clean_title(fields["title"])
        if "description" in fields:
            fields["description"] = _clean_description(fields["description"])

        with self._session_factory.begin() as session:
            task = session.get(Task, task_id)
            if task is None or task.is_deleted:
                return None

            for name, value in fields.items():
                setattr(task, name, value)
            task.sync_status = SYNC_PENDING
            task.updated_at = utcnow()
            enqueue(session, task.id, UpdatePayload(changes=TaskChanges(**fields)))

        return task

    def delete(self, task_id: str) -> bool:
        with self._session_factory.begin() as session:
            task = session.get(Task, task_id)
            if task is None or task.is_deleted:
                return False

            task.is_deleted = True
            task.sync_status = SYNC_PENDING
            task.updated_at = utcnow()
            enqueue(session, task.id, DeletePayload())

        return True

    def list_needing_sync(self) -> list[Task]:
        """Tasks not yet converged with the authority. Reporting only."""
        with self._session_factory() as session:
            stmt = select(Task).where(Task.sync_status.in_((SYNC_PENDING, SYNC_ERROR)))
            return list(session.execute(stmt).scalars())

    def status(self) -> dict[str, Any]:
        with self._session_factory() as session:
            pending = session.scalar(
                select(func.count())
                .select_from(Task)
                .where(Task.sync_status.in_((SYNC_PENDING, SYNC_ERROR)))
            )
            last_sync = session.scalar(select(func.max(Task.last_synced_at)))
            backlog = queue_size(session)

        return {
            "pending_sync_count": pending or 0,
            "last_sync_timestamp": last_sync,
            "sync_queue_size": backlog,
        }

    def retry_failed(self, task_id: str | None = None) -> int:
        """Put ``error`` tasks that still have queued entries back to ``pending``.

        Retry counts are kept as they are, so an entry that already used up
        its attempts gets exactly one more before failing again.
        """
        queued = select(MutationQueueEntry.task_id)
        stmt = update(Task).where(Task.sync_status == SYNC_ERROR, Task.id.in_(queued))
        if task_id is not None:
            stmt = stmt.where(Task.id == task_id)

        with self._session_factory.begin() as session:
            result = session.execute(
                stmt.values(sync_status=SYNC_PENDING),
                execution_options={"synchronize_session": False},
            )
            requeued = result.rowcount

        if requeued:
            logger.info("Requeued %d failed task(s) for sync", requeued)
        return requeued
