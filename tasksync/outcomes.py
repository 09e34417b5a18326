"""Reduce batch results into task/queue state transitions.

The reducers are pure: given the submitted batch and either the authority's
per-item outcomes or a transport error, they return counters, error
descriptors and a list of commands. ``apply_commands`` then writes the
commands inside one transaction.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence, Union

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from .models import SYNC_ERROR, SYNC_SYNCED, MutationQueueEntry, Task
from .mutation_queue import QueuedMutation
from .schemas import ItemOutcome, TaskSnapshot

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"
MISSING_OUTCOME = "No outcome returned for task"


@dataclass(frozen=True)
class SyncErrorInfo:
    task_id: str
    operation: str
    error: str
    timestamp: datetime


@dataclass(frozen=True)
class RecordFailure:
    """Store the failure on a queue entry."""

    entry_id: str
    retry_count: int
    error_message: str


@dataclass(frozen=True)
class MarkError:
    task_id: str


@dataclass(frozen=True)
class Acknowledge:
    """The authority accepted the task up to and including this queue position."""

    task_id: str
    through_created_at: datetime
    through_seq: int
    server_id: str | None = None
    resolved: TaskSnapshot | None = None


Command = Union[RecordFailure, MarkError, Acknowledge]


@dataclass
class BatchReduction:
    synced: int = 0
    failed: int = 0
    errors: list[SyncErrorInfo] = field(default_factory=list)
    commands: list[Command] = field(default_factory=list)

    def extend(self, other: "BatchReduction") -> None:
        self.synced += other.synced
        self.failed += other.failed
        self.errors.extend(other.errors)
        self.commands.extend(other.commands)


def reduce_transport_failure(
    batch: Sequence[QueuedMutation], message: str, max_retries: int, now: datetime
) -> BatchReduction:
    """Every entry in the batch failed to reach the authority."""
    reduction = BatchReduction()
    exhausted: set[str] = set()

    for entry in batch:
        retry_count = entry.retry_count + 1
        reduction.commands.append(RecordFailure(entry.id, retry_count, message))
        if retry_count >= max_retries and entry.task_id not in exhausted:
            exhausted.add(entry.task_id)
            reduction.commands.append(MarkError(entry.task_id))
            logger.warning(
                "Task %s exhausted %d sync attempts: %s", entry.task_id, retry_count, message
            )
        reduction.failed += 1
        reduction.errors.append(SyncErrorInfo(entry.task_id, entry.operation, message, now))

    return reduction


def reduce_outcomes(
    batch: Sequence[QueuedMutation],
    outcomes: Sequence[ItemOutcome],
    max_retries: int,
    now: datetime,
) -> BatchReduction:
    """Fold the authority's per-item verdicts for one batch.

    Outcomes are matched to entries by task id, never by position. A task
    with any rejected outcome ends in ``error``; otherwise it is acknowledged
    through its last entry in the batch. Tasks the authority said nothing
    about are accounted like a transport failure.
    """
    by_task: dict[str, list[QueuedMutation]] = {}
    for entry in batch:
        by_task.setdefault(entry.task_id, []).append(entry)

    received: dict[str, list[ItemOutcome]] = {}
    for outcome in outcomes:
        if outcome.client_id not in by_task:
            logger.warning("Ignoring outcome for task %s not in the batch", outcome.client_id)
            continue
        received.setdefault(outcome.client_id, []).append(outcome)

    reduction = BatchReduction()
    for task_id, entries in by_task.items():
        task_outcomes = received.get(task_id)
        if not task_outcomes:
            reduction.extend(reduce_transport_failure(entries, MISSING_OUTCOME, max_retries, now))
            continue

        successes = [o for o in task_outcomes if o.status == "success"]
        rejections = [o for o in task_outcomes if o.status == "error"]
        reduction.synced += len(successes)
        reduction.failed += len(rejections)

        if rejections:
            for index, outcome in enumerate(rejections):
                operation = entries[min(index, len(entries) - 1)].operation
                reduction.errors.append(
                    SyncErrorInfo(task_id, operation, outcome.error or UNKNOWN_ERROR, now)
                )
            message = rejections[-1].error or UNKNOWN_ERROR
            # Rejections are final: keep the retry count, just record why.
            for entry in entries:
                reduction.commands.append(RecordFailure(entry.id, entry.retry_count, message))
            reduction.commands.append(MarkError(task_id))
            continue

        last = entries[-1]
        server_id = next((o.server_id for o in reversed(successes) if o.server_id), None)
        resolved = next(
            (o.resolved_data for o in reversed(successes) if o.resolved_data is not None), None
        )
        reduction.commands.append(
            Acknowledge(task_id, last.created_at, last.seq, server_id, resolved)
        )

    return reduction


def apply_commands(session: Session, commands: Sequence[Command], now: datetime) -> None:
    for command in commands:
        if isinstance(command, RecordFailure):
            session.execute(
                update(MutationQueueEntry)
                .where(MutationQueueEntry.id == command.entry_id)
                .values(retry_count=command.retry_count, error_message=command.error_message),
                execution_options={"synchronize_session": False},
            )
        elif isinstance(command, MarkError):
            session.execute(
                update(Task).where(Task.id == command.task_id).values(sync_status=SYNC_ERROR),
                execution_options={"synchronize_session": False},
            )
        elif isinstance(command, Acknowledge):
            _acknowledge(session, command, now)
        else:
            raise TypeError(f"Unknown command: {command!r}")


def _acknowledge(session: Session, command: Acknowledge, now: datetime) -> None:
    queue = MutationQueueEntry
    session.execute(
        delete(queue).where(
            queue.task_id == command.task_id,
            or_(
                queue.created_at < command.through_created_at,
                and_(
                    queue.created_at == command.through_created_at,
                    queue.seq <= command.through_seq,
                ),
            ),
        ),
        execution_options={"synchronize_session": False},
    )

    task = session.get(Task, command.task_id)
    if task is None:
        logger.warning("Acknowledged task %s no longer exists locally", command.task_id)
        return

    if command.server_id:
        task.server_id = command.server_id

    remaining = session.scalar(
        select(func.count()).select_from(queue).where(queue.task_id == command.task_id)
    )
    if remaining:
        # Changes queued after this batch was loaded still need to go out.
        logger.debug("Task %s acknowledged with %d newer change(s) queued", task.id, remaining)
        return

    if command.resolved is not None:
        task.title = command.resolved.title
        task.description = command.resolved.description
        task.completed = command.resolved.completed
        task.is_deleted = command.resolved.is_deleted
    task.sync_status = SYNC_SYNCED
    task.last_synced_at = now
