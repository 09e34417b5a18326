"""Reconciliation engine.

Drains the mutation queue towards the remote authority: probe, load in
queue order, submit fixed-size batches one after another, and commit each
batch's reduction before the next batch goes out.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, Sequence, Union

from sqlalchemy.orm import sessionmaker

from .config import Settings
from .errors import TransportFailure
from .models import utcnow
from .mutation_queue import QueuedMutation, load_pending, partition
from .outcomes import (
    BatchReduction,
    SyncErrorInfo,
    apply_commands,
    reduce_outcomes,
    reduce_transport_failure,
)
from .schemas import ItemOutcome

logger = logging.getLogger(__name__)


class AuthorityClient(Protocol):
    def probe(self) -> bool: ...

    def submit_batch(self, entries: Sequence[QueuedMutation]) -> list[ItemOutcome]: ...


@dataclass
class ReconcileResult:
    """Aggregate of one reconciliation run."""

    synced: int = 0
    failed: int = 0
    errors: list[SyncErrorInfo] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0

    def add(self, reduction: BatchReduction) -> None:
        self.synced += reduction.synced
        self.failed += reduction.failed
        self.errors.extend(reduction.errors)


@dataclass(frozen=True)
class OfflineResult:
    """The authority was unreachable; nothing was read or written."""

    checked_at: datetime = field(default_factory=utcnow)


RunResult = Union[ReconcileResult, OfflineResult]


class ReconciliationEngine:
    def __init__(self, session_factory: sessionmaker, client: AuthorityClient, settings: Settings):
        self._session_factory = session_factory
        self._client = client
        self._batch_size = settings.sync_batch_size
        self._max_retries = settings.sync_max_retries

    def reconcile(self) -> RunResult:
        if not self._client.probe():
            logger.info("Remote authority unreachable, skipping reconciliation")
            return OfflineResult()

        with self._session_factory() as session:
            entries = load_pending(session)

        result = ReconcileResult()
        if not entries:
            return result

        logger.info(
            "Reconciling %d queued mutation(s) in batches of %d", len(entries), self._batch_size
        )
        # Tasks that failed in an earlier batch of this run. Their later entries
        # wait for the next run so nothing is acknowledged past an undelivered one.
        held: set[str] = set()
        for batch in partition(entries, self._batch_size):
            ready = [e for e in batch if e.task_id not in held]
            if len(ready) < len(batch):
                logger.debug("Holding back %d mutation(s) of failed tasks", len(batch) - len(ready))
            if not ready:
                continue

            reduction = self._submit(ready)
            with self._session_factory.begin() as session:
                apply_commands(session, reduction.commands, utcnow())
            result.add(reduction)
            held.update(error.task_id for error in reduction.errors)

        logger.info("Reconciliation finished: %d synced, %d failed", result.synced, result.failed)
        return result

    def _submit(self, batch: list[QueuedMutation]) -> BatchReduction:
        try:
            outcomes = self._client.submit_batch(batch)
        except TransportFailure as e:
            logger.warning("Batch of %d mutation(s) failed in transport: %s", len(batch), e)
            return reduce_transport_failure(batch, str(e), self._max_retries, utcnow())
        return reduce_outcomes(batch, outcomes, self._max_retries, utcnow())
