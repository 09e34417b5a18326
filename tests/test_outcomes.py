"""Tests for the batch reducers. No database or network involved."""

from datetime import datetime, timedelta

from tasksync.mutation_queue import QueuedMutation
from tasksync.outcomes import (
    MISSING_OUTCOME,
    Acknowledge,
    MarkError,
    RecordFailure,
    reduce_outcomes,
    reduce_transport_failure,
)
from tasksync.schemas import (
    CreatePayload,
    DeletePayload,
    ItemOutcome,
    TaskChanges,
    TaskSnapshot,
    UpdatePayload,
)

NOW = datetime(2026, 1, 1, 12, 0, 0)


def _entry(seq, task_id, operation="update", retry_count=0):
    payloads = {
        "create": CreatePayload(task=TaskSnapshot(id=task_id, title="t")),
        "update": UpdatePayload(changes=TaskChanges(completed=True)),
        "delete": DeletePayload(),
    }
    return QueuedMutation(
        seq=seq,
        id=f"entry-{seq}",
        task_id=task_id,
        operation=operation,
        payload=payloads[operation],
        created_at=NOW + timedelta(seconds=seq),
        retry_count=retry_count,
    )


class TestTransportFailure:
    def test_increments_every_entry(self):
        batch = [_entry(1, "a"), _entry(2, "b", retry_count=1)]

        reduction = reduce_transport_failure(batch, "connection reset", 3, NOW)

        assert reduction.failed == 2
        assert reduction.synced == 0
        assert reduction.commands == [
            RecordFailure("entry-1", 1, "connection reset"),
            RecordFailure("entry-2", 2, "connection reset"),
        ]
        assert [e.task_id for e in reduction.errors] == ["a", "b"]

    def test_marks_error_when_retry_bound_reached(self):
        batch = [_entry(1, "a", retry_count=2), _entry(2, "a", retry_count=2)]

        reduction = reduce_transport_failure(batch, "timeout", 3, NOW)

        assert reduction.commands.count(MarkError("a")) == 1
        assert RecordFailure("entry-1", 3, "timeout") in reduction.commands

    def test_no_error_below_bound(self):
        reduction = reduce_transport_failure([_entry(1, "a", retry_count=1)], "x", 3, NOW)
        assert not any(isinstance(c, MarkError) for c in reduction.commands)


class TestOutcomes:
    def test_success_acknowledges_through_last_entry_of_task(self):
        batch = [_entry(1, "a", "create"), _entry(2, "b", "create"), _entry(3, "a", "delete")]
        outcomes = [
            ItemOutcome(client_id="b", server_id="srv-b", status="success"),
            ItemOutcome(client_id="a", server_id="srv-a", status="success"),
        ]

        reduction = reduce_outcomes(batch, outcomes, 3, NOW)

        assert reduction.synced == 2
        assert reduction.failed == 0
        assert reduction.commands == [
            Acknowledge("a", NOW + timedelta(seconds=3), 3, "srv-a", None),
            Acknowledge("b", NOW + timedelta(seconds=2), 2, "srv-b", None),
        ]

    def test_rejection_is_terminal_without_retry_increment(self):
        batch = [_entry(1, "a", retry_count=1)]
        outcomes = [ItemOutcome(client_id="a", status="error", error="Task not found")]

        reduction = reduce_outcomes(batch, outcomes, 3, NOW)

        assert reduction.failed == 1
        assert reduction.commands == [
            RecordFailure("entry-1", 1, "Task not found"),
            MarkError("a"),
        ]
        assert reduction.errors[0].error == "Task not found"
        assert reduction.errors[0].operation == "update"

    def test_rejection_without_message_uses_default(self):
        reduction = reduce_outcomes(
            [_entry(1, "a")], [ItemOutcome(client_id="a", status="error")], 3, NOW
        )
        assert reduction.errors[0].error == "Unknown error"

    def test_any_rejection_wins_over_success(self):
        batch = [_entry(1, "a", "create"), _entry(2, "a")]
        outcomes = [
            ItemOutcome(client_id="a", status="success", server_id="srv-a"),
            ItemOutcome(client_id="a", status="error", error="bad update"),
        ]

        reduction = reduce_outcomes(batch, outcomes, 3, NOW)

        assert reduction.synced == 1
        assert reduction.failed == 1
        assert MarkError("a") in reduction.commands
        assert not any(isinstance(c, Acknowledge) for c in reduction.commands)

    def test_missing_outcome_counts_as_transport_failure(self):
        batch = [_entry(1, "a"), _entry(2, "b", retry_count=2)]
        outcomes = [ItemOutcome(client_id="a", status="success")]

        reduction = reduce_outcomes(batch, outcomes, 3, NOW)

        assert reduction.synced == 1
        assert reduction.failed == 1
        assert RecordFailure("entry-2", 3, MISSING_OUTCOME) in reduction.commands
        assert MarkError("b") in reduction.commands

    def test_unknown_client_id_is_ignored(self):
        outcomes = [
            ItemOutcome(client_id="stranger", status="success"),
            ItemOutcome(client_id="a", status="success"),
        ]

        reduction = reduce_outcomes([_entry(1, "a")], outcomes, 3, NOW)

        assert reduction.synced == 1
        assert [c.task_id for c in reduction.commands] == ["a"]

    def test_resolved_snapshot_is_carried(self):
        resolved = TaskSnapshot(id="a", title="From server")
        outcomes = [ItemOutcome(client_id="a", status="success", resolved_data=resolved)]

        reduction = reduce_outcomes([_entry(1, "a")], outcomes, 3, NOW)

        assert reduction.commands[0].resolved == resolved
