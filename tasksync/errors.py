"""Exceptions raised by tasksync."""


class TaskSyncError(Exception):
    """Base exception for tasksync."""


class ValidationError(TaskSyncError):
    """Input rejected before anything was written or queued."""


class TransportFailure(TaskSyncError):
    """The batch submission call itself did not complete.

    Covers connection errors, timeouts, non-success HTTP statuses and
    response bodies that cannot be parsed. Retryable.
    """
