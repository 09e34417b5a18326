"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import select

from tasksync.config import Settings
from tasksync.db import init_db, make_engine, make_session_factory
from tasksync.models import MutationQueueEntry, Task
from tasksync.reconciler import ReconciliationEngine
from tasksync.repository import TaskRepository
from tasksync.schemas import ItemOutcome


class FakeAuthority:
    """Scripted stand-in for RemoteAuthorityClient.

    ``responses`` is consumed one per submitted batch; each element is either
    an exception to raise or a callable ``entries -> outcomes``. When it runs
    dry every entry is accepted.
    """

    def __init__(self, online=True):
        self.online = online
        self.responses = []
        self.batches = []
        self.probes = 0
        self.closed = False

    def probe(self):
        self.probes += 1
        return self.online

    def submit_batch(self, entries):
        self.batches.append(list(entries))
        response = self.responses.pop(0) if self.responses else accept_all
        if isinstance(response, Exception):
            raise response
        return response(entries)

    def close(self):
        self.closed = True


def accept_all(entries):
    return [
        ItemOutcome(client_id=e.task_id, server_id=f"srv-{e.task_id}", status="success")
        for e in entries
    ]


def reject_all(message):
    def _reject(entries):
        return [ItemOutcome(client_id=e.task_id, status="error", error=message) for e in entries]

    return _reject


def dump_store(session_factory):
    """Every column of every row, for before/after comparisons."""
    with session_factory() as session:
        tasks = [
            tuple(getattr(t, c.key) for c in Task.__table__.columns)
            for t in session.execute(select(Task).order_by(Task.id)).scalars()
        ]
        entries = [
            tuple(getattr(e, c.key) for c in MutationQueueEntry.__table__.columns)
            for e in session.execute(
                select(MutationQueueEntry).order_by(MutationQueueEntry.seq)
            ).scalars()
        ]
    return tasks, entries


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        api_base_url="http://authority.test/api",
        sync_batch_size=50,
        sync_max_retries=3,
        request_timeout=5.0,
    )


@pytest.fixture
def session_factory(settings):
    engine = make_engine(settings.database_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repo(session_factory):
    return TaskRepository(session_factory)


@pytest.fixture
def authority():
    return FakeAuthority()


@pytest.fixture
def make_reconciler(session_factory, authority, settings):
    """Build an engine, optionally overriding settings fields."""

    def _make(**overrides):
        engine_settings = settings.model_copy(update=overrides) if overrides else settings
        return ReconciliationEngine(session_factory, authority, engine_settings)

    return _make
