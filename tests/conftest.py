"""Shared test fixtures."""
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from orchestrator.database import Base, make_session_factory


class FakeClock:
    """Controllable time source; call it to read, advance() to move it."""

    def __init__(self, start=datetime(2026, 1, 15, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import orchestrator.models  # noqa: F401
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine, clock):
    from orchestrator.services.store import EntityStore
    return EntityStore(make_session_factory(db_engine), clock=clock)


@pytest.fixture
def pipeline(store):
    from orchestrator.pipeline.stages import PipelineStageManager
    return PipelineStageManager(store)


@pytest.fixture
def dispatcher():
    return MagicMock()


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def scheduler(store, pipeline, dispatcher, notifier, clock):
    from orchestrator.scheduler import TaskScheduler
    return TaskScheduler(
        store, pipeline=pipeline, dispatcher=dispatcher, notifier=notifier, clock=clock,
        retry_base=60, retry_cap=3600, overrun_factor=1.5,
    )


@pytest.fixture
def rule_engine(store, scheduler, notifier):
    from orchestrator.rules.engine import RuleEngine
    return RuleEngine(store, scheduler, notifier=notifier)


@pytest.fixture
def engine(store, pipeline, scheduler, rule_engine):
    from orchestrator.engine import Orchestrator
    return Orchestrator(store, pipeline, scheduler, rule_engine)


@pytest.fixture
def make_lead(store):
    """Factory fixture — inserts a lead with sensible defaults."""
    def _make(**overrides):
        data = dict(name='Test Lead', phone='+971 50 000 0000', source='website', score=50)
        data.update(overrides)
        return store.create_lead(data)
    return _make


@pytest.fixture
def make_task(scheduler):
    """Factory fixture — schedules a lead_followup task (pending unless scheduled_at is later)."""
    def _make(**overrides):
        data = dict(name='Follow up', type='lead_followup', estimated_duration=10, max_retries=3)
        data.update(overrides)
        return scheduler.schedule(data)
    return _make


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.hgetall.return_value = {}
    mock.lrange.return_value = []
    with patch('orchestrator.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app(engine, mock_redis):
    """Flask test app wired to the in-memory engine."""
    from orchestrator import create_app
    app = create_app(orchestrator=engine)
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c
