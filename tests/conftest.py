"""Pytest fixtures shared across the test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from savannah.core.config import Settings
from savannah.relationship.processor import EmotionalEngine
from savannah.services.memory_store import InMemoryBackend, MemoryStore


class FrozenClock:
    """Manually advanced UTC clock; call it to read the time."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def cfg():
    return Settings(_env_file=None)


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def store(backend, clock):
    return MemoryStore(backend, clock=clock)


@pytest.fixture
def engine(store, cfg, clock):
    return EmotionalEngine(store=store, cfg=cfg, clock=clock)
