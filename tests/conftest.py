"""Shared test fixtures for Tickler."""

from datetime import datetime

import pytest
from tickler.core.bus import EventBus
from tickler.core.config import TicklerConfig
from tickler.scheduler.store import IntentStore


@pytest.fixture
def config():
    """Create a default config without loading from disk."""
    return TicklerConfig()


@pytest.fixture
def bus():
    """Create a fresh event bus."""
    return EventBus()


@pytest.fixture
def store(tmp_path):
    """An intent store backed by a temp file (not yet initialised)."""
    return IntentStore(db_path=tmp_path / "scheduler.db")


@pytest.fixture
def reference():
    """Monday 2024-01-01 10:00 local time."""
    return datetime(2024, 1, 1, 10, 0, 0)
