"""Shared fixtures: a temporary SQLite repository and a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from holdfast import logging as holdfast_logging
from holdfast.engine import create_engine
from holdfast.persistence.repository import HoldfastRepository

T0 = datetime(2026, 1, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now += timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path):
    """Send JSONL audit logs to a temp dir for every test."""
    log_dir = tmp_path / "logs"
    holdfast_logging.set_config(holdfast_logging.LogConfig(log_dir=log_dir))
    return log_dir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo(tmp_path):
    repository = HoldfastRepository(tmp_path / "holdfast.db")
    repository.initialize()
    yield repository
    repository.close()


@pytest.fixture
def engine(repo, clock):
    return create_engine(repo, clock=clock)
