"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from vocab_news.storage.database import Database
from vocab_news.tasks.queue import TaskQueue
from vocab_news.tasks.sources import SqlProfileSource, SqlWordSource

T0 = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0) -> None:
        self.start = start
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "queue.db"


@pytest.fixture()
def database(db_path: Path) -> Iterator[Database]:
    db = Database(db_path)
    db.init_schema()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def queue(database: Database, clock: FakeClock) -> TaskQueue:
    return TaskQueue(database, clock=clock)


@pytest.fixture()
def words(database: Database, clock: FakeClock) -> SqlWordSource:
    return SqlWordSource(database, clock=clock)


@pytest.fixture()
def profiles(database: Database, clock: FakeClock) -> SqlProfileSource:
    return SqlProfileSource(database, clock=clock)
