"""Explicit store handle shared by the queue, sources and workers."""

from __future__ import annotations

from pathlib import Path

from sqlmodel import Session

from vocab_news.storage.alembic_runner import upgrade_head
from vocab_news.storage.common import build_sqlite_engine

DEFAULT_BUSY_TIMEOUT_MS = 5_000


class Database:
    """SQLite-backed task store handle.

    One instance per process (or per thread that wants its own engine). It owns
    no queue state; services such as :class:`~vocab_news.tasks.queue.TaskQueue`
    are constructed on top of it and passed to workers explicitly.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def session(self) -> Session:
        return Session(self.engine)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()
