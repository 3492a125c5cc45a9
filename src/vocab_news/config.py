"""Runtime configuration for the generation queue and its workers."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


@dataclass(slots=True)
class QueueSettings:
    """Lease and claim settings."""

    lease_seconds: int = 300
    claim_max_attempts: int = 5
    sqlite_busy_timeout_ms: int = 5_000

    @property
    def lease(self) -> timedelta:
        return timedelta(seconds=self.lease_seconds)


@dataclass(slots=True)
class WorkerSettings:
    """Drain loop settings."""

    heartbeat_interval_seconds: float = 60.0
    poll_interval_seconds: float = 2.0
    max_idle_polls: int = 1
    default_llm: str | None = None


@dataclass(slots=True)
class ImpressionSettings:
    """Random-vocabulary generation settings."""

    word_count: int = 1024


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".vocab_news.db")
    log_level: str = "INFO"
    queue: QueueSettings = field(default_factory=QueueSettings)
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    impression: ImpressionSettings = field(default_factory=ImpressionSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("VOCAB_NEWS_DB_PATH", ".vocab_news.db")),
            log_level=os.getenv("VOCAB_NEWS_LOG_LEVEL", "INFO").strip().upper(),
            queue=QueueSettings(
                lease_seconds=int(os.getenv("VOCAB_NEWS_LEASE_SECONDS", "300")),
                claim_max_attempts=int(os.getenv("VOCAB_NEWS_CLAIM_MAX_ATTEMPTS", "5")),
                sqlite_busy_timeout_ms=int(
                    os.getenv("VOCAB_NEWS_SQLITE_BUSY_TIMEOUT_MS", "5000"),
                ),
            ),
            worker=WorkerSettings(
                heartbeat_interval_seconds=float(
                    os.getenv("VOCAB_NEWS_HEARTBEAT_INTERVAL_SECONDS", "60"),
                ),
                poll_interval_seconds=float(os.getenv("VOCAB_NEWS_POLL_INTERVAL_SECONDS", "2")),
                max_idle_polls=int(os.getenv("VOCAB_NEWS_MAX_IDLE_POLLS", "1")),
                default_llm=os.getenv("VOCAB_NEWS_DEFAULT_LLM") or None,
            ),
            impression=ImpressionSettings(
                word_count=int(os.getenv("VOCAB_NEWS_IMPRESSION_WORD_COUNT", "1024")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the queue cannot run with."""

        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"VOCAB_NEWS_LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}.")
        if self.queue.lease_seconds <= 0:
            raise ValueError("VOCAB_NEWS_LEASE_SECONDS must be > 0.")
        if self.queue.claim_max_attempts < 1:
            raise ValueError("VOCAB_NEWS_CLAIM_MAX_ATTEMPTS must be >= 1.")
        if self.queue.sqlite_busy_timeout_ms < 0:
            raise ValueError("VOCAB_NEWS_SQLITE_BUSY_TIMEOUT_MS must be >= 0.")
        if self.worker.heartbeat_interval_seconds <= 0:
            raise ValueError("VOCAB_NEWS_HEARTBEAT_INTERVAL_SECONDS must be > 0.")
        if self.worker.heartbeat_interval_seconds >= self.queue.lease_seconds:
            raise ValueError(
                "VOCAB_NEWS_HEARTBEAT_INTERVAL_SECONDS must be shorter than "
                "VOCAB_NEWS_LEASE_SECONDS.",
            )
        if self.worker.poll_interval_seconds < 0:
            raise ValueError("VOCAB_NEWS_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.worker.max_idle_polls < 1:
            raise ValueError("VOCAB_NEWS_MAX_IDLE_POLLS must be >= 1.")
        if self.impression.word_count <= 0:
            raise ValueError("VOCAB_NEWS_IMPRESSION_WORD_COUNT must be > 0.")
