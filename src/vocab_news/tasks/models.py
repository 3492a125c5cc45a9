"""Domain models for the generation task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Durable task lifecycle states."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    # Terminal, but nothing transitions into it yet.
    CANCELED = "canceled"


class TriggerSource(str, Enum):
    """Who asked for the task."""

    MANUAL = "manual"
    CRON = "cron"


class GenerationMode(str, Enum):
    """Where the candidate words of a task come from."""

    RSS = "rss"
    IMPRESSION = "impression"


class WordType(str, Enum):
    NEW = "new"
    REVIEW = "review"


@dataclass(slots=True)
class ProfileRef:
    """Profile fields the core is allowed to read."""

    profile_id: str
    name: str
    topic_preference: str = ""


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI and worker logic."""

    task_id: str
    task_date: str
    trigger_source: TriggerSource
    mode: GenerationMode
    llm: str | None
    profile_id: str | None
    status: TaskStatus
    version: int
    locked_until: datetime | None
    checkpoint: dict[str, Any] | None
    error_message: str | None
    error_context: dict[str, Any] | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None
    published_at: datetime | None

    def holds_lease(self, now: datetime) -> bool:
        """Whether the task is running under a lease that has not expired at ``now``."""

        return (
            self.status == TaskStatus.RUNNING
            and self.locked_until is not None
            and self.locked_until > now
        )


@dataclass(slots=True)
class EnqueuedTask:
    """One row created by an enqueue call."""

    task_id: str
    task_date: str
    mode: GenerationMode
    profile_id: str | None
    profile_name: str | None
    candidate_count: int | None = None


@dataclass(slots=True)
class ExecutionOutcome:
    """What the executor hands back after the final stage checkpoint was stored."""

    task_id: str
    stages_run: list[str] = field(default_factory=list)
    output: dict[str, Any] = field(default_factory=dict)
    usage_metrics: dict[str, Any] = field(default_factory=dict)
