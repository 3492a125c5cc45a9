"""Controllers for queue and worker CLI commands."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from vocab_news.config import Settings
from vocab_news.pipeline.contracts import GenerationClient
from vocab_news.pipeline.echo_client import EchoGenerationClient
from vocab_news.pipeline.executor import PipelineExecutor
from vocab_news.storage.database import Database
from vocab_news.tasks.models import GenerationMode, TaskStatus, TaskView, TriggerSource
from vocab_news.tasks.queue import TaskQueue
from vocab_news.worker import TaskWorker


@dataclass(slots=True)
class TaskEnqueueCommand:
    """CLI input for task enqueue."""

    db_path: Path | None
    task_date: str | None
    mode: str
    trigger_source: str
    llm: str | None
    word_count: int | None = None


@dataclass(slots=True)
class TaskListCommand:
    """CLI input for task listing."""

    db_path: Path | None
    task_date: str | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskInspectCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    once: bool
    max_idle_polls: int | None = None


class TaskCliController:
    """Coordinates enqueue, worker, and inspection CLI operations."""

    def __init__(
        self,
        client_factory: Callable[[], GenerationClient] = EchoGenerationClient,
    ) -> None:
        self.client_factory = client_factory

    def enqueue(self, command: TaskEnqueueCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        task_date = command.task_date or date.today().isoformat()
        date.fromisoformat(task_date)
        with _queue(settings) as queue:
            created = queue.enqueue(
                task_date,
                trigger_source=TriggerSource(command.trigger_source),
                llm=command.llm,
                mode=GenerationMode(command.mode),
                word_count=command.word_count or settings.impression.word_count,
            )

        lines = [f"Enqueued {len(created)} task(s) for {task_date}"]
        for task in created:
            detail = (
                f"profile={task.profile_name}"
                if task.profile_name is not None
                else f"candidates={task.candidate_count}"
            )
            lines.append(f"  {task.task_id} mode={task.mode.value} {detail}")
        return lines

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        with _queue(settings) as queue:
            worker = TaskWorker(
                queue=queue,
                executor=PipelineExecutor(
                    queue=queue,
                    client=self.client_factory(),
                    heartbeat_interval_seconds=settings.worker.heartbeat_interval_seconds,
                    default_llm=settings.worker.default_llm,
                ),
                poll_interval_seconds=settings.worker.poll_interval_seconds,
            )
            summary = (
                worker.drain()
                if command.once
                else worker.run_loop(
                    max_idle_polls=command.max_idle_polls or settings.worker.max_idle_polls,
                )
            )

        return [
            "Worker summary: "
            f"processed={summary.processed} succeeded={summary.succeeded} "
            f"failed={summary.failed} lost_leases={summary.lost_leases} "
            f"idle_polls={summary.idle_polls}",
        ]

    def list_tasks(self, command: TaskListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = TaskStatus(command.status) if command.status else None
        with _queue(settings) as queue:
            tasks = queue.list_tasks(
                task_date=command.task_date,
                status=status_filter,
                limit=command.limit,
            )

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} date={task.task_date} mode={task.mode.value} "
                f"status={task.status.value} version={task.version} "
                f"stage={_checkpoint_stage(task)}",
            )
        return lines

    def inspect_task(self, command: TaskInspectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _queue(settings) as queue:
            task = queue.get_task(command.task_id)
        if task is None:
            return [f"Task not found: {command.task_id}"]

        lines = [
            f"Task: {task.task_id}",
            f"Date: {task.task_date}",
            f"Mode: {task.mode.value}",
            f"Trigger: {task.trigger_source.value}",
            f"LLM: {task.llm or '-'}",
            f"Profile: {task.profile_id or '-'}",
            f"Status: {task.status.value}",
            f"Version: {task.version}",
            f"Locked until: {_iso(task.locked_until)}",
            f"Started: {_iso(task.started_at)}",
            f"Finished: {_iso(task.finished_at)}",
            f"Checkpoint stage: {_checkpoint_stage(task)}",
            f"Error: {task.error_message or '-'}",
        ]
        if task.error_context:
            lines.append(
                "Error context: " + json.dumps(task.error_context, ensure_ascii=False, default=str),
            )
        return lines


def _checkpoint_stage(task: TaskView) -> str:
    if not task.checkpoint:
        return "-"
    return str(task.checkpoint.get("stage") or "pending")


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else "-"


@contextmanager
def _queue(settings: Settings) -> Iterator[TaskQueue]:
    database = Database(
        settings.db_path,
        busy_timeout_ms=settings.queue.sqlite_busy_timeout_ms,
    )
    database.init_schema()
    try:
        yield TaskQueue(
            database,
            lease=settings.queue.lease,
            claim_max_attempts=settings.queue.claim_max_attempts,
        )
    finally:
        database.close()
