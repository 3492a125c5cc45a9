"""CLI entrypoint for vocab-news."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from vocab_news import __version__
from vocab_news.controllers import (
    TaskCliController,
    TaskEnqueueCommand,
    TaskInspectCommand,
    TaskListCommand,
    WorkerRunCommand,
)
from vocab_news.tasks.errors import TaskQueueError
from vocab_news.tasks.models import GenerationMode, TaskStatus, TriggerSource

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()


@click.group()
@click.version_option(version=__version__, prog_name="vocab-news")
def vocab_news() -> None:
    """Vocabulary news generation queue CLI."""

    logging.basicConfig(
        level=os.getenv("VOCAB_NEWS_LOG_LEVEL", "INFO").strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@vocab_news.group()
def tasks() -> None:
    """Task queue commands."""


@tasks.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--date", "task_date", default=None, help="Task date (YYYY-MM-DD), default today.")
@click.option(
    "--mode",
    type=click.Choice([mode.value for mode in GenerationMode]),
    default=GenerationMode.RSS.value,
    show_default=True,
    help="`rss` uses the day's words per profile, `impression` samples the vocabulary.",
)
@click.option(
    "--trigger",
    "trigger_source",
    type=click.Choice([trigger.value for trigger in TriggerSource]),
    default=TriggerSource.MANUAL.value,
    show_default=True,
)
@click.option("--llm", default=None, help="Opaque model selector stored on the task.")
@click.option(
    "--word-count",
    type=click.IntRange(min=1),
    default=None,
    help="Impression mode sample size (default from VOCAB_NEWS_IMPRESSION_WORD_COUNT).",
)
def tasks_enqueue(  # noqa: PLR0913
    db_path: Path | None,
    task_date: str | None,
    mode: str,
    trigger_source: str,
    llm: str | None,
    word_count: int | None,
) -> None:
    """Enqueue generation tasks for a date."""

    _run(
        lambda: TASK_CONTROLLER.enqueue(
            TaskEnqueueCommand(
                db_path=db_path,
                task_date=task_date,
                mode=mode,
                trigger_source=trigger_source,
                llm=llm,
                word_count=word_count,
            ),
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--date", "task_date", default=None, help="Only tasks for this date.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus]),
    default=None,
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
)
def tasks_list(
    db_path: Path | None,
    task_date: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List tasks in queue order."""

    _run(
        lambda: TASK_CONTROLLER.list_tasks(
            TaskListCommand(db_path=db_path, task_date=task_date, status=status, limit=limit),
        ),
    )


@tasks.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def tasks_inspect(db_path: Path | None, task_id: str) -> None:
    """Show one task with its lease, checkpoint stage and error context."""

    _run(lambda: TASK_CONTROLLER.inspect_task(TaskInspectCommand(db_path=db_path, task_id=task_id)))


@vocab_news.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--once", is_flag=True, help="Drain the queue once and exit.")
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Exit after this many consecutive empty drains.",
)
def worker_run(db_path: Path | None, once: bool, max_idle_polls: int | None) -> None:
    """Run the queue worker with the offline echo client."""

    _run(
        lambda: TASK_CONTROLLER.run_worker(
            WorkerRunCommand(db_path=db_path, once=once, max_idle_polls=max_idle_polls),
        ),
    )


def _run(action: Callable[[], list[str]]) -> None:
    try:
        lines = action()
    except (TaskQueueError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    vocab_news()
