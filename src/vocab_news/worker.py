"""Queue worker that drains generation tasks through the pipeline executor."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

from vocab_news.pipeline.executor import PipelineExecutor
from vocab_news.tasks.errors import ClaimConflict, LeaseLost, StageError, StorageUnavailable
from vocab_news.tasks.models import TaskView
from vocab_news.tasks.queue import TaskQueue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    lost_leases: int = 0
    idle_polls: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.lost_leases += other.lost_leases
        self.idle_polls += other.idle_polls


class TaskWorker:
    """Claims tasks one at a time and settles each one as succeeded or failed."""

    def __init__(
        self,
        *,
        queue: TaskQueue,
        executor: PipelineExecutor,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self.queue = queue
        self.executor = executor
        self.poll_interval_seconds = poll_interval_seconds
        self._stop = threading.Event()
        self._stop_signal_name: str | None = None

    def run_once(self) -> WorkerRunSummary:
        """Process at most one task from the queue."""

        summary = WorkerRunSummary()
        if self._stop.is_set():
            summary.idle_polls = 1
            return summary

        try:
            task = self.queue.claim_task()
        except ClaimConflict as error:
            logger.info("Giving up this pass after repeated claim races: %s", error)
            summary.idle_polls = 1
            return summary
        if task is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        self._process(task, summary)
        return summary

    def drain(self) -> WorkerRunSummary:
        """Run tasks until nothing is claimable.

        Stage failures are recorded on the task row and never stop the pass.
        ``StorageUnavailable`` is not caught.
        """

        aggregate = WorkerRunSummary()
        while not self._stop.is_set():
            summary = self.run_once()
            aggregate.add(summary)
            if summary.processed == 0:
                break
        logger.info(
            "Drain finished: processed=%d succeeded=%d failed=%d lost_leases=%d",
            aggregate.processed,
            aggregate.succeeded,
            aggregate.failed,
            aggregate.lost_leases,
        )
        return aggregate

    def run_loop(self, *, max_idle_polls: int = 1) -> WorkerRunSummary:
        """Drain repeatedly until idle for ``max_idle_polls`` passes or stopped."""

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stop.is_set():
                summary = self.drain()
                aggregate.add(summary)
                if summary.processed == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0
                self._stop.wait(timeout=self.poll_interval_seconds)
        if self._stop_signal_name is not None:
            logger.info("Worker stopped by %s", self._stop_signal_name)
        return aggregate

    def request_stop(self, *, signal_name: str = "request") -> None:
        """Stop after the task in flight; the current stage is never interrupted."""

        self._stop_signal_name = signal_name
        self._stop.set()

    def _process(self, task: TaskView, summary: WorkerRunSummary) -> None:
        try:
            outcome = self.executor.execute(task)
        except StorageUnavailable:
            raise
        except LeaseLost as error:
            logger.warning("Abandoning task %s: %s", task.task_id, error)
            summary.lost_leases = 1
            return
        except StageError as error:
            logger.warning("Task %s failed at stage %s: %s", task.task_id, error.stage, error)
            self._record_failure(task, str(error), error.context, summary)
            return
        except Exception as error:  # noqa: BLE001
            logger.exception("Unexpected error while executing task %s", task.task_id)
            self._record_failure(
                task,
                str(error) or type(error).__name__,
                {"stage": "execution", "error_type": type(error).__name__},
                summary,
            )
            return

        if self.queue.complete(task.task_id, expected_version=task.version):
            summary.succeeded = 1
            logger.info(
                "Task %s succeeded after stages %s",
                task.task_id,
                ", ".join(outcome.stages_run) or "(resumed at end)",
            )
        else:
            logger.warning("Task %s was reclaimed before it could complete", task.task_id)
            summary.lost_leases = 1

    def _record_failure(
        self,
        task: TaskView,
        message: str,
        context: dict[str, object],
        summary: WorkerRunSummary,
    ) -> None:
        if self.queue.fail(task.task_id, message, context, expected_version=task.version):
            summary.failed = 1
        else:
            logger.warning("Task %s was reclaimed before its failure was recorded", task.task_id)
            summary.lost_leases = 1

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if threading.current_thread() is not threading.main_thread():
            # Signal handlers can only be installed in the main thread.
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            self.request_stop(signal_name=name)

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)
