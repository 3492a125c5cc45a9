from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import allure
import pytest

from vocab_news.pipeline.contracts import History, PipelineStage, StageResult
from vocab_news.pipeline.echo_client import EchoGenerationClient
from vocab_news.pipeline.executor import PipelineExecutor
from vocab_news.tasks.errors import ClaimConflict, LeaseLost, StorageUnavailable
from vocab_news.tasks.models import TaskStatus
from vocab_news.tasks.queue import TaskQueue
from vocab_news.tasks.sources import SqlProfileSource, SqlWordSource
from vocab_news.worker import TaskWorker

pytestmark = [
    allure.epic("Generation Queue"),
    allure.feature("Drain Loop"),
]


class FailFirstSelectionClient(EchoGenerationClient):
    """Echo client whose first word selection call blows up."""

    def __init__(self) -> None:
        super().__init__(max_words=1)
        self.failed_once = False
        self.topics: list[str] = []

    def run_stage(
        self,
        stage: PipelineStage,
        history: History,
        stage_inputs: Mapping[str, Any],
    ) -> StageResult:
        if stage == PipelineStage.WORD_SELECTION:
            self.topics.append(stage_inputs["topic_preference"])
            if not self.failed_once:
                self.failed_once = True
                raise TimeoutError("model timed out")
        return super().run_stage(stage, history, stage_inputs)


def _seed(words: SqlWordSource, profiles: SqlProfileSource, clock, *names: str) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid", "candid"))
    for name in names:
        profiles.add_profile(name=name, topic_preference=name.lower())
        clock.advance(seconds=1)


def _worker(queue: TaskQueue, client: EchoGenerationClient | None = None) -> TaskWorker:
    return TaskWorker(
        queue=queue,
        executor=PipelineExecutor(queue=queue, client=client or EchoGenerationClient()),
        poll_interval_seconds=0,
    )


def test_drain_runs_every_task_in_enqueue_order(
    queue: TaskQueue,
    words: SqlWordSource,
    profiles: SqlProfileSource,
    clock,
) -> None:
    _seed(words, profiles, clock, "Alpha", "Beta")
    queue.enqueue("2024-01-01")
    client = FailFirstSelectionClient()
    client.failed_once = True

    summary = _worker(queue, client).drain()

    assert summary.processed == 2
    assert summary.succeeded == 2
    assert summary.failed == 0
    assert client.topics == ["alpha", "beta"]
    tasks = queue.list_tasks()
    assert {task.status for task in tasks} == {TaskStatus.SUCCEEDED}
    for task in tasks:
        assert task.published_at == task.finished_at
        assert task.checkpoint is not None
        assert task.checkpoint["stage"] == "conversion"
    assert [task.checkpoint["stage_artifacts"]["selected_words"] for task in tasks] == [
        ["lucid"],
        ["candid"],
    ]


def test_stage_failure_is_isolated_to_its_task(
    queue: TaskQueue,
    words: SqlWordSource,
    profiles: SqlProfileSource,
    clock,
) -> None:
    _seed(words, profiles, clock, "Alpha", "Beta")
    queue.enqueue("2024-01-01")

    summary = _worker(queue, FailFirstSelectionClient()).drain()

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.succeeded == 1
    failed, succeeded = queue.list_tasks()
    assert failed.status == TaskStatus.FAILED
    assert failed.locked_until is None
    assert failed.error_message == "Stage word_selection failed: model timed out"
    assert failed.error_context == {"error_type": "TimeoutError", "stage": "word_selection"}
    assert succeeded.status == TaskStatus.SUCCEEDED


def test_schema_failure_records_raw_payload(queue: TaskQueue, words: SqlWordSource) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid",))
    queue.enqueue("2024-01-01")

    class _BadDocumentClient(EchoGenerationClient):
        def run_stage(self, stage, history, stage_inputs) -> StageResult:
            if stage == PipelineStage.CONVERSION:
                return StageResult(history_delta=[], artifact={"title": "x"})
            return super().run_stage(stage, history, stage_inputs)

    summary = _worker(queue, _BadDocumentClient()).drain()

    assert summary.failed == 1
    (task,) = queue.list_tasks()
    assert task.error_context is not None
    assert task.error_context["stage"] == "conversion"
    assert task.error_context["raw_payload"] == {"title": "x"}
    assert task.error_context["errors"]


def test_unexpected_error_fails_task_with_execution_context(
    queue: TaskQueue,
    words: SqlWordSource,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid",))
    queue.enqueue("2024-01-01")
    worker = _worker(queue)

    def _explode(task):
        raise KeyError("stage_inputs")

    monkeypatch.setattr(worker.executor, "execute", _explode)
    summary = worker.drain()

    assert summary.failed == 1
    (task,) = queue.list_tasks()
    assert task.status == TaskStatus.FAILED
    assert task.error_context == {"error_type": "KeyError", "stage": "execution"}


def test_lease_lost_leaves_row_to_new_owner(
    queue: TaskQueue,
    words: SqlWordSource,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid",))
    queue.enqueue("2024-01-01")
    worker = _worker(queue)

    def _lose(task):
        raise LeaseLost(task.task_id, task.version)

    monkeypatch.setattr(worker.executor, "execute", _lose)
    summary = worker.run_once()

    assert summary.processed == 1
    assert summary.lost_leases == 1
    assert summary.failed == 0
    (task,) = queue.list_tasks()
    assert task.status == TaskStatus.RUNNING
    assert task.error_message is None


def test_storage_unavailable_propagates_out_of_drain(
    queue: TaskQueue,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _offline():
        raise StorageUnavailable("Task store unavailable: disk I/O error")

    monkeypatch.setattr(queue, "claim_task", _offline)

    with pytest.raises(StorageUnavailable):
        _worker(queue).drain()


def test_claim_conflict_ends_drain_pass_quietly(
    queue: TaskQueue,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def _contended():
        raise ClaimConflict("task-1", 3)

    monkeypatch.setattr(queue, "claim_task", _contended)

    summary = _worker(queue).drain()

    assert summary.processed == 0
    assert summary.idle_polls == 1


def test_run_loop_stops_after_consecutive_idle_drains(
    queue: TaskQueue,
    words: SqlWordSource,
) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid",))
    queue.enqueue("2024-01-01")

    summary = _worker(queue).run_loop(max_idle_polls=2)

    assert summary.processed == 1
    assert summary.succeeded == 1
    assert summary.idle_polls == 3


def test_stop_request_prevents_new_claims(queue: TaskQueue, words: SqlWordSource) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid",))
    queue.enqueue("2024-01-01")
    worker = _worker(queue)

    worker.request_stop()
    summary = worker.run_loop(max_idle_polls=5)

    assert summary.processed == 0
    (task,) = queue.list_tasks()
    assert task.status == TaskStatus.QUEUED


def test_same_day_tasks_never_reuse_selected_words(
    queue: TaskQueue,
    words: SqlWordSource,
    profiles: SqlProfileSource,
    clock,
) -> None:
    words.add_daily_words("2024-01-01", new_words=("lucid", "candid", "wary"))
    for name in ("Alpha", "Beta", "Gamma"):
        profiles.add_profile(name=name)
        clock.advance(seconds=1)
    queue.enqueue("2024-01-01")

    summary = _worker(queue, EchoGenerationClient(max_words=2)).drain()

    assert summary.succeeded == 2
    assert summary.failed == 1
    first, second, third = queue.list_tasks()
    assert first.checkpoint is not None
    assert first.checkpoint["stage_artifacts"]["selected_words"] == ["lucid", "candid"]
    assert second.checkpoint is not None
    assert second.checkpoint["stage_inputs"]["candidate_words"] == ["wary"]
    assert second.checkpoint["stage_artifacts"]["selected_words"] == ["wary"]
    assert third.status == TaskStatus.FAILED
    assert third.error_message == "Stage word_selection failed: All words have been used today"
    assert third.error_context == {
        "reason": "no_remaining_words",
        "stage": "word_selection",
        "task_date": "2024-01-01",
        "used_count": 3,
    }
