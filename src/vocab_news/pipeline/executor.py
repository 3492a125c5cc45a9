"""Checkpointed four-stage pipeline executor."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from vocab_news.pipeline.checkpoint import (
    Checkpoint,
    ConversionCheckpoint,
    DraftCheckpoint,
    PendingCheckpoint,
    ResearchCheckpoint,
    StageInputs,
    WordSelectionCheckpoint,
    checkpoint_from_document,
)
from vocab_news.pipeline.contracts import STAGE_ORDER, GenerationClient, PipelineStage, StageResult
from vocab_news.pipeline.heartbeat import DEFAULT_HEARTBEAT_SECONDS, LeaseHeartbeat
from vocab_news.pipeline.validator import (
    collect_source_urls,
    normalize_article_output,
    validate_article_output,
    validate_selected_words,
)
from vocab_news.tasks.errors import CheckpointError, SchemaValidationError, StageError
from vocab_news.tasks.models import ExecutionOutcome, GenerationMode, TaskView
from vocab_news.tasks.queue import TaskQueue
from vocab_news.tasks.sources import SqlProfileSource, SqlWordSource

logger = logging.getLogger(__name__)

_CheckpointT = TypeVar("_CheckpointT", bound=PendingCheckpoint)


class PipelineExecutor:
    """Runs the remaining stages of a claimed task and checkpoints each one.

    The executor never changes task status; the drain loop completes or fails the
    row from the returned outcome or the raised error.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue: TaskQueue,
        client: GenerationClient,
        profile_source: SqlProfileSource | None = None,
        word_source: SqlWordSource | None = None,
        heartbeat_interval_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
        default_llm: str | None = None,
    ) -> None:
        if heartbeat_interval_seconds >= queue.lease.total_seconds():
            raise ValueError("Heartbeat interval must be shorter than the queue lease.")
        self.queue = queue
        self.client = client
        self.profile_source = profile_source or queue.profile_source
        self.word_source = word_source or queue.word_source
        self.heartbeat_interval_seconds = heartbeat_interval_seconds
        self.default_llm = default_llm

    def execute(self, task: TaskView) -> ExecutionOutcome:
        """Resume ``task`` from its checkpoint and run every stage not yet done.

        Raises:
            StageError: a stage failed or produced an unusable artifact.
            LeaseLost: another worker reclaimed the task mid-run.
        """

        checkpoint = checkpoint_from_document(task.checkpoint)
        if checkpoint.stage_inputs is None:
            checkpoint = PendingCheckpoint(stage_inputs=self._resolve_stage_inputs(task))
            self._persist(task, checkpoint)

        stages_run: list[str] = []
        for stage in STAGE_ORDER:
            if checkpoint.has_completed(stage):
                logger.debug("Task %s: skipping completed stage %s", task.task_id, stage.value)
                continue
            result = self._run_stage(task, stage, checkpoint)
            checkpoint = self._advance(checkpoint, stage, result)
            self._persist(task, checkpoint)
            stages_run.append(stage.value)
            logger.info("Task %s: stage %s checkpointed", task.task_id, stage.value)

        if not isinstance(checkpoint, ConversionCheckpoint):
            raise StageError("checkpoint", f"pipeline ended at stage {checkpoint.stage!r}")
        return ExecutionOutcome(
            task_id=task.task_id,
            stages_run=stages_run,
            output=dict(checkpoint.output),
            usage_metrics=dict(checkpoint.usage_metrics),
        )

    def _resolve_stage_inputs(self, task: TaskView) -> StageInputs:
        if task.mode == GenerationMode.IMPRESSION:
            # Impression inputs are fixed at enqueue time.
            raise StageError("word_selection", "impression task has no stored candidate words")

        topic_preference = ""
        if task.profile_id is not None:
            profile = self.profile_source.get_profile(task.profile_id)
            if profile is None:
                raise StageError(
                    "word_selection",
                    f"profile {task.profile_id} not found",
                    context={"profile_id": task.profile_id},
                )
            topic_preference = profile.topic_preference

        daily_words = self.word_source.daily_candidates(task.task_date)
        if not daily_words:
            raise StageError(
                "word_selection",
                f"no candidate words for {task.task_date}",
                context={"task_date": task.task_date},
            )
        used_words = self._used_words_today(task)
        candidates = [word for word in daily_words if word not in used_words]
        if not candidates:
            raise StageError(
                "word_selection",
                "All words have been used today",
                context={
                    "task_date": task.task_date,
                    "reason": "no_remaining_words",
                    "used_count": len(used_words),
                },
            )
        return StageInputs(
            current_date=task.task_date,
            candidate_words=tuple(candidates),
            topic_preference=topic_preference,
        )

    def _used_words_today(self, task: TaskView) -> set[str]:
        """Words already selected by other tasks of the same date."""

        used: set[str] = set()
        for document in self.queue.checkpoints_for_date(
            task.task_date,
            exclude_task_id=task.task_id,
        ):
            try:
                other = checkpoint_from_document(document)
            except CheckpointError as error:
                logger.warning(
                    "Task %s: ignoring unreadable checkpoint of another task: %s",
                    task.task_id,
                    error,
                )
                continue
            if isinstance(other, WordSelectionCheckpoint):
                used.update(other.selected_words)
        return used

    def _run_stage(
        self,
        task: TaskView,
        stage: PipelineStage,
        checkpoint: Checkpoint,
    ) -> StageResult:
        stage_inputs = {
            **_stage_inputs_for(stage, checkpoint),
            "llm": task.llm or self.default_llm,
        }
        with LeaseHeartbeat(
            self.queue,
            task.task_id,
            interval_seconds=self.heartbeat_interval_seconds,
        ):
            try:
                return self.client.run_stage(stage, checkpoint.history, stage_inputs)
            except StageError:
                raise
            except Exception as error:  # noqa: BLE001
                raise StageError(
                    stage.value,
                    str(error) or type(error).__name__,
                    context={"error_type": type(error).__name__},
                ) from error

    def _advance(
        self,
        checkpoint: Checkpoint,
        stage: PipelineStage,
        result: StageResult,
    ) -> Checkpoint:
        base: dict[str, Any] = {
            "stage_inputs": checkpoint.stage_inputs,
            "history": (*checkpoint.history, *(dict(entry) for entry in result.history_delta)),
            "usage_metrics": {**checkpoint.usage_metrics, stage.value: dict(result.usage)},
        }

        if stage == PipelineStage.WORD_SELECTION:
            words, error = validate_selected_words(result.artifact)
            if error is not None:
                raise StageError(stage.value, error, context={"raw_artifact": result.artifact})
            return WordSelectionCheckpoint(**base, selected_words=tuple(words))

        selected = _expect(checkpoint, WordSelectionCheckpoint, stage)
        base["selected_words"] = selected.selected_words
        if stage == PipelineStage.RESEARCH:
            return ResearchCheckpoint(**base, source_urls=tuple(collect_source_urls(result.artifact)))

        researched = _expect(checkpoint, ResearchCheckpoint, stage)
        base["source_urls"] = researched.source_urls
        if stage == PipelineStage.DRAFT:
            draft_text = result.artifact
            if not isinstance(draft_text, str) or not draft_text.strip():
                raise StageError(stage.value, "draft must be non-empty text")
            return DraftCheckpoint(**base, draft_text=draft_text)

        drafted = _expect(checkpoint, DraftCheckpoint, stage)
        validation = validate_article_output(result.artifact)
        if not validation.is_valid or validation.payload is None:
            raise SchemaValidationError(stage.value, validation.errors, result.artifact)
        return ConversionCheckpoint(
            **base,
            draft_text=drafted.draft_text,
            output=normalize_article_output(validation.payload),
        )

    def _persist(self, task: TaskView, checkpoint: Checkpoint) -> None:
        self.queue.save_checkpoint(
            task.task_id,
            checkpoint.to_document(),
            expected_version=task.version,
        )


def _stage_inputs_for(stage: PipelineStage, checkpoint: Checkpoint) -> Mapping[str, Any]:
    inputs = checkpoint.stage_inputs
    if inputs is None:
        raise StageError(stage.value, "stage inputs were never resolved")

    if stage == PipelineStage.WORD_SELECTION:
        payload: dict[str, Any] = {
            "candidate_words": list(inputs.candidate_words),
            "topic_preference": inputs.topic_preference,
            "current_date": inputs.current_date,
        }
        if inputs.target_length is not None:
            payload["target_length"] = inputs.target_length
        return payload

    selected = _expect(checkpoint, WordSelectionCheckpoint, stage)
    if stage == PipelineStage.RESEARCH:
        return {
            "selected_words": list(selected.selected_words),
            "topic_preference": inputs.topic_preference,
            "current_date": inputs.current_date,
        }

    researched = _expect(checkpoint, ResearchCheckpoint, stage)
    if stage == PipelineStage.DRAFT:
        return {
            "selected_words": list(researched.selected_words),
            "source_urls": list(researched.source_urls),
            "topic_preference": inputs.topic_preference,
            "current_date": inputs.current_date,
        }

    drafted = _expect(checkpoint, DraftCheckpoint, stage)
    return {
        "draft_text": drafted.draft_text,
        "source_urls": list(drafted.source_urls),
        "selected_words": list(drafted.selected_words),
    }


def _expect(
    checkpoint: Checkpoint,
    variant: type[_CheckpointT],
    stage: PipelineStage,
) -> _CheckpointT:
    if not isinstance(checkpoint, variant):
        raise CheckpointError(
            "checkpoint",
            f"stage {stage.value} cannot follow checkpoint stage {checkpoint.stage!r}",
        )
    return checkpoint
