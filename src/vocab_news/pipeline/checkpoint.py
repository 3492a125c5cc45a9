"""Versioned pipeline checkpoint document.

The checkpoint is a tagged union keyed by ``stage``: each variant records the
last completed stage and carries only the artifacts that exist at that point.
The queue stores the serialized document verbatim; only this module reads it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, ClassVar

from vocab_news.pipeline.contracts import STAGE_ORDER, History, PipelineStage
from vocab_news.tasks.errors import CheckpointError

CHECKPOINT_SCHEMA_VERSION = 1


@dataclass(frozen=True, slots=True)
class StageInputs:
    """Job-level inputs fixed before the first stage runs."""

    current_date: str
    candidate_words: tuple[str, ...]
    topic_preference: str = ""
    target_length: int | None = None

    def to_document(self) -> dict[str, Any]:
        document: dict[str, Any] = {
            "current_date": self.current_date,
            "candidate_words": list(self.candidate_words),
            "topic_preference": self.topic_preference,
        }
        if self.target_length is not None:
            document["target_length"] = self.target_length
        return document

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> StageInputs:
        candidate_words = document.get("candidate_words")
        if not isinstance(candidate_words, list) or not all(
            isinstance(word, str) for word in candidate_words
        ):
            raise CheckpointError("checkpoint", "stage_inputs.candidate_words must be a list of str")
        current_date = document.get("current_date")
        if not isinstance(current_date, str):
            raise CheckpointError("checkpoint", "stage_inputs.current_date must be a string")
        target_length = document.get("target_length")
        return cls(
            current_date=current_date,
            candidate_words=tuple(candidate_words),
            topic_preference=str(document.get("topic_preference") or ""),
            target_length=int(target_length) if target_length is not None else None,
        )


@dataclass(frozen=True, slots=True)
class PendingCheckpoint:
    """No stage has completed yet; inputs may already be fixed."""

    stage: ClassVar[PipelineStage | None] = None

    stage_inputs: StageInputs | None
    history: History = ()
    usage_metrics: Mapping[str, Any] = field(default_factory=dict)

    def has_completed(self, stage: PipelineStage) -> bool:
        if self.stage is None:
            return False
        return stage.position <= self.stage.position

    def artifacts(self) -> dict[str, Any]:
        return {}

    def to_document(self) -> dict[str, Any]:
        return {
            "schema_version": CHECKPOINT_SCHEMA_VERSION,
            "stage": self.stage.value if self.stage is not None else None,
            "history": [dict(entry) for entry in self.history],
            "stage_inputs": (
                self.stage_inputs.to_document() if self.stage_inputs is not None else None
            ),
            "stage_artifacts": self.artifacts(),
            "usage_metrics": dict(self.usage_metrics),
        }


@dataclass(frozen=True, slots=True)
class WordSelectionCheckpoint(PendingCheckpoint):
    stage: ClassVar[PipelineStage | None] = PipelineStage.WORD_SELECTION

    selected_words: tuple[str, ...] = ()

    def artifacts(self) -> dict[str, Any]:
        return {"selected_words": list(self.selected_words)}


@dataclass(frozen=True, slots=True)
class ResearchCheckpoint(WordSelectionCheckpoint):
    stage: ClassVar[PipelineStage | None] = PipelineStage.RESEARCH

    source_urls: tuple[str, ...] = ()

    def artifacts(self) -> dict[str, Any]:
        return {
            "selected_words": list(self.selected_words),
            "source_urls": list(self.source_urls),
        }


@dataclass(frozen=True, slots=True)
class DraftCheckpoint(ResearchCheckpoint):
    stage: ClassVar[PipelineStage | None] = PipelineStage.DRAFT

    draft_text: str = ""

    def artifacts(self) -> dict[str, Any]:
        return {
            "selected_words": list(self.selected_words),
            "source_urls": list(self.source_urls),
            "draft_text": self.draft_text,
        }


@dataclass(frozen=True, slots=True)
class ConversionCheckpoint(DraftCheckpoint):
    stage: ClassVar[PipelineStage | None] = PipelineStage.CONVERSION

    output: Mapping[str, Any] = field(default_factory=dict)

    def artifacts(self) -> dict[str, Any]:
        return {
            "selected_words": list(self.selected_words),
            "source_urls": list(self.source_urls),
            "draft_text": self.draft_text,
            "output": dict(self.output),
        }


Checkpoint = (
    PendingCheckpoint
    | WordSelectionCheckpoint
    | ResearchCheckpoint
    | DraftCheckpoint
    | ConversionCheckpoint
)

_VARIANTS: dict[PipelineStage | None, type[PendingCheckpoint]] = {
    None: PendingCheckpoint,
    PipelineStage.WORD_SELECTION: WordSelectionCheckpoint,
    PipelineStage.RESEARCH: ResearchCheckpoint,
    PipelineStage.DRAFT: DraftCheckpoint,
    PipelineStage.CONVERSION: ConversionCheckpoint,
}


def pending_checkpoint(stage_inputs: StageInputs) -> PendingCheckpoint:
    return PendingCheckpoint(stage_inputs=stage_inputs)


def checkpoint_from_document(document: Mapping[str, Any] | None) -> Checkpoint:  # noqa: C901
    """Parse a stored checkpoint; an absent document means nothing ran yet."""

    if document is None:
        return PendingCheckpoint(stage_inputs=None)
    if not isinstance(document, Mapping):
        raise CheckpointError("checkpoint", "checkpoint document must be a JSON object")

    schema_version = document.get("schema_version")
    if schema_version != CHECKPOINT_SCHEMA_VERSION:
        raise CheckpointError(
            "checkpoint",
            f"unsupported checkpoint schema_version={schema_version!r}",
        )

    raw_stage = document.get("stage")
    try:
        stage = PipelineStage(raw_stage) if raw_stage is not None else None
    except ValueError as error:
        raise CheckpointError("checkpoint", f"unknown checkpoint stage {raw_stage!r}") from error

    history = document.get("history") or []
    if not isinstance(history, list) or not all(isinstance(entry, dict) for entry in history):
        raise CheckpointError("checkpoint", "history must be a list of objects")

    raw_inputs = document.get("stage_inputs")
    stage_inputs = StageInputs.from_document(raw_inputs) if raw_inputs is not None else None
    if stage is not None and stage_inputs is None:
        raise CheckpointError("checkpoint", f"stage {stage.value} recorded without stage_inputs")

    usage = document.get("usage_metrics") or {}
    if not isinstance(usage, dict):
        raise CheckpointError("checkpoint", "usage_metrics must be an object")

    artifacts = document.get("stage_artifacts") or {}
    if not isinstance(artifacts, dict):
        raise CheckpointError("checkpoint", "stage_artifacts must be an object")

    variant = _VARIANTS[stage]
    kwargs: dict[str, Any] = {
        "stage_inputs": stage_inputs,
        "history": tuple(history),
        "usage_metrics": usage,
    }
    reached = STAGE_ORDER.index(stage) + 1 if stage is not None else 0
    required = STAGE_ORDER[:reached]
    if PipelineStage.WORD_SELECTION in required:
        kwargs["selected_words"] = tuple(_string_list(artifacts, "selected_words"))
    if PipelineStage.RESEARCH in required:
        kwargs["source_urls"] = tuple(_string_list(artifacts, "source_urls"))
    if PipelineStage.DRAFT in required:
        draft_text = artifacts.get("draft_text")
        if not isinstance(draft_text, str):
            raise CheckpointError("checkpoint", "stage_artifacts.draft_text must be a string")
        kwargs["draft_text"] = draft_text
    if PipelineStage.CONVERSION in required:
        output = artifacts.get("output")
        if not isinstance(output, dict):
            raise CheckpointError("checkpoint", "stage_artifacts.output must be an object")
        kwargs["output"] = output
    return variant(**kwargs)


def _string_list(artifacts: Mapping[str, Any], key: str) -> list[str]:
    value = artifacts.get(key)
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise CheckpointError("checkpoint", f"stage_artifacts.{key} must be a list of str")
    return value
