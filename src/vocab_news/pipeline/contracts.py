"""Generation capability contract consumed by the pipeline executor."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

HistoryEntry = dict[str, Any]
History = tuple[HistoryEntry, ...]


class PipelineStage(str, Enum):
    """Pipeline stages in execution order."""

    WORD_SELECTION = "word_selection"
    RESEARCH = "research"
    DRAFT = "draft"
    CONVERSION = "conversion"

    @property
    def position(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER: tuple[PipelineStage, ...] = (
    PipelineStage.WORD_SELECTION,
    PipelineStage.RESEARCH,
    PipelineStage.DRAFT,
    PipelineStage.CONVERSION,
)


@dataclass(slots=True)
class StageResult:
    """What one stage call returns.

    ``history_delta`` holds only the entries this stage appends; the executor
    owns the accumulated history.
    """

    history_delta: list[HistoryEntry]
    artifact: Any
    usage: dict[str, Any] = field(default_factory=dict)


class GenerationClient(Protocol):
    """Protocol implemented by generation backends.

    ``stage_inputs`` keys per stage:

    - ``word_selection``: ``candidate_words``, ``topic_preference``, ``current_date``
      and optionally ``target_length``.
    - ``research``: ``selected_words``, ``topic_preference``, ``current_date``.
    - ``draft``: ``selected_words``, ``source_urls``, ``topic_preference``,
      ``current_date``.
    - ``conversion``: ``draft_text``, ``source_urls``, ``selected_words``.

    Every stage also receives ``llm``: the task provider hint, falling back to the
    worker default, or ``None`` when neither is set.

    Retries and timeouts of the underlying call are the implementation's concern.
    """

    def run_stage(
        self,
        stage: PipelineStage,
        history: History,
        stage_inputs: Mapping[str, Any],
    ) -> StageResult:
        """Run one stage and return its history delta, artifact and usage."""
