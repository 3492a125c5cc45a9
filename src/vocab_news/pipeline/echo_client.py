"""Deterministic offline generation client.

Builds every stage artifact from the stage inputs alone, so the whole pipeline
can be exercised without a model provider (CLI smoke runs and tests).
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

from vocab_news.pipeline.contracts import History, PipelineStage, StageResult
from vocab_news.pipeline.validator import WORD_SELECTION_MAX_WORDS

_LEVEL_NAMES = {1: "Easy", 2: "Medium", 3: "Hard"}
_LEVEL_DESCRIPTIONS = {
    1: "Short sentences and everyday vocabulary.",
    2: "Longer sentences with some idioms.",
    3: "Dense prose close to the source articles.",
}


class EchoGenerationClient:
    """Echoes its inputs back as well-formed stage artifacts."""

    def __init__(
        self,
        *,
        max_words: int = WORD_SELECTION_MAX_WORDS,
        source_host: str = "https://example.org",
    ) -> None:
        self.max_words = max_words
        self.source_host = source_host.rstrip("/")
        self.calls: list[PipelineStage] = []

    def run_stage(
        self,
        stage: PipelineStage,
        history: History,
        stage_inputs: Mapping[str, Any],
    ) -> StageResult:
        self.calls.append(stage)
        if stage == PipelineStage.WORD_SELECTION:
            artifact: Any = list(stage_inputs["candidate_words"])[: self.max_words]
        elif stage == PipelineStage.RESEARCH:
            artifact = [
                f"{self.source_host}/{stage_inputs['current_date']}/{quote(word)}"
                for word in stage_inputs["selected_words"]
            ]
        elif stage == PipelineStage.DRAFT:
            artifact = self._draft(stage_inputs)
        else:
            artifact = self._document(stage_inputs)

        return StageResult(
            history_delta=[
                {"role": "user", "stage": stage.value, "turn": len(history)},
                {"role": "assistant", "stage": stage.value, "content": str(artifact)[:200]},
            ],
            artifact=artifact,
            usage={"input_tokens": len(str(dict(stage_inputs))), "output_tokens": len(str(artifact))},
        )

    def _draft(self, stage_inputs: Mapping[str, Any]) -> str:
        words = stage_inputs["selected_words"]
        topic = stage_inputs.get("topic_preference") or "today's news"
        sentences = [f"This story about {topic} uses the word {word}." for word in words]
        return " ".join(sentences)

    def _document(self, stage_inputs: Mapping[str, Any]) -> dict[str, Any]:
        words = list(stage_inputs["selected_words"])
        draft = stage_inputs["draft_text"]
        return {
            "title": f"Daily reading: {', '.join(words)}",
            "topic": "General",
            "sources": list(stage_inputs["source_urls"]),
            "articles": [
                {
                    "level": level,
                    "level_name": _LEVEL_NAMES[level],
                    "content": draft,
                    "difficulty_desc": _LEVEL_DESCRIPTIONS[level],
                }
                for level in (1, 2, 3)
            ],
            "word_usage_check": {
                "target_words_count": len(words),
                "used_count": len(words),
                "missing_words": [],
            },
            "word_definitions": [
                {
                    "word": word,
                    "phonetic": "",
                    "definitions": [{"pos": "n.", "definition": f"Meaning of {word}."}],
                }
                for word in words
            ],
        }
