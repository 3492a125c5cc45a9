"""Output validation for stage artifacts and the final article document."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

WORD_SELECTION_MIN_WORDS = 1
WORD_SELECTION_MAX_WORDS = 8
DIFFICULTY_LEVELS = (1, 2, 3)

_URL_RE = re.compile(r"https?://[^\s<>()\[\]]+")
_URL_TRAILING_RE = re.compile(r"[)\]}<>.,;:，。；：]+$")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n+")
_SENTENCE_BREAK_RE = re.compile(r"([.!?])\s+(?=[A-Z0-9])")


@dataclass(slots=True)
class ValidationResult:
    """Result of output validation."""

    is_valid: bool
    errors: list[str]
    payload: dict[str, Any] | None


def validate_article_output(raw: object) -> ValidationResult:  # noqa: C901, PLR0912
    """Validate the conversion-stage document against the article schema."""

    if not isinstance(raw, dict):
        return ValidationResult(
            is_valid=False,
            errors=["Output must be a JSON object."],
            payload=None,
        )

    errors: list[str] = []
    for key in ("title", "topic"):
        if not _non_empty_string(raw.get(key)):
            errors.append(f"`{key}` must be a non-empty string.")

    sources = raw.get("sources")
    if not isinstance(sources, list) or not all(isinstance(item, str) for item in sources):
        errors.append("`sources` must be a list of strings.")

    articles = raw.get("articles")
    if not isinstance(articles, list) or not articles:
        errors.append("`articles` must be a non-empty list.")
    else:
        seen_levels: list[int] = []
        for index, article in enumerate(articles):
            prefix = f"articles[{index}]"
            if not isinstance(article, dict):
                errors.append(f"{prefix} must be an object.")
                continue
            level = article.get("level")
            if not isinstance(level, int) or isinstance(level, bool) or level not in DIFFICULTY_LEVELS:
                errors.append(f"{prefix}.level must be one of {list(DIFFICULTY_LEVELS)}.")
            else:
                seen_levels.append(level)
            for key in ("level_name", "content", "difficulty_desc"):
                if not _non_empty_string(article.get(key)):
                    errors.append(f"{prefix}.{key} must be a non-empty string.")
        if sorted(seen_levels) != list(DIFFICULTY_LEVELS) and len(seen_levels) == len(articles):
            errors.append(
                f"`articles` must contain exactly one variant per level {list(DIFFICULTY_LEVELS)}.",
            )

    usage_check = raw.get("word_usage_check")
    if not isinstance(usage_check, dict):
        errors.append("`word_usage_check` must be an object.")
    else:
        for key in ("target_words_count", "used_count"):
            value = usage_check.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 0:
                errors.append(f"word_usage_check.{key} must be a non-negative integer.")
        missing = usage_check.get("missing_words")
        if not isinstance(missing, list) or not all(isinstance(item, str) for item in missing):
            errors.append("word_usage_check.missing_words must be a list of strings.")

    definitions = raw.get("word_definitions")
    if not isinstance(definitions, list):
        errors.append("`word_definitions` must be a list.")
    else:
        for index, entry in enumerate(definitions):
            errors.extend(_definition_errors(index, entry))

    if errors:
        return ValidationResult(is_valid=False, errors=errors, payload=None)
    return ValidationResult(is_valid=True, errors=[], payload=raw)


def normalize_article_output(payload: dict[str, Any]) -> dict[str, Any]:
    """Return a copy with every article body split into readable paragraphs."""

    articles = [
        {**article, "content": ensure_content_paragraphs(article["content"], article["level"])}
        for article in payload["articles"]
    ]
    return {**payload, "articles": sorted(articles, key=lambda article: article["level"])}


def ensure_content_paragraphs(content: str, level: int) -> str:
    """Keep existing paragraph breaks, or regroup sentences when there are none."""

    text = content.replace("\r\n", "\n").strip()
    if not text:
        return text

    if _PARAGRAPH_SPLIT_RE.search(text):
        paragraphs = [
            re.sub(r"\s{2,}", " ", re.sub(r"\s*\n\s*", " ", part)).strip()
            for part in _PARAGRAPH_SPLIT_RE.split(text)
        ]
        return "\n\n".join(part for part in paragraphs if part)

    flattened = re.sub(r"\s{2,}", " ", re.sub(r"\s*\n\s*", " ", text)).strip()
    sentences = [
        sentence.strip()
        for sentence in _SENTENCE_BREAK_RE.sub(r"\1\n", flattened).split("\n")
        if sentence.strip()
    ]
    if len(sentences) <= 1:
        return flattened

    desired_paragraphs = 3 if level >= 3 else 2
    per_paragraph = max(2, math.ceil(len(sentences) / desired_paragraphs))
    return "\n\n".join(
        " ".join(sentences[start : start + per_paragraph])
        for start in range(0, len(sentences), per_paragraph)
    )


def validate_selected_words(raw: object) -> tuple[list[str], str | None]:
    """Return cleaned words, or an error message."""

    if not isinstance(raw, list | tuple) or not all(isinstance(word, str) for word in raw):
        return [], "word selection must be a list of strings"
    words: list[str] = []
    for word in raw:
        normalized = word.strip()
        if normalized and normalized not in words:
            words.append(normalized)
    if not WORD_SELECTION_MIN_WORDS <= len(words) <= WORD_SELECTION_MAX_WORDS:
        return [], (
            f"word selection must contain {WORD_SELECTION_MIN_WORDS}.."
            f"{WORD_SELECTION_MAX_WORDS} words, got {len(words)}"
        )
    return words, None


def collect_source_urls(raw: object) -> list[str]:
    """Collect http(s) urls from a string, list or nested object, de-duplicated."""

    urls: list[str] = []
    seen_ids: set[int] = set()

    def _walk(value: object) -> None:
        if value is None:
            return
        if isinstance(value, str):
            for match in _URL_RE.findall(value):
                url = _URL_TRAILING_RE.sub("", match.strip().lstrip("<").rstrip(">"))
                if url and url not in urls:
                    urls.append(url)
            return
        if not isinstance(value, dict | list | tuple):
            return
        if id(value) in seen_ids:
            return
        seen_ids.add(id(value))
        items = value.values() if isinstance(value, dict) else value
        for item in items:
            _walk(item)

    _walk(raw)
    return urls


def _definition_errors(index: int, entry: object) -> list[str]:
    prefix = f"word_definitions[{index}]"
    if not isinstance(entry, dict):
        return [f"{prefix} must be an object."]
    errors: list[str] = []
    if not _non_empty_string(entry.get("word")):
        errors.append(f"{prefix}.word must be a non-empty string.")
    if not isinstance(entry.get("phonetic"), str):
        errors.append(f"{prefix}.phonetic must be a string.")
    senses = entry.get("definitions")
    if not isinstance(senses, list) or not senses:
        errors.append(f"{prefix}.definitions must be a non-empty list.")
        return errors
    for sense_index, sense in enumerate(senses):
        if not isinstance(sense, dict) or not all(
            _non_empty_string(sense.get(key)) for key in ("pos", "definition")
        ):
            errors.append(
                f"{prefix}.definitions[{sense_index}] must have non-empty `pos` and `definition`.",
            )
    return errors


def _non_empty_string(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())
