from __future__ import annotations

import copy

import allure
import pytest

from vocab_news.pipeline.validator import (
    collect_source_urls,
    ensure_content_paragraphs,
    normalize_article_output,
    validate_article_output,
    validate_selected_words,
)

pytestmark = [
    allure.epic("Generation Pipeline"),
    allure.feature("Output Validation"),
]

_VALID = {
    "title": "Rovers and rain",
    "topic": "Science",
    "sources": ["https://example.org/rover"],
    "articles": [
        {
            "level": level,
            "level_name": name,
            "content": "The rover rolled. It found water. Scientists cheered. Funding followed.",
            "difficulty_desc": "desc",
        }
        for level, name in ((3, "Hard"), (1, "Easy"), (2, "Medium"))
    ],
    "word_usage_check": {"target_words_count": 2, "used_count": 1, "missing_words": ["lucid"]},
    "word_definitions": [
        {
            "word": "rover",
            "phonetic": "/ˈrəʊvə/",
            "definitions": [{"pos": "n.", "definition": "A vehicle for exploring terrain."}],
        },
    ],
}


def test_valid_document_passes_and_is_normalized() -> None:
    result = validate_article_output(copy.deepcopy(_VALID))

    assert result.is_valid
    assert result.errors == []
    normalized = normalize_article_output(result.payload)
    assert [article["level"] for article in normalized["articles"]] == [1, 2, 3]
    assert "\n\n" in normalized["articles"][0]["content"]
    assert _VALID["articles"][0]["content"].count("\n") == 0


@pytest.mark.parametrize(
    ("mutate", "expected"),
    [
        (lambda doc: doc.pop("title"), "`title`"),
        (lambda doc: doc.update(articles=[]), "`articles` must be a non-empty list"),
        (lambda doc: doc["articles"][0].update(level=4), "articles[0].level"),
        (lambda doc: doc["articles"].pop(), "exactly one variant per level"),
        (lambda doc: doc["word_usage_check"].update(used_count=-1), "used_count"),
        (lambda doc: doc["word_definitions"][0].update(definitions=[]), "definitions must be"),
        (lambda doc: doc.update(sources="https://example.org"), "`sources`"),
    ],
)
def test_invalid_documents_report_field_errors(mutate, expected: str) -> None:
    document = copy.deepcopy(_VALID)
    mutate(document)

    result = validate_article_output(document)

    assert not result.is_valid
    assert result.payload is None
    assert any(expected in error for error in result.errors), result.errors


def test_non_object_output_is_rejected() -> None:
    result = validate_article_output(["not", "an", "object"])

    assert result.errors == ["Output must be a JSON object."]


def test_existing_paragraphs_are_kept() -> None:
    content = "First line\ncontinues here.\n\n\nSecond   paragraph."

    assert ensure_content_paragraphs(content, 1) == "First line continues here.\n\nSecond paragraph."


def test_single_sentence_is_left_alone() -> None:
    assert ensure_content_paragraphs("  Just one sentence.  ", 3) == "Just one sentence."


def test_selected_words_are_cleaned_and_bounded() -> None:
    assert validate_selected_words([" lucid ", "candid", "lucid", ""]) == (["lucid", "candid"], None)

    words, error = validate_selected_words([])
    assert words == []
    assert error is not None

    _, error = validate_selected_words("lucid")
    assert error == "word selection must be a list of strings"


def test_source_urls_are_collected_from_nested_artifacts() -> None:
    artifact = {
        "summary": "See https://example.org/a, and (https://example.org/b).",
        "links": ["https://example.org/a", {"url": "http://example.net/c;"}],
        "count": 3,
    }

    assert collect_source_urls(artifact) == [
        "https://example.org/a",
        "https://example.org/b",
        "http://example.net/c",
    ]
