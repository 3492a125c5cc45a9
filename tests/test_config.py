from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import allure
import pytest

from vocab_news.config import QueueSettings, Settings, WorkerSettings

pytestmark = [
    allure.epic("Generation Queue"),
    allure.feature("Configuration"),
]


def test_defaults_match_queue_contract() -> None:
    settings = Settings()

    settings.validate()
    assert settings.queue.lease == timedelta(minutes=5)
    assert settings.queue.claim_max_attempts == 5
    assert settings.worker.heartbeat_interval_seconds == 60.0
    assert settings.impression.word_count == 1024
    assert settings.worker.default_llm is None


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VOCAB_NEWS_DB_PATH", "/tmp/vocab.db")
    monkeypatch.setenv("VOCAB_NEWS_LOG_LEVEL", "debug")
    monkeypatch.setenv("VOCAB_NEWS_LEASE_SECONDS", "120")
    monkeypatch.setenv("VOCAB_NEWS_HEARTBEAT_INTERVAL_SECONDS", "15")
    monkeypatch.setenv("VOCAB_NEWS_CLAIM_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("VOCAB_NEWS_IMPRESSION_WORD_COUNT", "64")
    monkeypatch.setenv("VOCAB_NEWS_DEFAULT_LLM", "claude")

    settings = Settings.from_env()

    settings.validate()
    assert settings.db_path == Path("/tmp/vocab.db")
    assert settings.log_level == "DEBUG"
    assert settings.queue.lease == timedelta(minutes=2)
    assert settings.queue.claim_max_attempts == 3
    assert settings.worker.heartbeat_interval_seconds == 15.0
    assert settings.impression.word_count == 64
    assert settings.worker.default_llm == "claude"


def test_explicit_db_path_wins_over_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("VOCAB_NEWS_DB_PATH", "/tmp/env.db")

    assert Settings.from_env(db_path=Path("cli.db")).db_path == Path("cli.db")


def test_heartbeat_must_be_shorter_than_lease() -> None:
    settings = Settings(
        queue=QueueSettings(lease_seconds=60),
        worker=WorkerSettings(heartbeat_interval_seconds=60),
    )

    with pytest.raises(ValueError, match="shorter than"):
        settings.validate()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(queue=QueueSettings(lease_seconds=0)), "LEASE_SECONDS"),
        (Settings(queue=QueueSettings(claim_max_attempts=0)), "CLAIM_MAX_ATTEMPTS"),
        (Settings(log_level="CHATTY"), "LOG_LEVEL"),
        (Settings(worker=WorkerSettings(max_idle_polls=0)), "MAX_IDLE_POLLS"),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
