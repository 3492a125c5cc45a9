from __future__ import annotations

import re
from pathlib import Path

import allure
from click.testing import CliRunner

from vocab_news.main import vocab_news
from vocab_news.storage.database import Database
from vocab_news.tasks.sources import SqlWordSource

pytestmark = [
    allure.epic("Generation Queue"),
    allure.feature("CLI Ops"),
]


def _seed_words(db_path: Path) -> None:
    database = Database(db_path)
    database.init_schema()
    try:
        words = SqlWordSource(database)
        words.add_daily_words("2024-01-01", new_words=("lucid", "candid"), review_words=("wary",))
        words.add_words(["orbit", "comet", "nebula"])
    finally:
        database.close()


def test_cli_enqueue_worker_list_and_inspect(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _seed_words(db_path)
    runner = CliRunner()

    enqueue = runner.invoke(
        vocab_news,
        ["tasks", "enqueue", "--db-path", str(db_path), "--date", "2024-01-01"],
    )
    assert enqueue.exit_code == 0, enqueue.output
    assert "Enqueued 1 task(s) for 2024-01-01" in enqueue.output
    assert "profile=Default" in enqueue.output
    match = re.search(r"^\s+([a-f0-9-]{36}) mode=rss", enqueue.output, re.MULTILINE)
    assert match is not None
    task_id = match.group(1)

    worker = runner.invoke(vocab_news, ["worker", "run", "--db-path", str(db_path), "--once"])
    assert worker.exit_code == 0, worker.output
    assert "processed=1" in worker.output
    assert "succeeded=1" in worker.output

    listed = runner.invoke(
        vocab_news,
        ["tasks", "list", "--db-path", str(db_path), "--status", "succeeded"],
    )
    assert listed.exit_code == 0
    assert task_id in listed.output
    assert "stage=conversion" in listed.output

    inspect = runner.invoke(vocab_news, ["tasks", "inspect", "--db-path", str(db_path), task_id])
    assert inspect.exit_code == 0
    assert "Status: succeeded" in inspect.output
    assert "Version: 1" in inspect.output


def test_cli_impression_enqueue_reports_candidate_count(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"
    _seed_words(db_path)

    result = CliRunner().invoke(
        vocab_news,
        [
            "tasks",
            "enqueue",
            "--db-path",
            str(db_path),
            "--date",
            "2024-01-02",
            "--mode",
            "impression",
            "--word-count",
            "2",
        ],
    )

    assert result.exit_code == 0, result.output
    assert "mode=impression candidates=2" in result.output


def test_cli_reports_missing_daily_words_as_usage_error(tmp_path: Path) -> None:
    db_path = tmp_path / "cli.db"

    result = CliRunner().invoke(
        vocab_news,
        ["tasks", "enqueue", "--db-path", str(db_path), "--date", "2030-05-05"],
    )

    assert result.exit_code == 1
    assert "No daily words found for 2030-05-05" in result.output


def test_cli_rejects_malformed_date(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        vocab_news,
        ["tasks", "enqueue", "--db-path", str(tmp_path / "cli.db"), "--date", "01/02/2024"],
    )

    assert result.exit_code == 1
    assert "Invalid isoformat" in result.output


def test_cli_inspect_unknown_task(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        vocab_news,
        ["tasks", "inspect", "--db-path", str(tmp_path / "cli.db"), "missing"],
    )

    assert result.exit_code == 0
    assert "Task not found: missing" in result.output
