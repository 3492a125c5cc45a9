"""Collaborator data read by the queue and the executor.

Profiles, the per-date word references and the vocabulary table are populated
outside the core. These classes only read them, with one exception: the first
``rss`` enqueue against an empty profile table creates a ``Default`` profile.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from uuid import uuid4

from sqlalchemy import func
from sqlmodel import col, select

from vocab_news.storage.common import to_db_datetime, utc_now
from vocab_news.storage.database import Database
from vocab_news.storage.sqlmodel_models import (
    DEFAULT_PROFILE_NAME,
    DailyWordReference,
    GenerationProfile,
    Word,
)
from vocab_news.tasks.models import ProfileRef, WordType

logger = logging.getLogger(__name__)


class SqlProfileSource:
    """Generation profiles stored in ``generation_profiles``."""

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.clock = clock

    def list_active_profiles(self) -> list[ProfileRef]:
        with self.database.session() as session:
            rows = session.exec(
                select(GenerationProfile).order_by(
                    col(GenerationProfile.created_at).asc(),
                    col(GenerationProfile.name).asc(),
                ),
            ).all()
        return [_to_profile_ref(row) for row in rows]

    def ensure_default_profile(self) -> list[ProfileRef]:
        """Return active profiles, creating the default one if none exist."""

        profiles = self.list_active_profiles()
        if profiles:
            return profiles
        with self.database.session() as session:
            session.add(
                GenerationProfile(
                    profile_id=str(uuid4()),
                    name=DEFAULT_PROFILE_NAME,
                    created_at=to_db_datetime(self.clock()),
                ),
            )
            session.commit()
        logger.info("No generation profiles found; created %s profile", DEFAULT_PROFILE_NAME)
        return self.list_active_profiles()

    def get_profile(self, profile_id: str) -> ProfileRef | None:
        with self.database.session() as session:
            row = session.get(GenerationProfile, profile_id)
        return _to_profile_ref(row) if row is not None else None

    def add_profile(self, *, name: str, topic_preference: str = "") -> ProfileRef:
        row = GenerationProfile(
            profile_id=str(uuid4()),
            name=name,
            topic_preference=topic_preference,
            created_at=to_db_datetime(self.clock()),
        )
        with self.database.session() as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_profile_ref(row)


class SqlWordSource:
    """Daily word references and the vocabulary table."""

    def __init__(
        self,
        database: Database,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.database = database
        self.clock = clock

    def has_daily_words(self, task_date: str) -> bool:
        with self.database.session() as session:
            row = session.exec(
                select(DailyWordReference.id)
                .where(DailyWordReference.word_date == task_date)
                .limit(1),
            ).first()
        return row is not None

    def daily_candidates(self, task_date: str) -> list[str]:
        """Unique words for the date, new words ahead of review words."""

        with self.database.session() as session:
            rows = session.exec(
                select(DailyWordReference)
                .where(DailyWordReference.word_date == task_date)
                .order_by(col(DailyWordReference.id).asc()),
            ).all()
        new_words = [row.word for row in rows if row.word_type == WordType.NEW.value]
        review_words = [row.word for row in rows if row.word_type == WordType.REVIEW.value]
        return _unique_words([*new_words, *review_words])

    def random_words(self, limit: int) -> list[str]:
        with self.database.session() as session:
            rows = session.exec(
                select(Word.word).order_by(func.random()).limit(limit),
            ).all()
        return list(rows)

    def add_daily_words(
        self,
        task_date: str,
        *,
        new_words: tuple[str, ...] = (),
        review_words: tuple[str, ...] = (),
    ) -> int:
        entries = [(word, WordType.NEW) for word in new_words] + [
            (word, WordType.REVIEW) for word in review_words
        ]
        added = 0
        with self.database.session() as session:
            for word in _unique_words([word for word, _ in entries]):
                word_type = next(kind for candidate, kind in entries if candidate.strip() == word)
                session.add(
                    DailyWordReference(
                        word_date=task_date,
                        word=word,
                        word_type=word_type.value,
                    ),
                )
                added += 1
            session.commit()
        return added

    def add_words(self, words: tuple[str, ...] | list[str]) -> int:
        now = to_db_datetime(self.clock())
        added = 0
        with self.database.session() as session:
            for word in _unique_words(list(words)):
                if session.get(Word, word) is not None:
                    continue
                session.add(Word(word=word, created_at=now))
                added += 1
            session.commit()
        return added


def _unique_words(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        normalized = value.strip()
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        result.append(normalized)
    return result


def _to_profile_ref(row: GenerationProfile) -> ProfileRef:
    return ProfileRef(
        profile_id=row.profile_id,
        name=row.name,
        topic_preference=row.topic_preference,
    )
