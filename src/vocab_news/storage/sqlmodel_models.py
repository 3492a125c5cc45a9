"""SQLModel ORM tables for the task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

DEFAULT_PROFILE_NAME = "Default"


class GenerationProfile(SQLModel, table=True):
    __tablename__ = "generation_profiles"  # type: ignore[bad-override]

    profile_id: str = Field(primary_key=True)
    name: str = Field(index=True)
    topic_preference: str = Field(default="")
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class DailyWordReference(SQLModel, table=True):
    __tablename__ = "daily_word_references"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("word_date", "word", name="uq_daily_word_references_date_word"),
    )

    id: int | None = Field(default=None, primary_key=True)
    word_date: str = Field(index=True)
    word: str
    word_type: str = Field(index=True)


class Word(SQLModel, table=True):
    __tablename__ = "words"  # type: ignore[bad-override]

    word: str = Field(primary_key=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_tasks_queue", "status", "created_at"),
        Index("idx_tasks_lease", "status", "locked_until"),
    )

    task_id: str = Field(primary_key=True)
    task_date: str = Field(index=True)
    trigger_source: str
    mode: str = Field(index=True)
    llm: str | None = None
    profile_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("generation_profiles.profile_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    status: str = Field(index=True)
    version: int = Field(default=0)
    locked_until: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    checkpoint_json: str | None = Field(default=None, sa_column=Column(Text))
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    error_context_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    published_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
