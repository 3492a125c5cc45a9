"""Persistent task queue with lease-based claiming.

Execution is deliberately serialized: while any task holds a live lease no
other task can be claimed, so at most one generation job talks to the external
model provider at a time. Every mutation that can race is a single conditional
UPDATE on ``status``/``version``; the store's atomic update is the only lock.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any
from uuid import uuid4

from sqlalchemy import literal_column
from sqlalchemy import select as sa_select
from sqlalchemy import update as sa_update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, or_, select

from vocab_news.pipeline.checkpoint import StageInputs, pending_checkpoint
from vocab_news.storage.common import optional_utc, to_db_datetime, to_utc_aware_datetime, utc_now
from vocab_news.storage.database import Database
from vocab_news.storage.sqlmodel_models import TaskRecord
from vocab_news.tasks.errors import ClaimConflict, LeaseLost, PreconditionError, StorageUnavailable
from vocab_news.tasks.models import (
    EnqueuedTask,
    GenerationMode,
    TaskStatus,
    TaskView,
    TriggerSource,
)
from vocab_news.tasks.sources import SqlProfileSource, SqlWordSource

logger = logging.getLogger(__name__)

DEFAULT_LEASE = timedelta(minutes=5)
DEFAULT_CLAIM_MAX_ATTEMPTS = 5
DEFAULT_IMPRESSION_WORD_COUNT = 1024


class TaskQueue:
    """Queue persistence facade over an explicit :class:`Database` handle."""

    def __init__(  # noqa: PLR0913
        self,
        database: Database,
        *,
        lease: timedelta = DEFAULT_LEASE,
        claim_max_attempts: int = DEFAULT_CLAIM_MAX_ATTEMPTS,
        clock: Callable[[], datetime] = utc_now,
        profile_source: SqlProfileSource | None = None,
        word_source: SqlWordSource | None = None,
    ) -> None:
        if lease <= timedelta(0):
            raise ValueError("Lease must be positive.")
        if claim_max_attempts < 1:
            raise ValueError("claim_max_attempts must be >= 1.")
        self.database = database
        self.lease = lease
        self.claim_max_attempts = claim_max_attempts
        self.clock = clock
        self.profile_source = profile_source or SqlProfileSource(database, clock=clock)
        self.word_source = word_source or SqlWordSource(database, clock=clock)

    # -- enqueue ---------------------------------------------------------------

    def enqueue(
        self,
        task_date: str,
        trigger_source: TriggerSource | str = TriggerSource.MANUAL,
        llm: str | None = None,
        mode: GenerationMode | str = GenerationMode.RSS,
        *,
        word_count: int = DEFAULT_IMPRESSION_WORD_COUNT,
    ) -> list[EnqueuedTask]:
        """Create queued tasks for a date: one per profile, or one impression task."""

        trigger = TriggerSource(trigger_source)
        generation_mode = GenerationMode(mode)
        if generation_mode == GenerationMode.IMPRESSION:
            return self.enqueue_impression(task_date, word_count=word_count, llm=llm)

        with self._storage_guard():
            profiles = self.profile_source.ensure_default_profile()
            if not self.word_source.has_daily_words(task_date):
                raise PreconditionError(
                    f"No daily words found for {task_date}. Please fetch words first.",
                )

            created: list[EnqueuedTask] = []
            with self.database.session() as session:
                for profile in profiles:
                    task_id = str(uuid4())
                    session.add(
                        self._new_record(
                            task_id=task_id,
                            task_date=task_date,
                            trigger_source=trigger,
                            mode=GenerationMode.RSS,
                            llm=llm,
                            profile_id=profile.profile_id,
                            checkpoint=None,
                        ),
                    )
                    created.append(
                        EnqueuedTask(
                            task_id=task_id,
                            task_date=task_date,
                            mode=GenerationMode.RSS,
                            profile_id=profile.profile_id,
                            profile_name=profile.name,
                        ),
                    )
                session.commit()

        logger.info(
            "Enqueued %d %s task(s) for %s (trigger=%s)",
            len(created),
            GenerationMode.RSS.value,
            task_date,
            trigger.value,
        )
        return created

    def enqueue_impression(
        self,
        task_date: str,
        word_count: int = DEFAULT_IMPRESSION_WORD_COUNT,
        llm: str | None = None,
    ) -> list[EnqueuedTask]:
        """Create one profile-less task over a random sample of the vocabulary."""

        if word_count <= 0:
            raise ValueError("word_count must be a positive integer.")

        with self._storage_guard():
            candidate_words = self.word_source.random_words(word_count)
            if not candidate_words:
                raise PreconditionError("No words in database. Please add words first.")

            task_id = str(uuid4())
            checkpoint = pending_checkpoint(
                StageInputs(
                    current_date=task_date,
                    candidate_words=tuple(candidate_words),
                    target_length=word_count,
                ),
            )
            with self.database.session() as session:
                session.add(
                    self._new_record(
                        task_id=task_id,
                        task_date=task_date,
                        trigger_source=TriggerSource.MANUAL,
                        mode=GenerationMode.IMPRESSION,
                        llm=llm,
                        profile_id=None,
                        checkpoint=checkpoint.to_document(),
                    ),
                )
                session.commit()

        logger.info(
            "Enqueued %s task %s for %s with %d candidate words",
            GenerationMode.IMPRESSION.value,
            task_id,
            task_date,
            len(candidate_words),
        )
        return [
            EnqueuedTask(
                task_id=task_id,
                task_date=task_date,
                mode=GenerationMode.IMPRESSION,
                profile_id=None,
                profile_name=None,
                candidate_count=len(candidate_words),
            ),
        ]

    # -- claim / lease ---------------------------------------------------------

    def claim_task(self) -> TaskView | None:
        """Atomically claim the next queued or orphaned task.

        Returns ``None`` while another task holds a live lease or when nothing is
        claimable. A lost version race re-runs selection; after
        ``claim_max_attempts`` lost races :class:`ClaimConflict` is raised.
        """

        for attempt in range(1, self.claim_max_attempts + 1):
            try:
                return self._try_claim()
            except ClaimConflict as error:
                if attempt == self.claim_max_attempts:
                    raise
                logger.debug("%s Retrying selection.", error)
        return None

    def _try_claim(self) -> TaskView | None:
        now = to_db_datetime(self.clock())
        with self._storage_guard(), self.database.session() as session:
            if self._active_lease_exists(session, now=now):
                return None

            candidate = session.exec(
                select(TaskRecord)
                .where(
                    or_(
                        TaskRecord.status == TaskStatus.QUEUED.value,
                        (col(TaskRecord.status) == TaskStatus.RUNNING.value)
                        & (col(TaskRecord.locked_until) < now),
                    ),
                )
                .order_by(col(TaskRecord.created_at).asc(), literal_column("rowid").asc())
                .limit(1),
            ).one_or_none()
            if candidate is None:
                return None

            candidate_id = candidate.task_id
            candidate_version = candidate.version
            reclaimed = candidate.status == TaskStatus.RUNNING.value
            other = aliased(TaskRecord)
            other_lease = (
                sa_select(other.task_id)
                .where(
                    other.status == TaskStatus.RUNNING.value,
                    other.locked_until > now,
                    other.task_id != candidate_id,
                )
                .exists()
            )
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == candidate_id,
                    col(TaskRecord.version) == candidate_version,
                    ~other_lease,
                )
                .values(
                    status=TaskStatus.RUNNING.value,
                    started_at=now,
                    version=col(TaskRecord.version) + 1,
                    locked_until=now + self.lease,
                    error_message=None,
                    error_context_json=None,
                )
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                session.rollback()
                raise ClaimConflict(candidate_id, candidate_version)
            session.commit()

            claimed = session.exec(
                select(TaskRecord).where(TaskRecord.task_id == candidate_id),
            ).one()
            view = _to_task_view(claimed)

        if reclaimed:
            logger.warning(
                "Reclaimed task %s after lease expiry (version %d -> %d)",
                view.task_id,
                candidate_version,
                view.version,
            )
        else:
            logger.info("Claimed task %s (version %d)", view.task_id, view.version)
        return view

    def keep_alive(self, task_id: str) -> bool:
        """Extend the lease of a running task; no-op when it is not running."""

        now = to_db_datetime(self.clock())
        with self._storage_guard(), self.database.session() as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == task_id,
                    col(TaskRecord.status) == TaskStatus.RUNNING.value,
                )
                .values(locked_until=now + self.lease),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def save_checkpoint(
        self,
        task_id: str,
        checkpoint: dict[str, Any],
        *,
        expected_version: int,
    ) -> None:
        """Persist a checkpoint document while this worker still owns the task."""

        with self._storage_guard(), self.database.session() as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == task_id,
                    col(TaskRecord.status) == TaskStatus.RUNNING.value,
                    col(TaskRecord.version) == expected_version,
                )
                .values(checkpoint_json=json.dumps(checkpoint, ensure_ascii=False)),
            )
            if result.rowcount != 1:
                session.rollback()
                raise LeaseLost(task_id, expected_version)
            session.commit()

    # -- terminal transitions ----------------------------------------------------

    def complete(self, task_id: str, *, expected_version: int | None = None) -> bool:
        """Mark a running task as succeeded; success implies publication."""

        now = to_db_datetime(self.clock())
        with self._storage_guard(), self.database.session() as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(*self._running_filter(task_id, expected_version))
                .values(
                    status=TaskStatus.SUCCEEDED.value,
                    finished_at=now,
                    published_at=now,
                    error_message=None,
                    error_context_json=None,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        logger.info("Task %s succeeded", task_id)
        return True

    def fail(
        self,
        task_id: str,
        message: str,
        context: dict[str, Any] | None = None,
        *,
        expected_version: int | None = None,
    ) -> bool:
        """Mark a running task as failed and release its lease. It is not requeued."""

        now = to_db_datetime(self.clock())
        with self._storage_guard(), self.database.session() as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(*self._running_filter(task_id, expected_version))
                .values(
                    status=TaskStatus.FAILED.value,
                    error_message=message,
                    error_context_json=json.dumps(
                        context or {},
                        ensure_ascii=False,
                        sort_keys=True,
                        default=str,
                    ),
                    finished_at=now,
                    locked_until=None,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
        logger.info("Task %s failed: %s", task_id, message)
        return True

    # -- read side ---------------------------------------------------------------

    def get_task(self, task_id: str) -> TaskView | None:
        with self._storage_guard(), self.database.session() as session:
            row = session.get(TaskRecord, task_id)
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        task_date: str | None = None,
        status: TaskStatus | None = None,
        limit: int = 50,
    ) -> list[TaskView]:
        """List tasks in queue order, optionally filtered by date and status."""

        statement = select(TaskRecord)
        if task_date is not None:
            statement = statement.where(TaskRecord.task_date == task_date)
        if status is not None:
            statement = statement.where(TaskRecord.status == status.value)
        statement = statement.order_by(
            col(TaskRecord.created_at).asc(),
            literal_column("rowid").asc(),
        ).limit(limit)
        with self._storage_guard(), self.database.session() as session:
            rows = session.exec(statement).all()
            return [_to_task_view(row) for row in rows]

    def checkpoints_for_date(
        self,
        task_date: str,
        *,
        exclude_task_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Checkpoint documents of every task for ``task_date``, in queue order."""

        statement = select(TaskRecord.checkpoint_json).where(
            TaskRecord.task_date == task_date,
            col(TaskRecord.checkpoint_json).is_not(None),
        )
        if exclude_task_id is not None:
            statement = statement.where(TaskRecord.task_id != exclude_task_id)
        statement = statement.order_by(
            col(TaskRecord.created_at).asc(),
            literal_column("rowid").asc(),
        )
        with self._storage_guard(), self.database.session() as session:
            rows = session.exec(statement).all()
        documents = [_load_json_object(raw) for raw in rows]
        return [document for document in documents if document is not None]

    # -- helpers -----------------------------------------------------------------

    def _new_record(  # noqa: PLR0913
        self,
        *,
        task_id: str,
        task_date: str,
        trigger_source: TriggerSource,
        mode: GenerationMode,
        llm: str | None,
        profile_id: str | None,
        checkpoint: dict[str, Any] | None,
    ) -> TaskRecord:
        return TaskRecord(
            task_id=task_id,
            task_date=task_date,
            trigger_source=trigger_source.value,
            mode=mode.value,
            llm=llm,
            profile_id=profile_id,
            status=TaskStatus.QUEUED.value,
            version=0,
            checkpoint_json=(
                json.dumps(checkpoint, ensure_ascii=False) if checkpoint is not None else None
            ),
            created_at=to_db_datetime(self.clock()),
        )

    @staticmethod
    def _active_lease_exists(session: Session, *, now: datetime) -> bool:
        row = session.exec(
            select(TaskRecord.task_id)
            .where(
                TaskRecord.status == TaskStatus.RUNNING.value,
                col(TaskRecord.locked_until) > now,
            )
            .limit(1),
        ).first()
        return row is not None

    @staticmethod
    def _running_filter(task_id: str, expected_version: int | None) -> list[Any]:
        conditions = [
            col(TaskRecord.task_id) == task_id,
            col(TaskRecord.status) == TaskStatus.RUNNING.value,
        ]
        if expected_version is not None:
            conditions.append(col(TaskRecord.version) == expected_version)
        return conditions

    @contextmanager
    def _storage_guard(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as error:
            raise StorageUnavailable(f"Task store unavailable: {error}") from error


def _to_task_view(row: TaskRecord) -> TaskView:
    return TaskView(
        task_id=row.task_id,
        task_date=row.task_date,
        trigger_source=TriggerSource(row.trigger_source),
        mode=GenerationMode(row.mode),
        llm=row.llm,
        profile_id=row.profile_id,
        status=TaskStatus(row.status),
        version=row.version,
        locked_until=optional_utc(row.locked_until),
        checkpoint=_load_json_object(row.checkpoint_json),
        error_message=row.error_message,
        error_context=_load_json_object(row.error_context_json),
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=optional_utc(row.started_at),
        finished_at=optional_utc(row.finished_at),
        published_at=optional_utc(row.published_at),
    )


def _load_json_object(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    parsed = json.loads(raw)
    return parsed if isinstance(parsed, dict) else None
