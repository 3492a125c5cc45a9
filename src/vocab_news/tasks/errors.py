"""Error taxonomy for queueing and pipeline execution."""

from __future__ import annotations

from typing import Any


class TaskQueueError(RuntimeError):
    """Base class for every error raised by the queue and the executor."""


class PreconditionError(TaskQueueError):
    """Enqueue-time prerequisite data is missing; no task row was created."""


class ClaimConflict(TaskQueueError):
    """Another worker won the version race for the selected candidate."""

    def __init__(self, task_id: str, expected_version: int) -> None:
        super().__init__(
            f"Lost claim race for task {task_id} at version {expected_version}.",
        )
        self.task_id = task_id
        self.expected_version = expected_version


class LeaseLost(TaskQueueError):
    """The task is no longer running at the version this worker claimed."""

    def __init__(self, task_id: str, expected_version: int) -> None:
        super().__init__(
            f"Lease lost for task {task_id}: no longer running at version {expected_version}.",
        )
        self.task_id = task_id
        self.expected_version = expected_version


class StorageUnavailable(TaskQueueError):
    """The task store cannot be reached."""


class StageError(TaskQueueError):
    """A pipeline stage failed or produced unusable output."""

    def __init__(
        self,
        stage: str,
        message: str,
        *,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Stage {stage} failed: {message}")
        self.stage = stage
        self.context: dict[str, Any] = {"stage": stage, **(context or {})}


class SchemaValidationError(StageError):
    """The final structured document does not conform to the output schema."""

    def __init__(self, stage: str, errors: list[str], payload: object) -> None:
        super().__init__(
            stage,
            "output schema validation failed: " + "; ".join(errors),
            context={"errors": errors, "raw_payload": payload},
        )
        self.errors = errors
        self.payload = payload


class CheckpointError(StageError):
    """The persisted checkpoint document cannot be interpreted."""
