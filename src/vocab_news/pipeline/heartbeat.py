"""Background lease extension while a pipeline stage is in flight."""

from __future__ import annotations

import logging
import threading
from types import TracebackType
from typing import Protocol

from vocab_news.tasks.errors import StorageUnavailable

logger = logging.getLogger(__name__)

DEFAULT_HEARTBEAT_SECONDS = 60.0


class LeaseKeeper(Protocol):
    def keep_alive(self, task_id: str) -> bool: ...


class LeaseHeartbeat:
    """Calls ``keep_alive`` every ``interval_seconds`` until the block exits.

    Heartbeat failures never fail the job: a missed beat is logged and the next
    tick tries again. Exiting the block always stops the thread, whether the
    wrapped stage returned or raised.
    """

    def __init__(
        self,
        queue: LeaseKeeper,
        task_id: str,
        *,
        interval_seconds: float = DEFAULT_HEARTBEAT_SECONDS,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("Heartbeat interval must be positive.")
        self._queue = queue
        self._task_id = task_id
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.beats = 0
        self.missed = 0

    def __enter__(self) -> LeaseHeartbeat:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            daemon=True,
            name=f"lease-heartbeat-{self._task_id[:8]}",
        )
        self._thread.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(timeout=self._interval):
            try:
                extended = self._queue.keep_alive(self._task_id)
            except StorageUnavailable:
                self.missed += 1
                logger.warning("Heartbeat for task %s could not reach the store", self._task_id)
                continue
            except Exception:  # noqa: BLE001
                self.missed += 1
                logger.exception("Heartbeat for task %s failed", self._task_id)
                continue
            self.beats += 1
            if not extended:
                # Row left `running` under us; the final CAS write will notice.
                logger.warning("Heartbeat for task %s found it no longer running", self._task_id)
