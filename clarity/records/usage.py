"""Usage logging for vector operations.

Usage records are bookkeeping: a failed or slow usage write must never fail
or delay the store/search call that produced it. ``UsageDispatcher`` puts
records on a bounded queue and a background task hands them to the
``UsageRecorder``. Recorder failures are logged and dropped.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from .database import Database

logger = structlog.get_logger("records.usage")


class UsageAction(str, Enum):
    """Actions the knowledge store records."""
    VECTOR_STORED = "vector_stored"
    VECTOR_SEARCH = "vector_search"


@dataclass
class UsageRecord:
    """One usage log entry."""
    action: UsageAction
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class UsageRecorder(ABC):
    """Append-only sink for usage records."""

    @abstractmethod
    async def record(self, record: UsageRecord) -> None:
        pass


class PgUsageRecorder(UsageRecorder):
    """Writes usage records to the ``usage_logs`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def record(self, record: UsageRecord) -> None:
        await self.database.execute(
            """
            INSERT INTO usage_logs (user_id, team_id, action, metadata)
            VALUES ($1, $2, $3, $4)
            """,
            record.user_id,
            record.team_id,
            UsageAction(record.action).value,
            record.metadata,
        )


class UsageDispatcher:
    """Fire-and-forget delivery of usage records.

    Parameters
    - recorder: Destination for records
    - max_queue_size: Records beyond this many pending ones are dropped
    - drain_timeout: Seconds ``close`` waits for pending records before
      dropping them
    - metrics: Optional ``MetricsCollector`` counting dispatch outcomes
    """

    def __init__(
        self,
        recorder: UsageRecorder,
        max_queue_size: int = 1000,
        drain_timeout: float = 5.0,
        metrics: Optional[Any] = None
    ):
        self.recorder = recorder
        self.drain_timeout = drain_timeout
        self.metrics = metrics
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start the background worker on the running loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
            logger.debug("Usage dispatcher started")

    def dispatch(self, record: UsageRecord) -> None:
        """Queue ``record`` without waiting. Never raises."""
        self.start()
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            logger.warning(
                "Usage queue full, dropping record",
                action=UsageAction(record.action).value,
                queue_size=self._queue.maxsize
            )
            self._record_outcome("dropped")

    async def _drain(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.recorder.record(record)
                self._record_outcome("recorded")
            except Exception as e:
                logger.warning(
                    "Failed to record usage",
                    action=UsageAction(record.action).value,
                    user_id=record.user_id,
                    team_id=record.team_id,
                    error=str(e)
                )
                self._record_outcome("failed")
            finally:
                self._queue.task_done()

    def _record_outcome(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_usage(outcome)

    async def join(self) -> None:
        """Wait until every queued record has been handled."""
        if self._worker is None:
            return
        await self._queue.join()

    async def close(self) -> None:
        """Drain pending records for up to ``drain_timeout``, then stop the worker."""
        try:
            await asyncio.wait_for(self.join(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            pending = self._queue.qsize()
            logger.warning(
                "Usage drain timed out, dropping pending records",
                pending=pending,
                timeout=self.drain_timeout
            )
            for _ in range(pending):
                self._record_outcome("dropped")
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        logger.debug("Usage dispatcher stopped")
