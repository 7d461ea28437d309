"""Tests for the relational store adapters and usage dispatch."""

import asyncio

import pytest

from clarity.common.metrics import MetricsCollector
from clarity.records.database import Database
from clarity.records.specifications import PgSpecificationRepository
from clarity.records.usage import (
    PgUsageRecorder,
    UsageAction,
    UsageDispatcher,
    UsageRecord,
)

from .conftest import RecordingUsageRecorder


class FakeDatabase(Database):
    """Captures queries and serves canned rows."""

    def __init__(self, row=None):
        super().__init__(dsn="postgresql://unused")
        self.row = row
        self.executed = []

    async def fetch_one(self, query, *args):
        self.executed.append((query, args))
        return self.row

    async def execute(self, query, *args):
        self.executed.append((query, args))
        return "INSERT 0 1"


SPEC_ROW = {
    "id": "spec-1",
    "title": "Auth Flow",
    "description": "OAuth login",
    "author_id": "U1",
    "team_id": "T1",
    "priority": "HIGH",
    "status": "DRAFT",
    "quality_score": 0.75,
    "version": 4,
    "pm_view": {"summary": "login"},
    "frontend_view": None,
    "backend_view": {"endpoints": ["/oauth/callback"]},
}


@pytest.mark.asyncio
async def test_specification_with_latest_version():
    """Rows map onto a specification with its newest version."""
    database = FakeDatabase(row=SPEC_ROW)
    spec = await PgSpecificationRepository(database).get_with_latest_version("spec-1")

    assert spec.title == "Auth Flow"
    assert spec.team_id == "T1"
    assert spec.quality_score == 0.75
    assert spec.latest_version.version == 4
    assert spec.latest_version.backend_view == {"endpoints": ["/oauth/callback"]}
    assert database.executed[0][1] == ("spec-1",)


@pytest.mark.asyncio
async def test_specification_without_versions():
    """A specification with no versions has latest_version None."""
    row = dict(SPEC_ROW, version=None, pm_view=None, backend_view=None, quality_score=None)
    spec = await PgSpecificationRepository(FakeDatabase(row=row)).get_with_latest_version("spec-1")

    assert spec.latest_version is None
    assert spec.quality_score is None


@pytest.mark.asyncio
async def test_missing_specification():
    """Unknown ids return None."""
    assert await PgSpecificationRepository(FakeDatabase()).get_with_latest_version("nope") is None


@pytest.mark.asyncio
async def test_pg_usage_recorder_inserts_row():
    """Usage records become usage_logs rows."""
    database = FakeDatabase()
    await PgUsageRecorder(database).record(UsageRecord(
        action=UsageAction.VECTOR_SEARCH,
        team_id="T1",
        metadata={"query": "OAuth", "results_count": 2},
    ))

    query, args = database.executed[0]
    assert "INSERT INTO usage_logs" in query
    assert args == (None, "T1", "vector_search", {"query": "OAuth", "results_count": 2})


@pytest.mark.asyncio
async def test_dispatcher_delivers_records():
    """Dispatched records reach the recorder in order."""
    recorder = RecordingUsageRecorder()
    dispatcher = UsageDispatcher(recorder)

    for i in range(3):
        dispatcher.dispatch(UsageRecord(action=UsageAction.VECTOR_STORED, user_id=f"U{i}"))
    await dispatcher.close()

    assert [r.user_id for r in recorder.records] == ["U0", "U1", "U2"]


@pytest.mark.asyncio
async def test_dispatcher_drops_when_full():
    """A full queue drops records instead of blocking the caller."""
    recorder = RecordingUsageRecorder()
    metrics = MetricsCollector("test-service")
    dispatcher = UsageDispatcher(recorder, max_queue_size=1, metrics=metrics)

    # The worker has not run yet, so only the first record fits.
    for i in range(3):
        dispatcher.dispatch(UsageRecord(action=UsageAction.VECTOR_STORED, user_id=f"U{i}"))
    await dispatcher.join()

    assert [r.user_id for r in recorder.records] == ["U0"]
    output = metrics.get_metrics()
    assert 'clarity_usage_records_total{outcome="dropped"} 2.0' in output
    assert 'clarity_usage_records_total{outcome="recorded"} 1.0' in output
    await dispatcher.close()


@pytest.mark.asyncio
async def test_dispatcher_survives_recorder_failures():
    """Recorder errors are swallowed and the worker keeps going."""
    recorder = RecordingUsageRecorder(fail=True)
    dispatcher = UsageDispatcher(recorder)

    dispatcher.dispatch(UsageRecord(action=UsageAction.VECTOR_SEARCH, team_id="T1"))
    await dispatcher.join()

    recorder.fail = False
    dispatcher.dispatch(UsageRecord(action=UsageAction.VECTOR_SEARCH, team_id="T2"))
    await dispatcher.close()

    assert [r.team_id for r in recorder.records] == ["T2"]


@pytest.mark.asyncio
async def test_dispatch_does_not_wait_for_recorder():
    """dispatch() returns while the recorder is still busy."""
    release = asyncio.Event()

    class SlowRecorder(RecordingUsageRecorder):
        async def record(self, record):
            await release.wait()
            await super().record(record)

    recorder = SlowRecorder()
    dispatcher = UsageDispatcher(recorder)
    dispatcher.dispatch(UsageRecord(action=UsageAction.VECTOR_STORED, user_id="U1"))
    await asyncio.sleep(0)

    assert recorder.records == []
    release.set()
    await dispatcher.close()
    assert len(recorder.records) == 1


class HangingRecorder(RecordingUsageRecorder):
    """Recorder whose writes never complete."""

    async def record(self, record):
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_close_gives_up_on_hanging_recorder():
    """close() returns after drain_timeout and counts abandoned records."""
    metrics = MetricsCollector("test-service")
    dispatcher = UsageDispatcher(HangingRecorder(), drain_timeout=0.05, metrics=metrics)

    for i in range(3):
        dispatcher.dispatch(UsageRecord(action=UsageAction.VECTOR_STORED, user_id=f"U{i}"))
    await asyncio.wait_for(dispatcher.close(), timeout=2)

    # One record is in flight with the recorder; the other two never left the queue.
    assert 'clarity_usage_records_total{outcome="dropped"} 2.0' in metrics.get_metrics()
    assert dispatcher._worker is None
