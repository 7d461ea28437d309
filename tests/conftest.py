"""Shared fixtures: in-memory fakes for the relational store and usage log."""

from typing import Dict, List, Optional

import pytest

from clarity.common.config import VectorStoreConfig
from clarity.common.metrics import MetricsCollector
from clarity.records.specifications import (
    Specification,
    SpecificationRepository,
    SpecificationVersion,
)
from clarity.records.usage import UsageRecord, UsageRecorder
from clarity.vector_store.embeddings import HashingEmbedder
from clarity.vector_store.knowledge_store import VectorKnowledgeStore
from clarity.vector_store.memory import InMemoryVectorProvider


class FakeSpecificationRepository(SpecificationRepository):
    """Dict-backed specification lookup."""

    def __init__(self):
        self.specs: Dict[str, Specification] = {}

    def add(
        self,
        spec_id: str,
        title: str,
        description: Optional[str] = None,
        team_id: Optional[str] = None,
        version: Optional[int] = 1,
        priority: str = "HIGH",
        status: str = "DRAFT",
        quality_score: Optional[float] = 0.8,
        pm_view: Optional[dict] = None,
    ) -> Specification:
        latest = None
        if version is not None:
            latest = SpecificationVersion(
                version=version,
                pm_view=pm_view or {"summary": f"{title} {description or ''}".strip()},
                frontend_view={"components": [title]},
                backend_view=None,
            )
        spec = Specification(
            id=spec_id,
            title=title,
            description=description,
            author_id="author-1",
            team_id=team_id,
            priority=priority,
            status=status,
            quality_score=quality_score,
            latest_version=latest,
        )
        self.specs[spec_id] = spec
        return spec

    async def get_with_latest_version(self, spec_id: str) -> Optional[Specification]:
        return self.specs.get(spec_id)


class RecordingUsageRecorder(UsageRecorder):
    """Keeps records in a list; can be told to fail."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.records: List[UsageRecord] = []

    async def record(self, record: UsageRecord) -> None:
        if self.fail:
            raise RuntimeError("usage log unavailable")
        self.records.append(record)


@pytest.fixture
def config():
    """Config pinned to the in-memory provider."""
    return VectorStoreConfig(vector_db_provider="memory", vector_dimension=384)


@pytest.fixture
def specifications():
    return FakeSpecificationRepository()


@pytest.fixture
def usage_recorder():
    return RecordingUsageRecorder()


@pytest.fixture
def memory_provider():
    return InMemoryVectorProvider(HashingEmbedder(dimension=384))


@pytest.fixture
def store(config, memory_provider, specifications, usage_recorder):
    """Knowledge store over the in-memory provider; call ``start()`` in the test."""
    return VectorKnowledgeStore(
        config=config,
        providers={"memory": memory_provider},
        specifications=specifications,
        usage_recorder=usage_recorder,
        metrics=MetricsCollector("test-service"),
    )
