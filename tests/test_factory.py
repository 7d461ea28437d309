"""Tests for provider and store construction."""

import pytest

from clarity.common.config import VectorStoreConfig
from clarity.vector_store.embeddings import EmbeddingServiceClient, HashingEmbedder
from clarity.vector_store.factory import (
    VectorProviderFactory,
    VectorProviderType,
    build_providers,
    create_knowledge_store,
)
from clarity.vector_store.knowledge_store import VectorKnowledgeStore
from clarity.vector_store.memory import InMemoryVectorProvider
from clarity.vector_store.opensearch import OpenSearchVectorProvider


def test_build_providers_memory_only():
    """The memory configuration builds only the memory provider."""
    config = VectorStoreConfig(_env_file=None, vector_db_provider="memory", vector_dimension=64)
    providers = build_providers(config)

    assert list(providers) == ["memory"]
    assert isinstance(providers["memory"], InMemoryVectorProvider)
    assert providers["memory"].embedder.dimension == 64


@pytest.mark.asyncio
async def test_build_providers_opensearch():
    """The managed provider is built from config next to the memory fallback."""
    config = VectorStoreConfig(
        _env_file=None,
        vector_db_provider="OpenSearch",
        opensearch_hosts="http://os-1:9200,http://os-2:9200",
        opensearch_index="kb",
        embedding_service_url="http://embedding:9006",
    )
    providers = build_providers(config)

    assert set(providers) == {"memory", "opensearch"}
    managed = providers["opensearch"]
    assert isinstance(managed, OpenSearchVectorProvider)
    assert managed.hosts == ["http://os-1:9200", "http://os-2:9200"]
    assert managed.index_name == "kb"
    assert isinstance(managed.embedder, EmbeddingServiceClient)
    assert managed.embedder.base_url == "http://embedding:9006"

    await managed.close()


def test_build_providers_rejects_unknown():
    """Unknown provider names fail fast."""
    config = VectorStoreConfig(_env_file=None, vector_db_provider="pinecone")
    with pytest.raises(ValueError):
        build_providers(config)


def test_factory_respects_injected_embedder():
    """An injected embedder replaces the default."""
    config = VectorStoreConfig(_env_file=None)
    embedder = HashingEmbedder(dimension=16)
    provider = VectorProviderFactory.create(VectorProviderType.MEMORY, config, embedder)
    assert provider.embedder is embedder


def test_create_knowledge_store(specifications, usage_recorder):
    """The convenience constructor wires providers and collaborators."""
    config = VectorStoreConfig(_env_file=None)
    store = create_knowledge_store(config, specifications, usage_recorder=usage_recorder)

    assert isinstance(store, VectorKnowledgeStore)
    assert set(store.providers) == {"memory"}
    assert store.usage is not None
