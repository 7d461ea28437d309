"""Factory for vector providers and the knowledge store.

Centralizes construction of concrete providers so callers don't depend on
implementation details. New providers can be added without changing call
sites: register them in ``VectorProviderType`` and ``VectorProviderFactory``.
"""

from enum import Enum
from typing import Any, Dict, Optional

import structlog

from ..common.config import VectorStoreConfig
from ..common.metrics import MetricsCollector
from ..records.specifications import SpecificationRepository
from ..records.usage import UsageRecorder
from .base import VectorProvider
from .embeddings import Embedder, EmbeddingServiceClient, HashingEmbedder
from .knowledge_store import VectorKnowledgeStore
from .memory import InMemoryVectorProvider
from .opensearch import OpenSearchVectorProvider

logger = structlog.get_logger("vector_store.factory")


class VectorProviderType(Enum):
    """Supported vector provider types."""
    MEMORY = "memory"
    OPENSEARCH = "opensearch"


class VectorProviderFactory:
    """Factory for creating vector provider instances."""

    @staticmethod
    def create(
        provider_type: VectorProviderType,
        config: VectorStoreConfig,
        embedder: Optional[Embedder] = None
    ) -> VectorProvider:
        """Create a provider instance.

        Parameters
        - provider_type: A ``VectorProviderType`` enum value
        - config: Settings for the backend
        - embedder: Overrides the provider's default embedder
        """
        if provider_type == VectorProviderType.MEMORY:
            return InMemoryVectorProvider(
                embedder or HashingEmbedder(dimension=config.vector_dimension)
            )

        elif provider_type == VectorProviderType.OPENSEARCH:
            hosts = config.opensearch_host_list
            if not hosts:
                raise ValueError("OpenSearch requires at least one host in OPENSEARCH_HOSTS")

            return OpenSearchVectorProvider(
                hosts=hosts,
                embedder=embedder or create_embedder(config),
                index_name=config.opensearch_index,
                vector_dimension=config.vector_dimension,
                username=config.opensearch_username,
                password=config.opensearch_password,
                verify_certs=config.opensearch_verify_certs,
                ssl_assert_hostname=config.opensearch_ssl_assert_hostname,
                ssl_show_warn=config.opensearch_ssl_show_warn,
                request_timeout=config.vector_request_timeout,
                probe_timeout=config.vector_probe_timeout,
            )

        else:
            raise ValueError(f"Unsupported vector provider type: {provider_type}")


def create_embedder(config: VectorStoreConfig) -> Embedder:
    """Embedding service client used by managed providers."""
    return EmbeddingServiceClient(
        base_url=config.embedding_service_url,
        dimension=config.vector_dimension,
        model=config.embedding_model,
        timeout=config.embedding_timeout,
    )


def build_providers(
    config: VectorStoreConfig,
    embedder: Optional[Embedder] = None
) -> Dict[str, VectorProvider]:
    """Build the candidate providers for ``config.vector_db_provider``.

    The in-memory provider is always present so startup can fall back to it.
    Only the requested managed provider is constructed.
    """
    requested = (config.vector_db_provider or "memory").strip().lower()
    try:
        provider_type = VectorProviderType(requested)
    except ValueError:
        raise ValueError(f"Unsupported vector provider type: {requested}")

    providers: Dict[str, VectorProvider] = {
        VectorProviderType.MEMORY.value: VectorProviderFactory.create(VectorProviderType.MEMORY, config),
    }
    if provider_type != VectorProviderType.MEMORY:
        providers[provider_type.value] = VectorProviderFactory.create(provider_type, config, embedder)

    logger.info("Built vector providers", providers=sorted(providers), requested=requested)
    return providers


def create_knowledge_store(
    config: VectorStoreConfig,
    specifications: SpecificationRepository,
    usage_recorder: Optional[UsageRecorder] = None,
    metrics: Optional[MetricsCollector] = None,
    **kwargs: Any
) -> VectorKnowledgeStore:
    """Convenience function wiring providers into a ``VectorKnowledgeStore``.

    ``kwargs`` are forwarded to ``build_providers`` (e.g. ``embedder``).
    Call ``start()`` on the result before using it.
    """
    return VectorKnowledgeStore(
        config=config,
        providers=build_providers(config, **kwargs),
        specifications=specifications,
        usage_recorder=usage_recorder,
        metrics=metrics,
    )
