"""Vector store adapters and the knowledge store.

Primary components:
- ``base``: abstract ``VectorProvider`` interface and the error taxonomy.
- ``models``: canonical document schema.
- ``filters``: metadata filter grammar shared by all providers.
- ``memory``/``opensearch``: concrete providers.
- ``knowledge_store``: ``VectorKnowledgeStore`` orchestrator.
- ``factory``: helpers to build providers and the store from config.

Guidance:
- Prefer ``factory.create_knowledge_store`` so callers stay decoupled from
  specific backends.
"""

from .base import (
    NotFoundError,
    OperationCancelledError,
    ProviderInitError,
    ProviderResponseError,
    ProviderUnavailableError,
    UnsupportedOperationError,
    VectorProvider,
    VectorStoreError,
)
from .knowledge_store import VectorKnowledgeStore
from .models import (
    DocumentType,
    KnowledgeDocument,
    RelatedSpecification,
    VectorDocument,
    VectorMetadata,
    VectorSearchOptions,
    VectorSearchResult,
)

__all__ = [
    "DocumentType",
    "KnowledgeDocument",
    "NotFoundError",
    "OperationCancelledError",
    "ProviderInitError",
    "ProviderResponseError",
    "ProviderUnavailableError",
    "RelatedSpecification",
    "UnsupportedOperationError",
    "VectorDocument",
    "VectorKnowledgeStore",
    "VectorMetadata",
    "VectorProvider",
    "VectorSearchOptions",
    "VectorSearchResult",
    "VectorStoreError",
]
