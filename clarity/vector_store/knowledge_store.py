"""Vector knowledge store.

Owns the canonical document schema, picks the active provider once at
startup, and exposes the store/search/index operations the rest of the
backend uses. Providers only see normalized ``VectorDocument`` objects and
fully built filters.

Startup
- ``config.vector_db_provider`` names the requested provider
- A managed provider that fails its availability probe degrades to the
  in-memory provider (logged and counted)
- The selected provider is initialized; failure aborts startup

Usage records are handed to a ``UsageDispatcher`` and never block or fail
the operation that produced them.
"""

import asyncio
import json
import secrets
import string
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

import structlog

from ..common.logging import log_performance
from ..common.metrics import MetricsCollector
from ..records.specifications import SpecificationRepository, SpecificationVersion
from ..records.usage import UsageAction, UsageDispatcher, UsageRecord, UsageRecorder
from .base import (
    NotFoundError,
    ProviderInitError,
    UnsupportedOperationError,
    VectorProvider,
    ensure_not_cancelled,
)
from .embeddings import HashingEmbedder
from .filters import NE, merge_filters
from .memory import InMemoryVectorProvider
from .models import (
    DocumentType,
    KnowledgeDocument,
    RelatedSpecification,
    ScopeType,
    VectorDocument,
    VectorMetadata,
    VectorSearchOptions,
    VectorSearchResult,
    utc_now,
)

logger = structlog.get_logger("vector_store.knowledge_store")

MEMORY_PROVIDER = "memory"
RELATED_SPECIFICATIONS_LIMIT = 5

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_document_id(doc_type: DocumentType) -> str:
    """``<type prefix>_<base36 epoch ms>_<5 random base36 chars>``.

    Uniqueness is probabilistic; ids are not checked against the index.
    """
    prefix = DocumentType(doc_type).value[:3]
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36_ALPHABET) for _ in range(5))
    return f"{prefix}_{timestamp}_{suffix}"


def _type_condition(value: ScopeType) -> Any:
    if isinstance(value, str):
        return DocumentType(value).value
    return [DocumentType(v).value for v in value]


def _specification_content(version: SpecificationVersion) -> str:
    views = (version.pm_view, version.frontend_view, version.backend_view)
    return "\n\n".join(json.dumps(view) for view in views if view)


class VectorKnowledgeStore:
    """Provider-agnostic semantic index for specifications and team knowledge."""

    def __init__(
        self,
        config: Any,
        providers: Mapping[str, VectorProvider],
        specifications: SpecificationRepository,
        usage_recorder: Optional[UsageRecorder] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Wire the store.

        Parameters
        - config: ``VectorStoreConfig`` (or any object with the same fields)
        - providers: Candidate providers keyed by name; a default in-memory
          provider is added when ``memory`` is missing
        - specifications: Relational lookup used by the specification operations
        - usage_recorder: Destination for usage records; ``None`` disables them
        - metrics: Metrics collector; a private one is created when omitted
        """
        self.config = config
        self.providers: Dict[str, VectorProvider] = dict(providers)
        if MEMORY_PROVIDER not in self.providers:
            self.providers[MEMORY_PROVIDER] = InMemoryVectorProvider(
                HashingEmbedder(dimension=config.vector_dimension)
            )
        self.specifications = specifications
        self.metrics = metrics or MetricsCollector("vector-store")
        self.usage: Optional[UsageDispatcher] = None
        if usage_recorder is not None:
            self.usage = UsageDispatcher(
                usage_recorder,
                max_queue_size=config.usage_queue_size,
                drain_timeout=config.usage_drain_timeout,
                metrics=self.metrics,
            )
        self._provider: Optional[VectorProvider] = None

    @property
    def provider(self) -> VectorProvider:
        """The active provider. Only valid after ``start()``."""
        if self._provider is None:
            raise RuntimeError("VectorKnowledgeStore.start() must be called first")
        return self._provider

    async def start(self) -> VectorProvider:
        """Select and initialize the active provider. Runs once."""
        if self._provider is not None:
            return self._provider

        requested = (self.config.vector_db_provider or MEMORY_PROVIDER).strip().lower()
        if requested not in self.providers:
            raise ValueError(
                f"Unknown vector provider '{requested}'; "
                f"expected one of: {', '.join(sorted(self.providers))}"
            )

        selected = self.providers[requested]
        if requested != MEMORY_PROVIDER and not await selected.is_available():
            logger.warning(
                "Vector provider not available, falling back to memory provider",
                requested=requested
            )
            self.metrics.record_provider_fallback(requested, MEMORY_PROVIDER)
            selected = self.providers[MEMORY_PROVIDER]

        try:
            await selected.initialize()
        except ProviderInitError as e:
            logger.error("Failed to initialize vector provider", provider=selected.name, error=str(e))
            raise

        self._provider = selected
        if self.usage is not None:
            self.usage.start()

        logger.info("Using vector provider", provider=selected.name, requested=requested)
        return selected

    def _normalize(self, document: KnowledgeDocument, doc_id: str) -> VectorDocument:
        extra: Dict[str, Any] = {}
        for key, value in (document.metadata or {}).items():
            if key in VectorMetadata.CANONICAL_FIELDS:
                logger.warning("Dropping metadata field that shadows a canonical field", field=key, document_id=doc_id)
                continue
            extra[key] = value

        tags = list(dict.fromkeys(str(tag) for tag in (document.tags or ())))

        return VectorDocument(
            id=doc_id,
            content=document.content,
            metadata=VectorMetadata(
                id=doc_id,
                type=DocumentType(document.type),
                title=document.title,
                created_at=utc_now(),
                tags=tags,
                user_id=document.user_id,
                team_id=document.team_id,
                specification_id=document.specification_id,
                extra=extra,
            ),
        )

    def _dispatch_usage(
        self,
        action: UsageAction,
        user_id: Optional[str],
        team_id: Optional[str],
        metadata: Dict[str, Any]
    ) -> None:
        if self.usage is None or not (user_id or team_id):
            return
        self.usage.dispatch(UsageRecord(
            action=action,
            user_id=user_id,
            team_id=team_id,
            metadata=metadata,
        ))

    async def _upsert(self, operation: str, documents: List[VectorDocument], cancel_event: Optional[asyncio.Event]) -> None:
        provider = self.provider
        try:
            await provider.upsert(documents, cancel_event=cancel_event)
        except Exception:
            self.metrics.record_vector_store_operation(operation, provider.name, "error")
            raise
        self.metrics.record_vector_store_operation(operation, provider.name)

    async def store_document(
        self,
        document: KnowledgeDocument,
        cancel_event: Optional[asyncio.Event] = None
    ) -> str:
        """Normalize and store one document; returns its generated id."""
        doc_id = generate_document_id(document.type)
        vector_doc = self._normalize(document, doc_id)

        await self._upsert("store", [vector_doc], cancel_event)

        self._dispatch_usage(
            UsageAction.VECTOR_STORED,
            document.user_id,
            document.team_id,
            {"document_id": doc_id, "type": vector_doc.metadata.type.value},
        )
        logger.info("Stored document", document_id=doc_id, type=vector_doc.metadata.type.value)
        return doc_id

    async def store_documents(
        self,
        documents: Sequence[KnowledgeDocument],
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[str]:
        """Store several documents with one provider call; ids keep input order."""
        if not documents:
            return []

        vector_docs = [
            self._normalize(document, generate_document_id(document.type))
            for document in documents
        ]

        await self._upsert("store_batch", vector_docs, cancel_event)

        for document, vector_doc in zip(documents, vector_docs):
            self._dispatch_usage(
                UsageAction.VECTOR_STORED,
                document.user_id,
                document.team_id,
                {"document_id": vector_doc.id, "type": vector_doc.metadata.type.value},
            )

        logger.info("Stored documents", count=len(vector_docs))
        return [doc.id for doc in vector_docs]

    def _scoped_options(self, options: VectorSearchOptions) -> VectorSearchOptions:
        scope: Dict[str, Any] = {}
        if options.user_id:
            scope["user_id"] = options.user_id
        if options.team_id:
            scope["team_id"] = options.team_id
        if options.type is not None:
            scope["type"] = _type_condition(options.type)

        combined = merge_filters(options.filter, scope)
        return options.with_filter(combined or None)

    async def search_similar(
        self,
        query: str,
        options: Optional[VectorSearchOptions] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        """Semantic search narrowed by the caller's filter and scope."""
        provider = self.provider
        options = options or VectorSearchOptions(top_k=self.config.vector_default_top_k)
        provider_options = self._scoped_options(options)

        start_time = time.time()
        try:
            results = await provider.search_by_text(query, provider_options, cancel_event=cancel_event)
        except Exception:
            self.metrics.record_vector_store_operation("search", provider.name, "error")
            raise
        duration = time.time() - start_time

        self.metrics.record_vector_store_operation("search", provider.name)
        self.metrics.record_search(provider.name, duration)
        log_performance(
            "vector_search",
            duration * 1000,
            provider=provider.name,
            results_count=len(results),
            top_k=provider_options.top_k
        )

        self._dispatch_usage(
            UsageAction.VECTOR_SEARCH,
            options.user_id,
            options.team_id,
            {"query": query, "results_count": len(results)},
        )
        return results

    async def get_related_specifications(
        self,
        spec_id: str,
        limit: Optional[int] = None,
        team_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[RelatedSpecification]:
        """Specifications similar to ``spec_id``, never including itself."""
        spec = await self.specifications.get_with_latest_version(spec_id)
        if spec is None or spec.latest_version is None:
            logger.info("No indexed version for specification", specification_id=spec_id)
            return []

        query = f"{spec.title} {spec.description or ''}"
        results = await self.search_similar(query, VectorSearchOptions(
            top_k=limit or RELATED_SPECIFICATIONS_LIMIT,
            filter={"specification_id": {NE: spec_id}},
            team_id=team_id,
            type=DocumentType.SPECIFICATION,
        ), cancel_event=cancel_event)

        return [
            RelatedSpecification(
                id=result.metadata.specification_id or result.id,
                title=result.metadata.title or "Unknown",
                score=result.score,
            )
            for result in results
        ]

    async def index_specification(
        self,
        spec_id: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> str:
        """(Re)index the latest version of a specification.

        The new document is stored before earlier ``specification`` documents
        for the same id are removed, so a failed call keeps the previous one.
        """
        spec = await self.specifications.get_with_latest_version(spec_id)
        if spec is None or spec.latest_version is None:
            raise NotFoundError("Specification", spec_id)

        version = spec.latest_version
        metadata: Dict[str, Any] = {"version": version.version}
        if spec.quality_score is not None:
            metadata["quality_score"] = spec.quality_score

        doc_id = await self.store_document(KnowledgeDocument(
            title=spec.title,
            content=_specification_content(version),
            type=DocumentType.SPECIFICATION,
            user_id=spec.author_id,
            team_id=spec.team_id,
            specification_id=spec.id,
            tags=(spec.priority.lower(), spec.status.lower()),
            metadata=metadata,
        ), cancel_event=cancel_event)

        ensure_not_cancelled(cancel_event)
        replaced = await self.provider.delete_by_filter({
            "specification_id": spec.id,
            "type": DocumentType.SPECIFICATION.value,
            "id": {NE: doc_id},
        })

        logger.info(
            "Indexed specification",
            specification_id=spec.id,
            title=spec.title,
            version=version.version,
            replaced=replaced
        )
        return doc_id

    async def remove_specification(self, spec_id: str) -> int:
        """Delete every indexed document tied to ``spec_id``."""
        provider = self.provider
        deleted = await provider.delete_by_filter({"specification_id": spec_id})
        self.metrics.record_vector_store_operation("remove_specification", provider.name)
        logger.info("Removed specification from index", specification_id=spec_id, deleted=deleted)
        return deleted

    async def store_team_knowledge(
        self,
        team_id: str,
        title: str,
        content: str,
        tags: Optional[Sequence[str]] = None,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> str:
        return await self.store_document(KnowledgeDocument(
            title=title,
            content=content,
            type=DocumentType.KNOWLEDGE,
            team_id=team_id,
            user_id=user_id,
            tags=tuple(tags or ()),
        ), cancel_event=cancel_event)

    async def search_team_knowledge(
        self,
        team_id: str,
        query: str,
        options: Optional[VectorSearchOptions] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        options = options or VectorSearchOptions(top_k=self.config.vector_default_top_k)
        return await self.search_similar(
            query,
            replace(options, team_id=team_id, type=DocumentType.KNOWLEDGE),
            cancel_event=cancel_event
        )

    async def cleanup(self, older_than: datetime) -> int:
        """Delete documents created before ``older_than``.

        Naive datetimes are taken as UTC. Raises ``UnsupportedOperationError``
        when the active provider cannot delete by age.
        """
        if older_than.tzinfo is None:
            older_than = older_than.replace(tzinfo=timezone.utc)

        provider = self.provider
        try:
            deleted = await provider.delete_older_than(older_than)
        except UnsupportedOperationError as e:
            logger.warning("Vector cleanup not supported", provider=provider.name, error=str(e))
            raise

        self.metrics.record_vector_store_operation("cleanup", provider.name)
        logger.info("Vector cleanup completed", provider=provider.name, cutoff=older_than.isoformat(), deleted=deleted)
        return deleted

    async def health_check(self) -> Dict[str, Any]:
        """Probe the active provider with a one-result search."""
        provider = self.provider
        start_time = time.time()
        try:
            await provider.search_by_text("health check", VectorSearchOptions(top_k=1))
        except Exception as e:
            logger.warning("Vector store health check failed", provider=provider.name, error=str(e))
            return {
                "status": "degraded",
                "provider": provider.name,
                "error": str(e),
            }

        return {
            "status": "healthy",
            "provider": provider.name,
            "response_time_ms": round((time.time() - start_time) * 1000, 2),
        }

    async def flush_usage(self) -> None:
        """Wait for queued usage records to be handled."""
        if self.usage is not None:
            await self.usage.join()

    async def close(self) -> None:
        """Drain usage records and release provider resources."""
        if self.usage is not None:
            await self.usage.close()
        for provider in self.providers.values():
            await provider.close()
        logger.info("Vector knowledge store closed")
