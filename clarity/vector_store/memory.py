"""In-memory vector provider.

Reference/fallback implementation with no external dependency: brute-force
cosine similarity over every resident document. Search cost is O(N), which
is fine for development, tests and degraded mode but not for large indexes.

One ``asyncio.Lock`` guards the document map so commits, deletes and the
search snapshot never interleave.
"""

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import structlog

from .base import VectorProvider, ensure_not_cancelled
from .embeddings import Embedder, HashingEmbedder, cosine_similarity
from .filters import matches_filter, parse_filter
from .models import VectorDocument, VectorSearchOptions, VectorSearchResult

logger = structlog.get_logger("vector_store.memory")


class InMemoryVectorProvider(VectorProvider):
    """Process-local provider; always available."""

    name = "memory"

    def __init__(self, embedder: Optional[Embedder] = None):
        """Create an empty provider.

        Parameters
        - embedder: text embedder; defaults to ``HashingEmbedder``
        """
        self.embedder = embedder or HashingEmbedder()
        self._documents: Dict[str, VectorDocument] = {}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        if not self._initialized:
            self._initialized = True
            logger.info("Memory vector provider initialized")

    async def is_available(self) -> bool:
        return True

    async def upsert(
        self,
        documents: Sequence[VectorDocument],
        cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Insert or replace documents.

        Missing embeddings are computed before the lock is taken; the cancel
        signal is checked right before the commit so a cancelled call writes
        nothing.
        """
        if not documents:
            return

        pending = [i for i, doc in enumerate(documents) if doc.embedding is None]
        computed: Dict[int, np.ndarray] = {}
        if pending:
            vectors = await self.embedder.embed([documents[i].content for i in pending])
            computed = dict(zip(pending, vectors))

        prepared = []
        for i, doc in enumerate(documents):
            vector = np.asarray(computed.get(i, doc.embedding), dtype=np.float32)
            if vector.shape != (self.embedder.dimension,):
                raise ValueError(
                    f"Expected vector dimension {self.embedder.dimension}, "
                    f"got {vector.shape} for document '{doc.id}'"
                )
            prepared.append(replace(doc, embedding=vector))

        async with self._lock:
            ensure_not_cancelled(cancel_event)
            for doc in prepared:
                self._documents[doc.id] = doc

        logger.info("Upserted vectors to memory", count=len(prepared))

    async def search(
        self,
        vector: np.ndarray,
        options: VectorSearchOptions,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        """Cosine ranking over filter-matching documents.

        Filtering happens before truncation so ``top_k`` is never starved.
        """
        predicates = parse_filter(options.filter)
        query = np.asarray(vector, dtype=np.float32)

        async with self._lock:
            ensure_not_cancelled(cancel_event)
            candidates = [
                doc for doc in self._documents.values()
                if matches_filter(doc.metadata.to_dict(), predicates)
            ]

        if not candidates:
            return []

        matrix = np.vstack([doc.embedding for doc in candidates])
        scores = cosine_similarity(matrix, query)

        ranked = sorted(
            zip(candidates, scores.tolist()),
            key=lambda pair: pair[1],
            reverse=True
        )

        results: List[VectorSearchResult] = []
        for doc, score in ranked:
            if options.min_score is not None and score < options.min_score:
                continue
            results.append(VectorSearchResult(
                id=doc.id,
                content=doc.content,
                metadata=doc.metadata,
                score=float(score),
            ))
            if len(results) >= options.top_k:
                break

        return results

    async def search_by_text(
        self,
        query: str,
        options: VectorSearchOptions,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        vector = await self.embedder.embed_one(query)
        return await self.search(vector, options, cancel_event=cancel_event)

    async def delete(self, ids: Sequence[str]) -> None:
        async with self._lock:
            removed = sum(1 for doc_id in ids if self._documents.pop(doc_id, None) is not None)
        logger.info("Deleted vectors from memory", requested=len(ids), deleted=removed)

    async def delete_by_filter(self, filter: Dict[str, Any]) -> int:
        predicates = parse_filter(filter)
        if not predicates:
            raise ValueError("delete_by_filter requires at least one condition")

        async with self._lock:
            doomed = [
                doc_id for doc_id, doc in self._documents.items()
                if matches_filter(doc.metadata.to_dict(), predicates)
            ]
            for doc_id in doomed:
                del self._documents[doc_id]

        logger.info("Deleted vectors by filter", deleted=len(doomed))
        return len(doomed)

    async def fetch(self, ids: Sequence[str]) -> List[VectorDocument]:
        async with self._lock:
            return [self._documents[doc_id] for doc_id in ids if doc_id in self._documents]

    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        predicates = parse_filter(filter)
        async with self._lock:
            return sum(
                1 for doc in self._documents.values()
                if matches_filter(doc.metadata.to_dict(), predicates)
            )

    async def delete_older_than(self, cutoff: datetime) -> int:
        async with self._lock:
            doomed = [
                doc_id for doc_id, doc in self._documents.items()
                if doc.metadata.created_at < cutoff
            ]
            for doc_id in doomed:
                del self._documents[doc_id]

        logger.info("Deleted aged vectors from memory", cutoff=cutoff.isoformat(), deleted=len(doomed))
        return len(doomed)
