"""OpenSearch k-NN vector provider.

Translates the canonical schema to OpenSearch requests and back; no business
logic lives here. Filters are applied inside the k-NN clause (``lucene``
engine efficient filtering) so ``top_k`` counts only matching documents.

Error mapping
- timeouts, connection, authentication/authorization and 5xx transport
  errors -> ``ProviderUnavailableError``
- other transport errors and responses we cannot translate ->
  ``ProviderResponseError`` (raw response logged)
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Sequence

import numpy as np
import structlog
from opensearchpy import AsyncOpenSearch
from opensearchpy import exceptions as os_exceptions

from .base import (
    ProviderInitError,
    ProviderResponseError,
    ProviderUnavailableError,
    VectorProvider,
    VectorStoreError,
    run_cancellable,
)
from .embeddings import Embedder
from .filters import EQ, IN, NE, NIN, Predicate, parse_filter
from .models import VectorDocument, VectorMetadata, VectorSearchOptions, VectorSearchResult

logger = structlog.get_logger("vector_store.opensearch")

METADATA_FIELD = "metadata"
VECTOR_FIELD = "vector"


def build_index_body(vector_dimension: int) -> Dict[str, Any]:
    """Index settings and mappings for the knowledge index."""
    return {
        "settings": {
            "index": {
                "knn": True,
                "number_of_shards": 1,
                "number_of_replicas": 0,
            }
        },
        "mappings": {
            "dynamic_templates": [
                {
                    "metadata_strings_as_keywords": {
                        "path_match": f"{METADATA_FIELD}.*",
                        "match_mapping_type": "string",
                        "mapping": {"type": "keyword"},
                    }
                }
            ],
            "properties": {
                "content": {"type": "text"},
                VECTOR_FIELD: {
                    "type": "knn_vector",
                    "dimension": vector_dimension,
                    "method": {
                        "name": "hnsw",
                        "space_type": "cosinesimil",
                        "engine": "lucene",
                        "parameters": {
                            "ef_construction": 128,
                            "m": 24
                        }
                    }
                },
                METADATA_FIELD: {
                    "properties": {
                        "id": {"type": "keyword"},
                        "type": {"type": "keyword"},
                        "title": {"type": "keyword"},
                        "tags": {"type": "keyword"},
                        "user_id": {"type": "keyword"},
                        "team_id": {"type": "keyword"},
                        "specification_id": {"type": "keyword"},
                        "created_at": {"type": "date"},
                    }
                },
            }
        },
    }


def _clause(predicate: Predicate) -> Dict[str, Any]:
    field_path = f"{METADATA_FIELD}.{predicate.field}"
    if predicate.operator in (IN, NIN):
        return {"terms": {field_path: list(predicate.value)}}
    return {"term": {field_path: predicate.value}}


def translate_filter(filter: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Translate the shared filter grammar into an OpenSearch ``bool`` query.

    ``term``/``terms`` never match a document lacking the field and
    ``must_not`` always does, which matches the in-memory semantics.
    """
    predicates = parse_filter(filter)
    if not predicates:
        return None

    must: List[Dict[str, Any]] = []
    must_not: List[Dict[str, Any]] = []
    for predicate in predicates:
        if predicate.operator in (EQ, IN):
            must.append(_clause(predicate))
        elif predicate.operator in (NE, NIN):
            must_not.append(_clause(predicate))

    query: Dict[str, Any] = {}
    if must:
        query["filter"] = must
    if must_not:
        query["must_not"] = must_not
    return {"bool": query}


class OpenSearchVectorProvider(VectorProvider):
    """OpenSearch-backed provider."""

    name = "opensearch"

    def __init__(
        self,
        hosts: List[str],
        embedder: Embedder,
        index_name: str = "clarity_knowledge",
        vector_dimension: int = 384,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_certs: bool = False,
        ssl_assert_hostname: bool = False,
        ssl_show_warn: bool = False,
        request_timeout: float = 10.0,
        probe_timeout: float = 2.0,
        refresh: str = "wait_for",
        client: Optional[AsyncOpenSearch] = None,
    ):
        """Initialize the OpenSearch provider.

        Args:
            hosts: List of OpenSearch host URLs
            embedder: Embedder used for documents and queries
            index_name: Name of the knowledge index
            vector_dimension: Dimension of the vectors
            username: OpenSearch username
            password: OpenSearch password
            verify_certs: Whether to verify SSL certificates
            ssl_assert_hostname: Whether to assert hostname
            ssl_show_warn: Whether to show SSL warnings
            request_timeout: Upper bound in seconds for each backend call
            probe_timeout: Upper bound in seconds for ``is_available``
            refresh: Refresh policy for writes (``wait_for`` makes them searchable)
            client: Preconfigured client, mainly for tests
        """
        self.hosts = hosts
        self.embedder = embedder
        self.index_name = index_name
        self.vector_dimension = vector_dimension
        self.request_timeout = request_timeout
        self.probe_timeout = probe_timeout
        self.refresh = refresh

        self.client = client or AsyncOpenSearch(
            hosts=hosts,
            http_auth=(username, password) if username and password else None,
            verify_certs=verify_certs,
            ssl_assert_hostname=ssl_assert_hostname,
            ssl_show_warn=ssl_show_warn,
            use_ssl=True if hosts and hosts[0].startswith("https") else False,
            timeout=request_timeout,
        )

        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the index if it doesn't exist."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return
            try:
                exists = await asyncio.wait_for(
                    self.client.indices.exists(index=self.index_name),
                    timeout=self.request_timeout
                )
                if not exists:
                    await asyncio.wait_for(
                        self.client.indices.create(
                            index=self.index_name,
                            body=build_index_body(self.vector_dimension)
                        ),
                        timeout=self.request_timeout
                    )
                    logger.info("OpenSearch index created", index_name=self.index_name)
            except os_exceptions.RequestError as e:
                # a concurrent creator won the race
                if getattr(e, "error", None) != "resource_already_exists_exception":
                    logger.error("Failed to initialize OpenSearch provider", error=str(e))
                    raise ProviderInitError(f"OpenSearch initialization failed: {e}") from e
            except Exception as e:
                logger.error("Failed to initialize OpenSearch provider", error=str(e))
                raise ProviderInitError(f"OpenSearch initialization failed: {e}") from e

            self._initialized = True
            logger.info("OpenSearch vector provider initialized", index_name=self.index_name)

    async def is_available(self) -> bool:
        """Credentials/connectivity probe via the cluster info endpoint."""
        try:
            info = await asyncio.wait_for(self.client.info(), timeout=self.probe_timeout)
            return bool(info)
        except Exception as e:
            logger.warning("OpenSearch not available", hosts=self.hosts, error=str(e))
            return False

    async def _call(
        self,
        operation: str,
        awaitable: Awaitable[Any],
        cancel_event: Optional[asyncio.Event] = None
    ) -> Any:
        """Run one backend call with a timeout, cancellation and error mapping."""
        try:
            return await run_cancellable(
                asyncio.wait_for(awaitable, timeout=self.request_timeout),
                cancel_event
            )
        except VectorStoreError:
            raise
        except asyncio.TimeoutError as e:
            logger.warning("OpenSearch call timed out", operation=operation, timeout=self.request_timeout)
            raise ProviderUnavailableError(f"OpenSearch {operation} timed out") from e
        except (
            os_exceptions.ConnectionError,
            os_exceptions.AuthenticationException,
            os_exceptions.AuthorizationException,
        ) as e:
            logger.warning("OpenSearch unavailable", operation=operation, error=str(e))
            raise ProviderUnavailableError(f"OpenSearch {operation} failed: {e}") from e
        except os_exceptions.TransportError as e:
            status_code = e.status_code if isinstance(e.status_code, int) else None
            if status_code is not None and status_code >= 500:
                logger.warning("OpenSearch server error", operation=operation, status_code=status_code, error=str(e))
                raise ProviderUnavailableError(f"OpenSearch {operation} failed: {e}") from e
            logger.error(
                "OpenSearch rejected request",
                operation=operation,
                status_code=e.status_code,
                info=str(e.info)[:1000]
            )
            raise ProviderResponseError(f"OpenSearch {operation} rejected: {e}") from e
        except os_exceptions.OpenSearchException as e:
            logger.error("OpenSearch client error", operation=operation, error=str(e))
            raise ProviderResponseError(f"OpenSearch {operation} failed: {e}") from e

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    def _to_source(self, doc: VectorDocument, vector: np.ndarray) -> Dict[str, Any]:
        return {
            "content": doc.content,
            VECTOR_FIELD: np.asarray(vector, dtype=np.float32).tolist(),
            METADATA_FIELD: doc.metadata.to_dict(),
        }

    async def upsert(
        self,
        documents: Sequence[VectorDocument],
        cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Index documents with a single bulk request.

        Items the backend rejects are reported together; accepted items stay.
        """
        if not documents:
            return

        await self._ensure_initialized()

        pending = [i for i, doc in enumerate(documents) if doc.embedding is None]
        computed: Dict[int, np.ndarray] = {}
        if pending:
            vectors = await run_cancellable(
                self.embedder.embed([documents[i].content for i in pending]),
                cancel_event
            )
            computed = dict(zip(pending, vectors))

        body: List[Dict[str, Any]] = []
        for i, doc in enumerate(documents):
            vector = computed.get(i, doc.embedding)
            body.append({"index": {"_index": self.index_name, "_id": doc.id}})
            body.append(self._to_source(doc, vector))

        response = await self._call(
            "bulk upsert",
            self.client.bulk(body=body, refresh=self.refresh),
            cancel_event
        )
        self._raise_for_bulk_errors("index", response)

        logger.info("Upserted vectors to OpenSearch", count=len(documents), index_name=self.index_name)

    def _raise_for_bulk_errors(self, action: str, response: Any) -> None:
        try:
            if not response.get("errors"):
                return
            failed = [
                item[action]["_id"]
                for item in response["items"]
                if item[action].get("error") and item[action].get("status") != 404
            ]
        except (AttributeError, KeyError, TypeError) as e:
            logger.error("Malformed bulk response", response=str(response)[:1000], error=str(e))
            raise ProviderResponseError(f"Malformed bulk response: {e}") from e

        if failed:
            logger.error("OpenSearch bulk request partially failed", action=action, failed_ids=failed)
            raise ProviderResponseError(f"Bulk {action} failed for ids: {', '.join(failed)}")

    async def search(
        self,
        vector: np.ndarray,
        options: VectorSearchOptions,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        """k-NN search with the filter applied inside the k-NN clause."""
        await self._ensure_initialized()

        knn: Dict[str, Any] = {
            "vector": np.asarray(vector, dtype=np.float32).tolist(),
            "k": options.top_k,
        }
        bool_filter = translate_filter(options.filter)
        if bool_filter is not None:
            knn["filter"] = bool_filter

        query = {
            "size": options.top_k,
            "_source": {"excludes": [VECTOR_FIELD]},
            "query": {"knn": {VECTOR_FIELD: knn}},
        }

        response = await self._call(
            "search",
            self.client.search(index=self.index_name, body=query),
            cancel_event
        )

        results = self._parse_hits(response)
        if options.min_score is not None:
            results = [r for r in results if r.score >= options.min_score]
        results.sort(key=lambda r: r.score, reverse=True)

        logger.info(
            "OpenSearch similarity search completed",
            results_count=len(results),
            index_name=self.index_name
        )
        return results[:options.top_k]

    def _parse_hits(self, response: Any) -> List[VectorSearchResult]:
        try:
            results = []
            for hit in response["hits"]["hits"]:
                source = hit["_source"]
                results.append(VectorSearchResult(
                    id=hit["_id"],
                    content=source.get("content", ""),
                    metadata=VectorMetadata.from_dict(source[METADATA_FIELD]),
                    score=float(hit["_score"]),
                ))
            return results
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed OpenSearch search response", response=str(response)[:1000], error=str(e))
            raise ProviderResponseError(f"Malformed search response: {e}") from e

    async def search_by_text(
        self,
        query: str,
        options: VectorSearchOptions,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        vector = await run_cancellable(self.embedder.embed_one(query), cancel_event)
        return await self.search(vector, options, cancel_event=cancel_event)

    async def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return

        await self._ensure_initialized()
        body = [{"delete": {"_index": self.index_name, "_id": doc_id}} for doc_id in ids]
        response = await self._call("bulk delete", self.client.bulk(body=body, refresh=self.refresh))
        self._raise_for_bulk_errors("delete", response)

        logger.info("Deleted vectors from OpenSearch", count=len(ids), index_name=self.index_name)

    async def delete_by_filter(self, filter: Dict[str, Any]) -> int:
        bool_filter = translate_filter(filter)
        if bool_filter is None:
            raise ValueError("delete_by_filter requires at least one condition")

        return await self._delete_by_query("delete by filter", bool_filter)

    async def delete_older_than(self, cutoff: datetime) -> int:
        query = {"range": {f"{METADATA_FIELD}.created_at": {"lt": cutoff.isoformat()}}}
        return await self._delete_by_query("delete older than", query)

    async def _delete_by_query(self, operation: str, query: Dict[str, Any]) -> int:
        await self._ensure_initialized()
        response = await self._call(
            operation,
            self.client.delete_by_query(
                index=self.index_name,
                body={"query": query},
                conflicts="proceed",
                refresh=True,
            )
        )
        try:
            deleted = int(response["deleted"])
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed delete_by_query response", response=str(response)[:1000], error=str(e))
            raise ProviderResponseError(f"Malformed delete_by_query response: {e}") from e

        logger.info("Deleted vectors by query", operation=operation, deleted=deleted, index_name=self.index_name)
        return deleted

    async def fetch(self, ids: Sequence[str]) -> List[VectorDocument]:
        if not ids:
            return []

        await self._ensure_initialized()
        response = await self._call(
            "fetch",
            self.client.mget(index=self.index_name, body={"ids": list(ids)})
        )

        try:
            documents = []
            for item in response["docs"]:
                if not item.get("found"):
                    continue
                source = item["_source"]
                vector = source.get(VECTOR_FIELD)
                documents.append(VectorDocument(
                    id=item["_id"],
                    content=source.get("content", ""),
                    metadata=VectorMetadata.from_dict(source[METADATA_FIELD]),
                    embedding=np.asarray(vector, dtype=np.float32) if vector is not None else None,
                ))
            return documents
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed OpenSearch mget response", response=str(response)[:1000], error=str(e))
            raise ProviderResponseError(f"Malformed fetch response: {e}") from e

    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        await self._ensure_initialized()
        bool_filter = translate_filter(filter)
        body = {"query": bool_filter if bool_filter is not None else {"match_all": {}}}
        response = await self._call("count", self.client.count(index=self.index_name, body=body))
        try:
            return int(response["count"])
        except (KeyError, TypeError, ValueError) as e:
            logger.error("Malformed OpenSearch count response", response=str(response)[:1000], error=str(e))
            raise ProviderResponseError(f"Malformed count response: {e}") from e

    async def close(self) -> None:
        """Close the OpenSearch client connection."""
        await self.client.close()
        await self.embedder.close()
        logger.info("OpenSearch client connection closed")
