"""Base vector provider interface.

Defines the abstract contract the knowledge store depends on, independent of
the backing implementation (in-memory, OpenSearch, etc.).

All methods are asynchronous so network-backed providers never block the
event loop. Providers own their storage representation; the canonical schema
lives in ``models``.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import suppress
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Sequence

import numpy as np

from .models import VectorDocument, VectorSearchOptions, VectorSearchResult


class VectorProvider(ABC):
    """Abstract base class for vector providers.

    Implementations must make upserts idempotent per document id, apply
    filters before truncating to ``top_k``, and return results ordered by
    descending score.
    """

    name: str = "base"

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (connections, index creation).

        Idempotent. Raises ``ProviderInitError`` when the backend cannot be
        reached.
        """
        pass

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap health probe. Never raises; unavailability returns ``False``."""
        pass

    @abstractmethod
    async def upsert(
        self,
        documents: Sequence[VectorDocument],
        cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """Insert or replace documents by id.

        Each document is written atomically; a batch may partially succeed.
        """
        pass

    @abstractmethod
    async def search(
        self,
        vector: np.ndarray,
        options: VectorSearchOptions,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        """Rank stored documents against a precomputed query vector."""
        pass

    @abstractmethod
    async def search_by_text(
        self,
        query: str,
        options: VectorSearchOptions,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[VectorSearchResult]:
        """Embed ``query`` and rank stored documents against it."""
        pass

    @abstractmethod
    async def delete(self, ids: Sequence[str]) -> None:
        """Delete documents by id. Unknown ids are ignored."""
        pass

    @abstractmethod
    async def delete_by_filter(self, filter: Dict[str, Any]) -> int:
        """Delete every document matching ``filter``.

        Returns the number of deleted documents; zero matches is not an error.
        """
        pass

    @abstractmethod
    async def fetch(self, ids: Sequence[str]) -> List[VectorDocument]:
        """Load documents by id, skipping ids that are not stored."""
        pass

    @abstractmethod
    async def count(self, filter: Optional[Dict[str, Any]] = None) -> int:
        """Count stored documents, optionally restricted by ``filter``."""
        pass

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete documents created before ``cutoff``.

        Providers without age-based deletion keep this default.
        """
        raise UnsupportedOperationError(
            f"Provider '{self.name}' does not support age-based deletion"
        )

    async def close(self) -> None:
        """Release client resources."""
        return None


class VectorStoreError(Exception):
    """Base exception for vector store operations."""
    pass


class ProviderInitError(VectorStoreError):
    """Backend unreachable while initializing a provider."""
    pass


class ProviderUnavailableError(VectorStoreError):
    """Transient backend failure during a live call (timeout, auth, network)."""
    pass


class ProviderResponseError(VectorStoreError):
    """Backend returned a response the adapter cannot translate."""
    pass


class NotFoundError(VectorStoreError):
    """Referenced record does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(f"{resource} with id '{resource_id}' not found")
        self.resource = resource
        self.resource_id = resource_id


class UnsupportedOperationError(VectorStoreError):
    """Operation has no implementation for the active provider."""
    pass


class OperationCancelledError(VectorStoreError):
    """Caller cancelled the operation before it committed."""
    pass


def ensure_not_cancelled(cancel_event: Optional[asyncio.Event]) -> None:
    """Raise ``OperationCancelledError`` if ``cancel_event`` has fired."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelledError("Operation cancelled by caller")


async def run_cancellable(
    awaitable: Awaitable[Any],
    cancel_event: Optional[asyncio.Event] = None
) -> Any:
    """Await ``awaitable`` unless ``cancel_event`` fires first.

    When the event wins, the in-flight task is cancelled (aborting any
    transport request it owns) and ``OperationCancelledError`` is raised.
    """
    if cancel_event is None:
        return await awaitable

    if cancel_event.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise OperationCancelledError("Operation cancelled by caller")

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    if task.cancelled():
        raise OperationCancelledError("Operation cancelled by caller")
    return task.result()
