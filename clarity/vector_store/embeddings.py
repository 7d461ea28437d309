"""Text embedders used by vector providers.

- ``HashingEmbedder``: deterministic feature hashing, no external service.
  Backs the in-memory provider so it works with zero dependencies.
- ``EmbeddingServiceClient``: calls the platform embedding service over HTTP
  (``POST {url}/api/v1/embed``) and is what managed providers use.
"""

import hashlib
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np
import structlog

from .base import ProviderResponseError, ProviderUnavailableError

logger = structlog.get_logger("vector_store.embeddings")

_TOKEN_PATTERN = re.compile(r"[a-z0-9]+")

_STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in",
    "into", "is", "it", "of", "on", "or", "the", "to", "via", "with",
})


class Embedder(ABC):
    """Turns text into fixed-size vectors."""

    dimension: int

    @abstractmethod
    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        """Embed ``texts`` into an array of shape ``(len(texts), dimension)``."""
        pass

    async def embed_one(self, text: str) -> np.ndarray:
        """Embed a single text."""
        vectors = await self.embed([text])
        return vectors[0]

    async def close(self) -> None:
        """Release client resources."""
        return None


class HashingEmbedder(Embedder):
    """Bag-of-words feature hashing embedder.

    Each word token adds weight to one hashed bucket and each of its
    character trigrams adds a smaller weight, so shared words dominate the
    similarity and near spellings ("login" vs "log in") still overlap.
    Hashing uses blake2b so vectors are identical across processes.
    """

    def __init__(
        self,
        dimension: int = 384,
        token_weight: float = 1.0,
        trigram_weight: float = 0.25
    ):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension
        self.token_weight = token_weight
        self.trigram_weight = trigram_weight

    def _bucket(self, feature: str) -> int:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self.dimension

    def tokenize(self, text: str) -> List[str]:
        return [t for t in _TOKEN_PATTERN.findall(text.lower()) if t not in _STOPWORDS]

    def embed_text(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dimension, dtype=np.float32)
        for token in self.tokenize(text):
            vector[self._bucket(f"w:{token}")] += self.token_weight
            padded = f"#{token}#"
            for i in range(len(padded) - 2):
                vector[self._bucket(f"c:{padded[i:i + 3]}")] += self.trigram_weight

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)
        return np.vstack([self.embed_text(text) for text in texts])


class EmbeddingServiceClient(Embedder):
    """HTTP client for the embedding service.

    Transport failures, timeouts and auth/5xx responses raise
    ``ProviderUnavailableError``; payloads without usable vectors raise
    ``ProviderResponseError``.
    """

    def __init__(
        self,
        base_url: str,
        dimension: int = 384,
        model: str = "default",
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """Configure the client.

        Args:
            base_url: Embedding service root URL
            dimension: Expected vector size; responses are checked against it
            model: Model name forwarded to the service
            timeout: Per-request timeout in seconds
            http_client: Optional preconfigured client (tests inject a mock transport)
        """
        self.base_url = base_url.rstrip("/")
        self.dimension = dimension
        self.model = model
        self.timeout = timeout
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def embed(self, texts: Sequence[str]) -> np.ndarray:
        if not texts:
            return np.zeros((0, self.dimension), dtype=np.float32)

        payload = {
            "items": [{"text": text} for text in texts],
            "model": self.model,
        }

        try:
            response = await self.http_client.post(
                f"{self.base_url}/api/v1/embed",
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning("Embedding service timed out", error=str(e))
            raise ProviderUnavailableError(f"Embedding service timed out: {e}") from e
        except httpx.TransportError as e:
            logger.warning("Embedding service unreachable", error=str(e))
            raise ProviderUnavailableError(f"Embedding service unreachable: {e}") from e

        if response.status_code in (401, 403) or response.status_code >= 500:
            logger.warning(
                "Embedding service rejected request",
                status_code=response.status_code
            )
            raise ProviderUnavailableError(
                f"Embedding service returned status {response.status_code}"
            )
        if response.status_code != 200:
            logger.error(
                "Embedding service returned unexpected status",
                status_code=response.status_code,
                body=response.text[:500]
            )
            raise ProviderResponseError(
                f"Embedding service returned status {response.status_code}"
            )

        return self._parse_vectors(response, expected=len(texts))

    def _parse_vectors(self, response: httpx.Response, expected: int) -> np.ndarray:
        try:
            data: Dict[str, Any] = response.json()
            vectors = np.asarray(data["vectors"], dtype=np.float32)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Malformed embedding response", body=response.text[:500], error=str(e))
            raise ProviderResponseError(f"Malformed embedding response: {e}") from e

        if vectors.ndim != 2 or vectors.shape[0] != expected or vectors.shape[1] != self.dimension:
            logger.error(
                "Embedding response has unexpected shape",
                shape=list(vectors.shape),
                expected_count=expected,
                expected_dimension=self.dimension
            )
            raise ProviderResponseError(
                f"Expected {expected} vectors of dimension {self.dimension}, "
                f"got shape {tuple(vectors.shape)}"
            )
        if not np.all(np.isfinite(vectors)):
            raise ProviderResponseError("Embedding response contains non-finite values")
        return vectors

    async def close(self) -> None:
        if self._owns_client:
            await self.http_client.aclose()


def cosine_similarity(matrix: np.ndarray, query: np.ndarray) -> np.ndarray:
    """Cosine similarity of every row of ``matrix`` with ``query``.

    Rows or queries with zero norm score 0.0.
    """
    if matrix.size == 0:
        return np.zeros(matrix.shape[0], dtype=np.float32)

    query_norm = float(np.linalg.norm(query))
    row_norms = np.linalg.norm(matrix, axis=1)
    if query_norm == 0.0 or math.isnan(query_norm):
        return np.zeros(matrix.shape[0], dtype=np.float32)

    dots = matrix @ query
    scores = np.zeros(matrix.shape[0], dtype=np.float32)
    nonzero = row_norms > 0
    scores[nonzero] = dots[nonzero] / (row_norms[nonzero] * query_norm)
    return scores
