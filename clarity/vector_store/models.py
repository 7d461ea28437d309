"""Canonical document schema shared by the knowledge store and providers.

The orchestrator owns this schema. Providers translate it to their own
storage representation and must hand the canonical fields back unchanged.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np


DEFAULT_TOP_K = 10


class DocumentType(str, Enum):
    """Kinds of documents kept in the knowledge index."""
    SPECIFICATION = "specification"
    CONTEXT = "context"
    KNOWLEDGE = "knowledge"
    TEMPLATE = "template"


@dataclass
class VectorMetadata:
    """Canonical metadata carried by every stored document.

    ``user_id``, ``team_id`` and ``specification_id`` stay ``None`` when not
    supplied so that equality filters never match a document that lacks the
    field. Caller-supplied extras live in ``extra``.
    """
    id: str
    type: DocumentType
    title: str
    created_at: datetime
    tags: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    specification_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    CANONICAL_FIELDS = (
        "id",
        "type",
        "title",
        "created_at",
        "tags",
        "user_id",
        "team_id",
        "specification_id",
    )

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into a JSON-ready mapping (extras first, canonical fields win)."""
        data: Dict[str, Any] = dict(self.extra)
        data.update({
            "id": self.id,
            "type": DocumentType(self.type).value,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "tags": list(self.tags),
        })
        for key in ("user_id", "team_id", "specification_id"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VectorMetadata":
        """Rebuild metadata from the mapping produced by ``to_dict``."""
        created_at = data["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [tags]

        return cls(
            id=data["id"],
            type=DocumentType(data["type"]),
            title=data.get("title", ""),
            created_at=created_at,
            tags=list(tags),
            user_id=data.get("user_id"),
            team_id=data.get("team_id"),
            specification_id=data.get("specification_id"),
            extra={k: v for k, v in data.items() if k not in cls.CANONICAL_FIELDS},
        )


@dataclass
class VectorDocument:
    """A normalized document ready for a provider."""
    id: str
    content: str
    metadata: VectorMetadata
    embedding: Optional[np.ndarray] = None


@dataclass(frozen=True)
class KnowledgeDocument:
    """Caller input before normalization. Never mutated after creation."""
    title: str
    content: str
    type: DocumentType
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    specification_id: Optional[str] = None
    tags: Sequence[str] = ()
    metadata: Optional[Dict[str, Any]] = None


ScopeType = Union[DocumentType, str, Sequence[Union[DocumentType, str]]]


@dataclass
class VectorSearchOptions:
    """Search parameters.

    ``user_id``, ``team_id`` and ``type`` narrow the scope; the knowledge
    store folds them into ``filter`` before a provider sees the options.
    """
    top_k: int = DEFAULT_TOP_K
    filter: Optional[Dict[str, Any]] = None
    min_score: Optional[float] = None
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    type: Optional[ScopeType] = None

    def __post_init__(self):
        if not isinstance(self.top_k, int) or self.top_k <= 0:
            raise ValueError(f"top_k must be a positive integer, got {self.top_k!r}")

    def with_filter(self, filter: Optional[Dict[str, Any]]) -> "VectorSearchOptions":
        """Copy with ``filter`` replaced and scope fields cleared."""
        return replace(self, filter=filter, user_id=None, team_id=None, type=None)


@dataclass
class VectorSearchResult:
    """One ranked hit. ``score`` is only comparable within a single search."""
    id: str
    content: str
    metadata: VectorMetadata
    score: float


@dataclass
class RelatedSpecification:
    """A specification similar to another one."""
    id: str
    title: str
    score: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def utc_now() -> datetime:
    """Timezone-aware current time used for ``created_at``."""
    return datetime.now(timezone.utc)
