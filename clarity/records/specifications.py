"""Read access to specifications in the relational store.

The knowledge store only needs one query: a specification together with its
latest version. ``SpecificationRepository`` is the seam; ``PgSpecificationRepository``
serves it from PostgreSQL (tables ``specifications`` and
``specification_versions``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from .database import Database

logger = structlog.get_logger("records.specifications")


@dataclass
class SpecificationVersion:
    """One generated revision of a specification's views."""
    version: int
    pm_view: Optional[Dict[str, Any]] = None
    frontend_view: Optional[Dict[str, Any]] = None
    backend_view: Optional[Dict[str, Any]] = None


@dataclass
class Specification:
    """A specification header plus its newest version, if any."""
    id: str
    title: str
    author_id: str
    priority: str
    status: str
    description: Optional[str] = None
    team_id: Optional[str] = None
    quality_score: Optional[float] = None
    latest_version: Optional[SpecificationVersion] = None


class SpecificationRepository(ABC):
    """Lookup of specifications by id."""

    @abstractmethod
    async def get_with_latest_version(self, spec_id: str) -> Optional[Specification]:
        """Return the specification with its highest-numbered version.

        ``None`` when the specification does not exist; ``latest_version`` is
        ``None`` when it has no versions yet.
        """
        pass


_LATEST_VERSION_QUERY = """
    SELECT s.id, s.title, s.description, s.author_id, s.team_id,
           s.priority, s.status, s.quality_score,
           v.version, v.pm_view, v.frontend_view, v.backend_view
    FROM specifications s
    LEFT JOIN LATERAL (
        SELECT version, pm_view, frontend_view, backend_view
        FROM specification_versions
        WHERE specification_id = s.id
        ORDER BY version DESC
        LIMIT 1
    ) v ON TRUE
    WHERE s.id = $1
"""


class PgSpecificationRepository(SpecificationRepository):
    """PostgreSQL-backed specification lookup."""

    def __init__(self, database: Database):
        self.database = database

    async def get_with_latest_version(self, spec_id: str) -> Optional[Specification]:
        row = await self.database.fetch_one(_LATEST_VERSION_QUERY, spec_id)
        if row is None:
            logger.debug("Specification not found", specification_id=spec_id)
            return None

        latest = None
        if row["version"] is not None:
            latest = SpecificationVersion(
                version=row["version"],
                pm_view=row["pm_view"],
                frontend_view=row["frontend_view"],
                backend_view=row["backend_view"],
            )

        quality_score = row["quality_score"]
        return Specification(
            id=row["id"],
            title=row["title"],
            description=row["description"],
            author_id=row["author_id"],
            team_id=row["team_id"],
            priority=row["priority"],
            status=row["status"],
            quality_score=float(quality_score) if quality_score is not None else None,
            latest_version=latest,
        )
