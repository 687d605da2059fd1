"""
Duplicate Detector
==================

Two-tier near-duplicate check for a freshly generated idea.

1. Exact pre-filter: case-insensitive, trimmed equality of
   (base domain, problem, solution). No external call.
2. Semantic check: embed the idea text, fetch the nearest stored ideas
   by cosine distance and flag the best match at or above the threshold.

On PostgreSQL the neighbor query runs in pgvector; other databases load
the stored vectors and rank them with NumPy.
"""

from dataclasses import dataclass
from typing import Optional
from uuid import UUID

import numpy as np
import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ideaforge.core.config import settings
from ideaforge.core.generation.parser import GeneratedIdea
from ideaforge.core.generation.providers import EmbeddingProvider
from ideaforge.core.models import Idea

logger = structlog.get_logger()


@dataclass
class DuplicateVerdict:
    is_duplicate: bool
    matched_idea_id: Optional[UUID] = None
    matched_idea_name: Optional[str] = None
    similarity: Optional[float] = None
    method: Optional[str] = None  # exact | semantic
    embedding: Optional[list[float]] = None

    def to_dict(self) -> dict:
        return {
            "isDuplicate": self.is_duplicate,
            "matchedIdeaId": str(self.matched_idea_id) if self.matched_idea_id else None,
            "matchedIdeaName": self.matched_idea_name,
            "similarity": self.similarity,
            "method": self.method,
        }


def _normalize(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def rank_by_cosine(
    query: list[float],
    candidates: list[tuple[UUID, str, object]],
    limit: int,
) -> list[tuple[UUID, str, float]]:
    """
    Rank stored vectors by cosine similarity to the query.

    Returns up to ``limit`` (id, name, similarity) tuples, most similar
    first; ties are broken by id so the ranking is stable.
    """
    if not candidates:
        return []

    matrix = np.asarray([np.asarray(vector, dtype=np.float64) for _, _, vector in candidates])
    vector = np.asarray(query, dtype=np.float64)

    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(norms > 0, matrix @ vector / norms, 0.0)

    ranked = sorted(
        ((idea_id, name, float(sim)) for (idea_id, name, _), sim in zip(candidates, similarities)),
        key=lambda item: (-item[2], str(item[0])),
    )
    return ranked[:limit]


class DuplicateDetector:
    """Decides whether a generated idea duplicates a stored one."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        embedder: EmbeddingProvider,
        threshold: Optional[float] = None,
        neighbor_limit: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.embedder = embedder
        self.threshold = threshold if threshold is not None else settings.DUPLICATE_SIMILARITY_THRESHOLD
        self.neighbor_limit = neighbor_limit or settings.DUPLICATE_NEIGHBOR_LIMIT

    async def check(self, candidate: GeneratedIdea) -> DuplicateVerdict:
        """
        Run both tiers against the idea store.

        Raises:
            ExternalServiceError: the embedding call failed
        """
        async with self.session_factory() as db:
            exact = await self._exact_match(db, candidate)
        if exact is not None:
            logger.info("Exact duplicate found", idea_id=str(exact[0]), name=exact[1])
            return DuplicateVerdict(
                is_duplicate=True,
                matched_idea_id=exact[0],
                matched_idea_name=exact[1],
                similarity=1.0,
                method="exact",
            )

        embedding = await self.embedder.embed(candidate.embedding_text())
        async with self.session_factory() as db:
            neighbors = await self.nearest(db, embedding)

        if neighbors:
            idea_id, name, similarity = neighbors[0]
            if similarity >= self.threshold:
                logger.info("Semantic duplicate found", idea_id=str(idea_id), similarity=round(similarity, 4))
                return DuplicateVerdict(
                    is_duplicate=True,
                    matched_idea_id=idea_id,
                    matched_idea_name=name,
                    similarity=similarity,
                    method="semantic",
                    embedding=embedding,
                )

        best = neighbors[0][2] if neighbors else None
        return DuplicateVerdict(is_duplicate=False, similarity=best, method="semantic", embedding=embedding)

    async def _exact_match(self, db: AsyncSession, candidate: GeneratedIdea) -> Optional[tuple[UUID, str]]:
        result = await db.execute(
            select(Idea.id, Idea.name)
            .where(
                func.lower(func.trim(Idea.domain)) == _normalize(candidate.domain),
                func.lower(func.trim(Idea.problem)) == _normalize(candidate.problem),
                func.lower(func.trim(Idea.solution)) == _normalize(candidate.solution),
            )
            .order_by(Idea.created_at)
            .limit(1)
        )
        row = result.first()
        return (row.id, row.name) if row else None

    async def nearest(self, db: AsyncSession, embedding: list[float]) -> list[tuple[UUID, str, float]]:
        """Nearest stored ideas as (id, name, cosine similarity), most similar first."""
        if db.get_bind().dialect.name == "postgresql":
            distance = Idea.embedding.cosine_distance(embedding).label("distance")
            result = await db.execute(
                select(Idea.id, Idea.name, distance)
                .where(Idea.embedding.is_not(None))
                .order_by(distance, Idea.id)
                .limit(self.neighbor_limit)
            )
            return [(row.id, row.name, 1.0 - float(row.distance)) for row in result.all()]

        result = await db.execute(
            select(Idea.id, Idea.name, Idea.embedding).where(Idea.embedding.is_not(None))
        )
        return rank_by_cosine(embedding, [tuple(row) for row in result.all()], self.neighbor_limit)
