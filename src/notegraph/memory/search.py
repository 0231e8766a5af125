"""
Full-text retrieval with optional recency weighting.

FTS5 ranks are negative and lower is better. Recency weighting multiplies
the raw rank by a half-life decay in [0.05, 1.0], so older observations
drift toward zero (worse) while fresh ones keep their full score.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from notegraph.core.logging import get_logger
from notegraph.memory.base import Entity, Observation, SearchResult, slugify
from notegraph.memory.store import SQLiteNoteStore

logger = get_logger("memory.search")

DEFAULT_HALF_LIFE_DAYS = 30.0
UNKNOWN_AGE_DAYS = 10000
MIN_DECAY = 0.05
MAX_DECAY = 1.0
MAX_RECENCY_CANDIDATES = 100


@dataclass
class SearchOptions:
    recency: bool = False
    half_life_days: float | None = None

    def __post_init__(self) -> None:
        if self.half_life_days is not None and self.half_life_days <= 0:
            raise ValueError(f"half_life_days must be positive, got {self.half_life_days}")

    @property
    def effective_half_life(self) -> float:
        return self.half_life_days if self.half_life_days is not None else DEFAULT_HALF_LIFE_DAYS


def age_in_days(created_at: str, now: datetime | None = None) -> int:
    """Whole days since `created_at`; unparseable dates count as very old."""
    now = now or datetime.now()
    try:
        created = datetime.fromisoformat(created_at)
    except (TypeError, ValueError):
        return UNKNOWN_AGE_DAYS
    if created.tzinfo is not None and now.tzinfo is None:
        created = created.replace(tzinfo=None)
    elif created.tzinfo is None and now.tzinfo is not None:
        now = now.replace(tzinfo=None)
    elapsed = (now - created).total_seconds() / 86400
    return max(0, math.floor(elapsed))


def recency_decay(age_days: float, half_life_days: float) -> float:
    """0.5 ** (age / half_life), clamped to [MIN_DECAY, MAX_DECAY]."""
    if half_life_days <= 0:
        raise ValueError(f"half_life_days must be positive, got {half_life_days}")
    decay = 0.5 ** (age_days / half_life_days)
    return min(MAX_DECAY, max(MIN_DECAY, decay))


def group_by_entity(
    hits: list[tuple[Observation, Entity, float]], limit: int
) -> list[SearchResult]:
    """Group hits under their owner; group score is the best (lowest) rank."""
    groups: dict[str, SearchResult] = {}
    for observation, entity, rank in hits:
        group = groups.get(entity.id)
        if group is None:
            groups[entity.id] = SearchResult(entity=entity, observations=[observation], score=rank)
            continue
        group.observations.append(observation)
        group.score = min(group.score, rank)

    return sorted(groups.values(), key=lambda r: r.score)[:limit]


class MemorySearch:
    """Query side of the note store."""

    def __init__(self, store: SQLiteNoteStore):
        self.store = store

    async def search(
        self,
        query: str,
        limit: int = 20,
        options: SearchOptions | None = None,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """
        Full-text search grouped by entity.

        Args:
            query: FTS5 query string
            limit: Max entity groups returned
            options: Recency weighting settings
            now: Reference time for observation ages (defaults to now)

        Raises:
            ValueError: If limit is not positive
            QueryError: If the index rejects the query syntax
        """
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        if not query or not query.strip():
            return []
        options = options or SearchOptions()

        if not options.recency:
            hits = await self.store.search_fts(query, limit)
            return group_by_entity(hits, limit)

        # Over-fetch so re-ranking can promote fresher matches
        candidates = await self.store.search_fts(query, min(limit * 3, MAX_RECENCY_CANDIDATES))
        half_life = options.effective_half_life
        now = now or datetime.now()

        adjusted = [
            (observation, entity, rank * recency_decay(age_in_days(observation.created_at, now), half_life))
            for observation, entity, rank in candidates
        ]
        adjusted.sort(key=lambda hit: hit[2])
        results = group_by_entity(adjusted, limit)
        logger.debug(
            f"Recency search '{query}': {len(candidates)} candidates -> {len(results)} groups "
            f"(half-life {half_life}d)"
        )
        return results

    async def find_entity(self, name_or_permalink: str) -> Entity | None:
        """Exact permalink first, then the slugified name, then a name substring."""
        text = name_or_permalink.strip()
        if not text:
            return None
        entity = await self.store.get_entity_by_permalink(text)
        if entity:
            return entity
        slug = slugify(text)
        if slug and slug != text:
            entity = await self.store.get_entity_by_permalink(slug)
            if entity:
                return entity
        return await self.store.find_entity_by_name(text)

    async def get_recent_activity(self, days: int, today: date | None = None) -> list[Observation]:
        """Observations dated within the last `days` days, today included."""
        if days < 0:
            raise ValueError(f"days must not be negative, got {days}")
        today = today or date.today()
        cutoff = today - timedelta(days=days)
        return await self.store.get_observations_in_range(cutoff.isoformat(), today.isoformat())
