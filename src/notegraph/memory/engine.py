"""
Memory engine - the operation surface used by the UI, HTTP routes and agents.

Typical request flow:

    async with MemoryEngine(settings) as engine:   # init_db()
        await engine.index_all()
        results = await engine.search("lazer", options=SearchOptions(recency=True))
"""

from dataclasses import replace
from datetime import date, datetime
from pathlib import Path

from notegraph.core.config import Settings, get_settings
from notegraph.core.logging import get_logger
from notegraph.memory.activity import ActivityDigest, build_activity_digest
from notegraph.memory.base import (
    ContextResult,
    Entity,
    IntegrationEvent,
    Observation,
    SearchResult,
    Stats,
)
from notegraph.memory.context import ContextBuilder, ContextQuery
from notegraph.memory.curated import format_curated_memory_for_prompt
from notegraph.memory.indexer import IndexAllReport, IndexReport, NoteIndexer
from notegraph.memory.search import MemorySearch, SearchOptions
from notegraph.memory.store import SQLiteNoteStore

logger = get_logger("memory.engine")


class MemoryEngine:
    """Facade over store, indexer, retrieval and context assembly."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.store = SQLiteNoteStore(self.settings.db_path)
        self.indexer = NoteIndexer(
            self.store, [self.settings.daily_dir, self.settings.projects_dir]
        )
        self.retrieval = MemorySearch(self.store)
        self.context = ContextBuilder(self.store, self.retrieval)

    async def init_db(self) -> None:
        """Open the store and create the schema. Idempotent."""
        await self.store.connect()

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> "MemoryEngine":
        await self.init_db()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # Indexing

    async def index_note(self, path: str | Path, today: date | None = None) -> IndexReport:
        return await self.indexer.index_file(path, today=today)

    async def index_all(self, today: date | None = None) -> IndexAllReport:
        return await self.indexer.index_all(today=today)

    async def get_stats(self) -> Stats:
        return await self.store.get_stats()

    # Retrieval

    async def search(
        self,
        query: str,
        limit: int | None = None,
        options: SearchOptions | None = None,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        if options is not None and options.recency and options.half_life_days is None:
            options = replace(options, half_life_days=self.settings.half_life_days)
        return await self.retrieval.search(
            query, self.settings.search_limit if limit is None else limit, options, now=now
        )

    async def find_entity(self, name_or_permalink: str) -> Entity | None:
        return await self.retrieval.find_entity(name_or_permalink)

    async def get_observations(self, entity_id: str) -> list[Observation]:
        return await self.store.get_observations(entity_id)

    async def get_pending_tasks(self, entity_id: str | None = None) -> list[Observation]:
        return await self.store.get_pending_tasks(entity_id)

    async def get_recent_activity(self, days: int, today: date | None = None) -> list[Observation]:
        return await self.retrieval.get_recent_activity(days, today)

    async def get_related(self, entity_id: str) -> list[Entity]:
        return await self.store.get_related(entity_id)

    async def get_activity_by_date(self, day: str) -> list[Observation]:
        return await self.store.get_date_activity(day)

    async def get_activity_in_range(self, start: str, end: str) -> list[Observation]:
        return await self.store.get_observations_in_range(start, end)

    # Context

    async def build_context(self, query: ContextQuery, today: date | None = None) -> ContextResult:
        if query.recency and query.half_life_days is None:
            query = replace(query, half_life_days=self.settings.half_life_days)
        return await self.context.build(query, today=today)

    async def build_activity_digest(
        self,
        days: int = 7,
        limit: int = 50,
        include_comms: bool = True,
        include_code: bool = True,
        today: date | None = None,
    ) -> ActivityDigest:
        return await build_activity_digest(
            self.store,
            days=days,
            limit=limit,
            include_comms=include_comms,
            include_code=include_code,
            today=today,
        )

    async def record_integration_event(self, event: IntegrationEvent) -> bool:
        """Store a synced activity event; False if its id was already recorded."""
        async with self.store.transaction() as store:
            created = await store.record_integration_event(event)
        if created:
            logger.debug(f"Recorded integration event {event.id} ({event.kind})")
        return created

    def curated_context(self) -> str:
        return format_curated_memory_for_prompt(self.settings.curated_dir)
