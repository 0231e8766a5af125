"""Assemble entity, search, date and task views into one markdown bundle."""

from dataclasses import dataclass
from datetime import date

from notegraph.core.logging import get_logger
from notegraph.memory.base import ContextResult, Entity, Observation, ObservationCategory
from notegraph.memory.search import MemorySearch, SearchOptions
from notegraph.memory.store import SQLiteNoteStore

logger = get_logger("memory.context")

DEFAULT_CONTEXT_LIMIT = 50
MAX_PENDING_TASKS = 10
MAX_RELATED_LISTED = 10


@dataclass
class ContextQuery:
    query: str | None = None  # free-text search
    entity: str | None = None  # entity name or permalink
    date: str | None = None  # YYYY-MM-DD
    recent_days: int | None = None
    include_pending_tasks: bool = False
    limit: int = DEFAULT_CONTEXT_LIMIT
    recency: bool = False
    half_life_days: float | None = None


def _dedupe_and_order(observations: list[Observation], limit: int) -> list[Observation]:
    unique: dict[str, Observation] = {}
    for obs in observations:
        unique.setdefault(obs.id, obs)
    ordered = sorted(unique.values(), key=lambda o: o.source_line)
    ordered.sort(key=lambda o: o.created_at, reverse=True)
    return ordered[:limit]


class ContextBuilder:
    """Builds agent-facing context from the note store."""

    def __init__(self, store: SQLiteNoteStore, search: MemorySearch):
        self.store = store
        self.search = search

    async def build(self, query: ContextQuery, today: date | None = None) -> ContextResult:
        if query.limit < 1:
            raise ValueError(f"limit must be at least 1, got {query.limit}")

        limit = query.limit
        entities: list[Entity] = []
        seen: set[str] = set()
        observations: list[Observation] = []

        def add_entity(entity: Entity) -> None:
            if entity.id not in seen:
                entities.append(entity)
                seen.add(entity.id)

        focus: Entity | None = None
        if query.entity:
            focus = await self.search.find_entity(query.entity)
            if focus:
                add_entity(focus)
                observations.extend((await self.store.get_observations(focus.id))[:limit])
                for related in await self.store.get_related(focus.id):
                    add_entity(related)
            else:
                logger.debug(f"No entity matched '{query.entity}'")

        if query.query:
            options = SearchOptions(recency=query.recency, half_life_days=query.half_life_days)
            for result in await self.search.search(query.query, limit, options):
                add_entity(result.entity)
                observations.extend(result.observations)

        if query.date:
            observations.extend(await self.store.get_date_activity(query.date))

        if query.recent_days:
            recent = await self.search.get_recent_activity(query.recent_days, today)
            observations.extend(recent[:limit])

        if query.include_pending_tasks:
            pending = await self.store.get_pending_tasks(focus.id if focus else None)
            observations.extend(pending[:MAX_PENDING_TASKS])

        final = _dedupe_and_order(observations, limit)

        # Every kept observation renders under its owner
        for obs in final:
            if obs.entity_id not in seen:
                owner = await self.store.get_entity(obs.entity_id)
                if owner:
                    add_entity(owner)

        result = ContextResult(entities=entities, observations=final, formatted_context="")
        result.formatted_context = format_context_as_markdown(result)
        return result


def format_context_as_markdown(result: ContextResult) -> str:
    """Render context for prompt injection."""
    lines: list[str] = []
    entity_map = {entity.id: entity for entity in result.entities}

    by_entity: dict[str, list[Observation]] = {}
    for obs in result.observations:
        by_entity.setdefault(obs.entity_id, []).append(obs)

    for entity_id, obs_list in by_entity.items():
        entity = entity_map.get(entity_id)
        if not entity:
            continue

        lines.append(f"## {entity.name}")
        lines.append("")

        by_date: dict[str, list[Observation]] = {}
        for obs in obs_list:
            by_date.setdefault(obs.created_at, []).append(obs)

        for created_at in sorted(by_date, reverse=True):
            lines.append(f"### {created_at}")
            for obs in by_date[created_at]:
                if obs.category == ObservationCategory.TASK:
                    prefix = "- [x]" if obs.completed else "- [ ]"
                else:
                    prefix = "-"
                lines.append(f"{prefix} {obs.content}")
            lines.append("")

    pending = [
        o for o in result.observations if o.category == ObservationCategory.TASK and not o.completed
    ]
    if pending:
        lines.append("## Pending Tasks")
        lines.append("")
        for task in pending[:MAX_PENDING_TASKS]:
            owner = entity_map.get(task.entity_id)
            suffix = f" ({owner.name})" if owner else ""
            lines.append(f"- [ ] {task.content}{suffix}")
        lines.append("")

    if len(result.entities) > 1:
        lines.append("## Related Entities")
        lines.append("")
        for entity in result.entities[:MAX_RELATED_LISTED]:
            lines.append(f"- [[{entity.name}]]")

    return "\n".join(lines)
