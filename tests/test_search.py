"""Tests for retrieval: full-text search, recency weighting and lookups."""

from datetime import date, datetime, timezone

import pytest

from notegraph.memory.base import Entity, EntityKind, Observation, ObservationCategory, observation_id
from notegraph.memory.search import (
    MAX_DECAY,
    MIN_DECAY,
    UNKNOWN_AGE_DAYS,
    MemorySearch,
    SearchOptions,
    age_in_days,
    group_by_entity,
    recency_decay,
)
from notegraph.memory.store import QueryError, SQLiteNoteStore

NOW = datetime(2026, 1, 30, 12, 0)


@pytest.fixture
async def memory_store(tmp_path):
    store = SQLiteNoteStore(tmp_path / "search.db")
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def search(memory_store) -> MemorySearch:
    return MemorySearch(memory_store)


def _entity(name: str, permalink: str | None = None) -> Entity:
    return Entity.create(name, EntityKind.PROJECT, permalink or name.lower().replace(" ", "-"), "2026-01-01")


def _observation(entity: Entity, line: int, content: str, created_at: str) -> Observation:
    return Observation(
        id=observation_id(entity.id, line, content),
        entity_id=entity.id,
        category=ObservationCategory.NOTE,
        content=content,
        source_file=f"notes/daily/{created_at}.md",
        source_line=line,
        created_at=created_at,
    )


async def _seed(store: SQLiteNoteStore, *pairs: tuple[Entity, Observation]) -> None:
    async with store.transaction() as tx:
        for entity, obs in pairs:
            await tx.upsert_entity(entity)
            await tx.insert_observation(obs)


class TestRecencyMath:
    def test_age_in_days(self):
        assert age_in_days("2026-01-30", NOW) == 0
        assert age_in_days("2026-01-20", NOW) == 10
        assert age_in_days("2026-01-29T13:00:00", NOW) == 0

    def test_future_dates_clamp_to_zero(self):
        assert age_in_days("2026-03-01", NOW) == 0

    def test_unparseable_date_is_very_old(self):
        assert age_in_days("someday", NOW) == UNKNOWN_AGE_DAYS
        assert age_in_days("", NOW) == UNKNOWN_AGE_DAYS

    def test_mixed_timezones(self):
        aware_now = datetime(2026, 1, 30, 12, 0, tzinfo=timezone.utc)
        assert age_in_days("2026-01-20", aware_now) == 10
        assert age_in_days("2026-01-20T00:00:00+00:00", NOW) == 10

    def test_half_life(self):
        assert recency_decay(0, 30) == MAX_DECAY
        assert recency_decay(30, 30) == pytest.approx(0.5)
        assert recency_decay(60, 30) == pytest.approx(0.25)

    def test_decay_floor(self):
        assert recency_decay(UNKNOWN_AGE_DAYS, 30) == MIN_DECAY

    def test_decay_rejects_bad_half_life(self):
        with pytest.raises(ValueError):
            recency_decay(1, 0)

    def test_options_validation(self):
        with pytest.raises(ValueError):
            SearchOptions(recency=True, half_life_days=-1)
        assert SearchOptions().effective_half_life == 30.0
        assert SearchOptions(half_life_days=7).effective_half_life == 7


def test_group_by_entity_keeps_best_rank():
    lazer, billing = _entity("Lazer"), _entity("Billing")
    a = _observation(lazer, 1, "a", "2026-01-30")
    b = _observation(billing, 2, "b", "2026-01-30")
    c = _observation(lazer, 3, "c", "2026-01-30")

    results = group_by_entity([(a, lazer, -1.0), (b, billing, -3.0), (c, lazer, -5.0)], limit=10)

    assert [r.entity.name for r in results] == ["Lazer", "Billing"]
    assert results[0].score == -5.0
    assert [o.content for o in results[0].observations] == ["a", "c"]
    assert len(group_by_entity([(a, lazer, -1.0), (b, billing, -3.0)], limit=1)) == 1


@pytest.mark.asyncio
async def test_search_groups_by_entity(search: MemorySearch, memory_store: SQLiteNoteStore):
    lazer, billing = _entity("Lazer"), _entity("Billing")
    await _seed(
        memory_store,
        (lazer, _observation(lazer, 1, "deploy the auth service", "2026-01-30")),
        (lazer, _observation(lazer, 2, "deploy window moved", "2026-01-29")),
        (billing, _observation(billing, 3, "deploy invoices job", "2026-01-28")),
        (billing, _observation(billing, 4, "unrelated note", "2026-01-28")),
    )

    results = await search.search("deploy", limit=10)

    assert {r.entity.name for r in results} == {"Lazer", "Billing"}
    lazer_result = next(r for r in results if r.entity.name == "Lazer")
    assert len(lazer_result.observations) == 2
    scores = [r.score for r in results]
    assert scores == sorted(scores)


@pytest.mark.asyncio
async def test_recency_promotes_fresh_matches(search: MemorySearch, memory_store: SQLiteNoteStore):
    old, new = _entity("Old Project"), _entity("New Project")
    await _seed(
        memory_store,
        (old, _observation(old, 1, "deploy deploy pipeline", "2025-01-30")),
        (new, _observation(new, 1, "deploy notes", "2026-01-29")),
    )

    plain = await search.search("deploy", limit=10)
    assert [r.entity.name for r in plain] == ["Old Project", "New Project"]

    recent = await search.search("deploy", limit=10, options=SearchOptions(recency=True), now=NOW)
    assert [r.entity.name for r in recent] == ["New Project", "Old Project"]


@pytest.mark.asyncio
async def test_search_rejects_bad_limit(search: MemorySearch):
    with pytest.raises(ValueError):
        await search.search("deploy", limit=0)


@pytest.mark.asyncio
async def test_empty_query_returns_nothing(search: MemorySearch):
    assert await search.search("") == []
    assert await search.search("   ") == []


@pytest.mark.asyncio
async def test_malformed_query_raises(search: MemorySearch):
    with pytest.raises(QueryError):
        await search.search('"unterminated')


@pytest.mark.asyncio
async def test_no_match(search: MemorySearch, memory_store: SQLiteNoteStore):
    lazer = _entity("Lazer")
    await _seed(memory_store, (lazer, _observation(lazer, 1, "deploy", "2026-01-30")))
    assert await search.search("kubernetes") == []


@pytest.mark.asyncio
async def test_find_entity(search: MemorySearch, memory_store: SQLiteNoteStore):
    lazer, auth = _entity("Lazer"), _entity("Auth Service")
    async with memory_store.transaction() as tx:
        await tx.upsert_entity(lazer)
        await tx.upsert_entity(auth)

    assert (await search.find_entity("lazer")).id == lazer.id
    assert (await search.find_entity("Auth Service")).id == auth.id
    assert (await search.find_entity("auth")).id == auth.id
    assert await search.find_entity("") is None
    assert await search.find_entity("nothing like it") is None


@pytest.mark.asyncio
async def test_recent_activity_window(search: MemorySearch, memory_store: SQLiteNoteStore):
    lazer = _entity("Lazer")
    await _seed(
        memory_store,
        (lazer, _observation(lazer, 1, "too old", "2026-01-22")),
        (lazer, _observation(lazer, 2, "edge of window", "2026-01-23")),
        (lazer, _observation(lazer, 3, "today", "2026-01-30")),
    )

    recent = await search.get_recent_activity(7, today=date(2026, 1, 30))
    assert [o.content for o in recent] == ["today", "edge of window"]

    with pytest.raises(ValueError):
        await search.get_recent_activity(-1)


def test_decay_is_monotonic_in_age():
    decays = [recency_decay(age, 30) for age in range(0, 400, 10)]
    assert decays == sorted(decays, reverse=True)
    assert all(MIN_DECAY <= d <= MAX_DECAY for d in decays)
