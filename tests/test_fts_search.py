"""Test FTS5 full-text search functionality."""

from dataclasses import replace

import pytest

from notegraph.memory.base import Entity, EntityKind, Observation, ObservationCategory, observation_id
from notegraph.memory.store import QueryError, SQLiteNoteStore


@pytest.fixture
async def memory_store(tmp_path):
    """Create a temporary note store."""
    db_path = tmp_path / "test_fts.db"
    store = SQLiteNoteStore(db_path)
    await store.connect()
    yield store
    await store.close()


LAZER = Entity.create("Lazer", EntityKind.PROJECT, "lazer", "2026-01-30")


def _observation(line: int, content: str) -> Observation:
    return Observation(
        id=observation_id(LAZER.id, line, content),
        entity_id=LAZER.id,
        category=ObservationCategory.NOTE,
        content=content,
        source_file="notes/daily/2026-01-30.md",
        source_line=line,
        created_at="2026-01-30",
    )


async def _store(memory_store: SQLiteNoteStore, *observations: Observation) -> None:
    async with memory_store.transaction() as store:
        await store.upsert_entity(LAZER)
        for obs in observations:
            await store.insert_observation(obs)


async def _fts_contents(memory_store: SQLiteNoteStore) -> list[str]:
    async with memory_store.conn.execute("SELECT content FROM observations_fts ORDER BY content") as cursor:
        return [row[0] for row in await cursor.fetchall()]


@pytest.mark.asyncio
async def test_fts5_available(memory_store):
    """Check if FTS5 is available in SQLite."""
    async with memory_store.conn.execute(
        "SELECT * FROM pragma_compile_options WHERE compile_options LIKE '%FTS5%'"
    ) as cursor:
        result = await cursor.fetchone()
        assert result is not None, "FTS5 is not available in this SQLite build"


@pytest.mark.asyncio
async def test_fts_table_exists(memory_store):
    """Verify FTS5 virtual table was created."""
    async with memory_store.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name='observations_fts'"
    ) as cursor:
        result = await cursor.fetchone()
        assert result is not None, "observations_fts table does not exist"


@pytest.mark.asyncio
async def test_fts_triggers_exist(memory_store):
    """Verify FTS sync triggers were created."""
    async with memory_store.conn.execute(
        "SELECT name FROM sqlite_master WHERE type='trigger' "
        "AND name IN ('observations_ai', 'observations_ad', 'observations_au')"
    ) as cursor:
        results = await cursor.fetchall()
        assert len(results) == 3, f"Expected 3 triggers, found {len(results)}"


@pytest.mark.asyncio
async def test_insert_populates_index(memory_store):
    await _store(
        memory_store,
        _observation(1, "implementing full-text search"),
        _observation(2, "SQLite for persistent storage"),
    )
    assert await _fts_contents(memory_store) == [
        "SQLite for persistent storage",
        "implementing full-text search",
    ]


@pytest.mark.asyncio
async def test_search_returns_owner_and_rank(memory_store):
    await _store(
        memory_store,
        _observation(1, "implementing full-text search"),
        _observation(2, "SQLite for persistent storage"),
        _observation(3, "async programming patterns"),
    )

    hits = await memory_store.search_fts("storage", 10)
    assert len(hits) == 1
    obs, owner, rank = hits[0]
    assert obs.content == "SQLite for persistent storage"
    assert owner.id == LAZER.id
    assert owner.name == "Lazer"
    assert rank < 0


@pytest.mark.asyncio
async def test_search_respects_limit(memory_store):
    await _store(memory_store, *[_observation(i, f"deploy step {i}") for i in range(1, 6)])
    hits = await memory_store.search_fts("deploy", 3)
    assert len(hits) == 3
    ranks = [rank for _, _, rank in hits]
    assert ranks == sorted(ranks)


@pytest.mark.asyncio
async def test_update_replaces_index_entry(memory_store):
    original = _observation(1, "draft the rollout")
    await _store(memory_store, original)
    await _store(memory_store, replace(original, content="finalize the rollback"))

    assert await _fts_contents(memory_store) == ["finalize the rollback"]
    assert await memory_store.search_fts("draft", 10) == []
    assert len(await memory_store.search_fts("rollback", 10)) == 1


@pytest.mark.asyncio
async def test_delete_removes_index_entry(memory_store):
    obs = _observation(1, "temporary thought")
    await _store(memory_store, obs)
    async with memory_store.transaction() as store:
        await store.delete_observations([obs.id])

    assert await _fts_contents(memory_store) == []
    assert await memory_store.search_fts("temporary", 10) == []


@pytest.mark.asyncio
async def test_porter_stemming(memory_store):
    """Inflected forms match through the porter tokenizer."""
    await _store(memory_store, _observation(1, "running the migrations tonight"))

    assert len(await memory_store.search_fts("run", 10)) == 1
    assert len(await memory_store.search_fts("migration", 10)) == 1


@pytest.mark.asyncio
async def test_invalid_query_raises_query_error(memory_store):
    await _store(memory_store, _observation(1, "anything"))

    with pytest.raises(QueryError) as exc_info:
        await memory_store.search_fts('"unterminated', 10)
    assert exc_info.value.query == '"unterminated'
    assert isinstance(exc_info.value, ValueError)
