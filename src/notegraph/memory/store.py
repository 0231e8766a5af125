"""SQLite note store with an FTS5 porter index kept in lockstep by triggers."""

import json
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from notegraph.core.logging import get_logger
from notegraph.memory.base import (
    Entity,
    EntityKind,
    IntegrationEvent,
    NoteStore,
    Observation,
    ObservationCategory,
    Relation,
    Stats,
)

logger = get_logger("memory.store")


class QueryError(ValueError):
    """Full-text query rejected by the index (syntax error, unknown column)."""

    def __init__(self, query: str, reason: str):
        super().__init__(f"Invalid search query {query!r}: {reason}")
        self.query = query
        self.reason = reason


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
-- Named things: projects, people, topics, urls, dates
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    kind TEXT NOT NULL,
    permalink TEXT UNIQUE NOT NULL,
    first_seen TEXT NOT NULL,  -- YYYY-MM-DD
    last_seen TEXT NOT NULL,
    mention_count INTEGER DEFAULT 1
);

-- One fact per note line
CREATE TABLE IF NOT EXISTS observations (
    id TEXT PRIMARY KEY,
    entity_id TEXT NOT NULL REFERENCES entities(id),
    category TEXT NOT NULL,
    content TEXT NOT NULL,
    source_file TEXT NOT NULL,
    source_line INTEGER NOT NULL,
    created_at TEXT NOT NULL,  -- note date, YYYY-MM-DD
    completed INTEGER  -- NULL unless task
);

CREATE INDEX IF NOT EXISTS idx_observations_entity ON observations(entity_id);
CREATE INDEX IF NOT EXISTS idx_observations_created ON observations(created_at);
CREATE INDEX IF NOT EXISTS idx_observations_source ON observations(source_file);

-- Every note that produces an observation; ids carry no file, so notes can share a row
CREATE TABLE IF NOT EXISTS observation_sources (
    observation_id TEXT NOT NULL REFERENCES observations(id) ON DELETE CASCADE,
    source_file TEXT NOT NULL,
    PRIMARY KEY (observation_id, source_file)
);

CREATE INDEX IF NOT EXISTS idx_observation_sources_file ON observation_sources(source_file);

CREATE TABLE IF NOT EXISTS relations (
    id TEXT PRIMARY KEY,
    from_entity_id TEXT NOT NULL REFERENCES entities(id),
    to_entity_id TEXT NOT NULL REFERENCES entities(id),
    relation_type TEXT NOT NULL,
    source_file TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_relations_from ON relations(from_entity_id);
CREATE INDEX IF NOT EXISTS idx_relations_to ON relations(to_entity_id);

-- Note manifest: content hash decides whether a file is re-indexed
CREATE TABLE IF NOT EXISTS notes (
    path TEXT PRIMARY KEY,
    hash TEXT NOT NULL,
    indexed_at DATETIME NOT NULL
);

-- Externally synced activity (commits, PRs) with stable ids for dedupe
CREATE TABLE IF NOT EXISTS integration_events (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    occurred_at DATETIME NOT NULL,
    project TEXT NOT NULL,
    repo TEXT NOT NULL,
    kind TEXT NOT NULL,
    line TEXT NOT NULL,
    payload TEXT  -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_integration_events_date ON integration_events(date);

-- FTS5 index over observation content
CREATE VIRTUAL TABLE IF NOT EXISTS observations_fts USING fts5(
    id UNINDEXED,
    content,
    tokenize='porter'
);

-- Triggers to keep FTS in sync: one index mutation per observation mutation
CREATE TRIGGER IF NOT EXISTS observations_ai AFTER INSERT ON observations BEGIN
    INSERT INTO observations_fts(id, content) VALUES (new.id, new.content);
END;

CREATE TRIGGER IF NOT EXISTS observations_ad AFTER DELETE ON observations BEGIN
    DELETE FROM observations_fts WHERE id = old.id;
END;

CREATE TRIGGER IF NOT EXISTS observations_au AFTER UPDATE ON observations BEGIN
    DELETE FROM observations_fts WHERE id = old.id;
    INSERT INTO observations_fts(id, content) VALUES (new.id, new.content);
END;
"""

_OBSERVATION_COLUMNS = (
    "o.id, o.entity_id, o.category, o.content, o.source_file, "
    "o.source_line, o.created_at, o.completed"
)

_ENTITY_COLUMNS = (
    "e.name AS entity_name, e.kind AS entity_kind, "
    "e.permalink AS entity_permalink, e.first_seen AS entity_first_seen, "
    "e.last_seen AS entity_last_seen, e.mention_count AS entity_mention_count"
)


def _row_to_entity(row: Any, prefix: str = "") -> Entity:
    return Entity(
        id=row[f"{prefix}id"],
        name=row[f"{prefix}name"],
        kind=EntityKind(row[f"{prefix}kind"]),
        permalink=row[f"{prefix}permalink"],
        first_seen=row[f"{prefix}first_seen"],
        last_seen=row[f"{prefix}last_seen"],
        mention_count=row[f"{prefix}mention_count"],
    )


def _row_to_observation(row: Any) -> Observation:
    completed = row["completed"]
    return Observation(
        id=row["id"],
        entity_id=row["entity_id"],
        category=ObservationCategory(row["category"]),
        content=row["content"],
        source_file=row["source_file"],
        source_line=row["source_line"],
        created_at=row["created_at"],
        completed=bool(completed) if completed is not None else None,
    )


class SQLiteNoteStore(NoteStore):
    """SQLite-backed note store with FTS5 search."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the connection and create the schema. Safe to call repeatedly."""
        if self._conn is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Use detect_types to enable our custom datetime converters
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to note store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "SQLiteNoteStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Note store not connected. Call connect() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["SQLiteNoteStore"]:
        """Commit all writes made in the block, or none of them."""
        try:
            yield self
        except BaseException:
            await self.conn.rollback()
            raise
        else:
            await self.conn.commit()

    # Writes

    async def upsert_entity(self, entity: Entity) -> None:
        """Insert entity or record another sighting of it."""
        await self.conn.execute(
            """INSERT INTO entities
                   (id, name, kind, permalink, first_seen, last_seen, mention_count)
               VALUES (?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   first_seen = MIN(entities.first_seen, excluded.first_seen),
                   last_seen = MAX(entities.last_seen, excluded.last_seen),
                   mention_count = entities.mention_count + 1""",
            (
                entity.id,
                entity.name,
                entity.kind.value,
                entity.permalink,
                entity.first_seen,
                entity.last_seen,
                entity.mention_count,
            ),
        )

    async def insert_observation(self, observation: Observation) -> None:
        """Upsert by id. UPDATE (not REPLACE) so the FTS update trigger fires."""
        await self.conn.execute(
            """INSERT INTO observations
                   (id, entity_id, category, content, source_file, source_line,
                    created_at, completed)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   entity_id = excluded.entity_id,
                   category = excluded.category,
                   content = excluded.content,
                   source_file = excluded.source_file,
                   source_line = excluded.source_line,
                   created_at = excluded.created_at,
                   completed = excluded.completed""",
            (
                observation.id,
                observation.entity_id,
                observation.category.value,
                observation.content,
                observation.source_file,
                observation.source_line,
                observation.created_at,
                int(observation.completed) if observation.completed is not None else None,
            ),
        )
        await self.conn.execute(
            "INSERT OR IGNORE INTO observation_sources (observation_id, source_file) VALUES (?, ?)",
            (observation.id, observation.source_file),
        )

    async def insert_relation_ignore_duplicate(self, relation: Relation) -> None:
        await self.conn.execute(
            """INSERT OR IGNORE INTO relations
                   (id, from_entity_id, to_entity_id, relation_type, source_file, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                relation.id,
                relation.from_entity_id,
                relation.to_entity_id,
                relation.relation_type.value,
                relation.source_file,
                relation.created_at,
            ),
        )

    async def delete_observations(self, observation_ids: list[str]) -> None:
        await self.conn.executemany(
            "DELETE FROM observations WHERE id = ?",
            [(obs_id,) for obs_id in observation_ids],
        )

    async def release_observations(self, source_file: str, observation_ids: list[str]) -> list[str]:
        """Detach observations from one note and delete those no other note still produces.

        Returns the ids that were actually deleted.
        """
        if not observation_ids:
            return []
        await self.conn.executemany(
            "DELETE FROM observation_sources WHERE observation_id = ? AND source_file = ?",
            [(obs_id, source_file) for obs_id in observation_ids],
        )
        placeholders = ", ".join("?" for _ in observation_ids)
        async with self.conn.execute(
            f"""SELECT id FROM observations
                WHERE id IN ({placeholders})
                  AND NOT EXISTS (
                      SELECT 1 FROM observation_sources s WHERE s.observation_id = observations.id
                  )
                ORDER BY id""",
            list(observation_ids),
        ) as cursor:
            orphaned = [row["id"] async for row in cursor]
        if orphaned:
            await self.delete_observations(orphaned)
        # Survivors point at a note that still produces them
        await self.conn.executemany(
            """UPDATE observations SET source_file = (
                   SELECT MIN(s.source_file) FROM observation_sources s
                   WHERE s.observation_id = observations.id
               )
               WHERE id = ? AND source_file = ?""",
            [(obs_id, source_file) for obs_id in observation_ids if obs_id not in orphaned],
        )
        return orphaned

    async def record_note_hash(self, path: str, content_hash: str) -> None:
        await self.conn.execute(
            """INSERT INTO notes (path, hash, indexed_at) VALUES (?, ?, ?)
               ON CONFLICT(path) DO UPDATE SET hash = excluded.hash, indexed_at = excluded.indexed_at""",
            (path, content_hash, datetime.now()),
        )

    async def record_integration_event(self, event: IntegrationEvent) -> bool:
        """Store an event unless its id is already known. Returns True if new."""
        cursor = await self.conn.execute(
            """INSERT OR IGNORE INTO integration_events
                   (id, date, occurred_at, project, repo, kind, line, payload)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                event.id,
                event.date,
                event.occurred_at,
                event.project,
                event.repo,
                event.kind,
                event.line,
                json.dumps(event.payload) if event.payload else None,
            ),
        )
        return cursor.rowcount > 0

    # Entity reads

    async def get_entity(self, entity_id: str) -> Entity | None:
        async with self.conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)) as cursor:
            row = await cursor.fetchone()
            return _row_to_entity(row) if row else None

    async def get_entity_by_permalink(self, permalink: str) -> Entity | None:
        async with self.conn.execute(
            "SELECT * FROM entities WHERE permalink = ?", (permalink,)
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_entity(row) if row else None

    async def find_entity_by_name(self, fragment: str) -> Entity | None:
        """Case-insensitive substring match on display name."""
        async with self.conn.execute(
            """SELECT * FROM entities
               WHERE instr(lower(name), lower(?)) > 0
               ORDER BY mention_count DESC, name
               LIMIT 1""",
            (fragment,),
        ) as cursor:
            row = await cursor.fetchone()
            return _row_to_entity(row) if row else None

    async def get_related(self, entity_id: str, limit: int = 20) -> list[Entity]:
        """One-hop neighbours through relations in either direction."""
        async with self.conn.execute(
            """SELECT DISTINCT e.* FROM entities e
               JOIN relations r ON (r.from_entity_id = e.id OR r.to_entity_id = e.id)
               WHERE (r.from_entity_id = ? OR r.to_entity_id = ?)
                 AND e.id != ?
               ORDER BY e.mention_count DESC, e.name
               LIMIT ?""",
            (entity_id, entity_id, entity_id, limit),
        ) as cursor:
            return [_row_to_entity(row) async for row in cursor]

    # Observation reads

    async def _fetch_observations(self, sql: str, params: tuple = ()) -> list[Observation]:
        async with self.conn.execute(sql, params) as cursor:
            return [_row_to_observation(row) async for row in cursor]

    async def get_observation(self, observation_id: str) -> Observation | None:
        results = await self._fetch_observations(
            f"SELECT {_OBSERVATION_COLUMNS} FROM observations o WHERE o.id = ?",
            (observation_id,),
        )
        return results[0] if results else None

    async def get_observations(self, entity_id: str) -> list[Observation]:
        """Observations of an entity, newest first."""
        return await self._fetch_observations(
            f"""SELECT {_OBSERVATION_COLUMNS} FROM observations o
                WHERE o.entity_id = ?
                ORDER BY o.created_at DESC, o.source_line ASC""",
            (entity_id,),
        )

    async def get_observation_ids_for_file(self, source_file: str) -> set[str]:
        async with self.conn.execute(
            "SELECT observation_id FROM observation_sources WHERE source_file = ?", (source_file,)
        ) as cursor:
            return {row["observation_id"] async for row in cursor}

    async def get_date_activity(self, date: str) -> list[Observation]:
        """Observations attached to the date entity for `date`, in line order."""
        return await self._fetch_observations(
            f"""SELECT {_OBSERVATION_COLUMNS} FROM observations o
                JOIN entities e ON e.id = o.entity_id
                WHERE e.kind = 'date' AND e.name = ?
                ORDER BY o.source_line ASC""",
            (date,),
        )

    async def get_observations_in_range(self, start: str, end: str) -> list[Observation]:
        """Inclusive range; ISO dates compare correctly as strings."""
        return await self._fetch_observations(
            f"""SELECT {_OBSERVATION_COLUMNS} FROM observations o
                WHERE o.created_at >= ? AND o.created_at <= ?
                ORDER BY o.created_at DESC, o.source_line ASC""",
            (start, end),
        )

    async def get_pending_tasks(self, entity_id: str | None = None) -> list[Observation]:
        sql = f"""SELECT {_OBSERVATION_COLUMNS} FROM observations o
                  WHERE o.category = 'task' AND (o.completed IS NULL OR o.completed = 0)"""
        params: tuple = ()
        if entity_id:
            sql += " AND o.entity_id = ?"
            params = (entity_id,)
        sql += " ORDER BY o.created_at DESC, o.source_line ASC"
        return await self._fetch_observations(sql, params)

    async def get_comms_observations(
        self, since: str, patterns: list[str], limit: int
    ) -> list[Observation]:
        """Date-entity observations since `since` containing any of `patterns`."""
        if not patterns or limit <= 0:
            return []
        like_clause = " OR ".join("o.content LIKE ?" for _ in patterns)
        return await self._fetch_observations(
            f"""SELECT {_OBSERVATION_COLUMNS} FROM observations o
                JOIN entities e ON e.id = o.entity_id
                WHERE e.kind = 'date' AND o.created_at >= ? AND ({like_clause})
                ORDER BY o.created_at DESC, o.source_line ASC
                LIMIT ?""",
            (since, *[f"%{p}%" for p in patterns], limit),
        )

    async def search_fts(self, query: str, limit: int) -> list[tuple[Observation, Entity, float]]:
        """Run an FTS5 MATCH; returns (observation, owner, rank), best rank first."""
        sql = f"""
            WITH hits AS (
                SELECT id, rank FROM observations_fts
                WHERE observations_fts MATCH ?
                ORDER BY rank
                LIMIT ?
            )
            SELECT hits.rank AS rank, {_OBSERVATION_COLUMNS}, {_ENTITY_COLUMNS}
            FROM hits
            JOIN observations o ON o.id = hits.id
            JOIN entities e ON e.id = o.entity_id
            ORDER BY hits.rank
        """
        results = []
        try:
            async with self.conn.execute(sql, (query, limit)) as cursor:
                async for row in cursor:
                    owner = _row_to_entity(row, prefix="entity_")
                    results.append((_row_to_observation(row), owner, float(row["rank"])))
        except sqlite3.OperationalError as e:
            raise QueryError(query, str(e)) from e

        logger.debug(f"FTS search returned {len(results)} hits for query: {query}")
        return results

    # Manifest

    async def get_note_hash(self, path: str) -> str | None:
        async with self.conn.execute("SELECT hash FROM notes WHERE path = ?", (path,)) as cursor:
            row = await cursor.fetchone()
            return row["hash"] if row else None

    async def get_note_hashes(self) -> dict[str, str]:
        async with self.conn.execute("SELECT path, hash FROM notes") as cursor:
            return {row["path"]: row["hash"] async for row in cursor}

    # Integration events

    async def get_integration_events(self, since: str, limit: int) -> list[IntegrationEvent]:
        if limit <= 0:
            return []
        async with self.conn.execute(
            """SELECT id, date, occurred_at, project, repo, kind, line, payload
               FROM integration_events
               WHERE date >= ?
               ORDER BY occurred_at DESC
               LIMIT ?""",
            (since, limit),
        ) as cursor:
            return [
                IntegrationEvent(
                    id=row["id"],
                    date=row["date"],
                    occurred_at=row["occurred_at"],
                    project=row["project"],
                    repo=row["repo"],
                    kind=row["kind"],
                    line=row["line"],
                    payload=json.loads(row["payload"]) if row["payload"] else None,
                )
                async for row in cursor
            ]

    async def get_stats(self) -> Stats:
        counts = []
        for table in ("entities", "observations", "relations"):
            async with self.conn.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
                row = await cursor.fetchone()
                counts.append(row[0])
        return Stats(entities=counts[0], observations=counts[1], relations=counts[2])
