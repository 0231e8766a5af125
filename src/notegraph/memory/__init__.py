"""
Memory module - entity/observation graph built from markdown notes.

Pipeline:
- parser: raw note text -> typed line records
- extractor: line records -> entities, observations, relations
- store: SQLite tables + FTS5 porter index kept in sync by triggers
- indexer: hash-based incremental re-indexing
- search: full-text retrieval with recency weighting
- context: markdown context bundles for agents

Storage: SQLite
"""

from notegraph.memory.base import (
    ContextResult,
    Entity,
    EntityKind,
    IntegrationEvent,
    Observation,
    ObservationCategory,
    Relation,
    RelationType,
    SearchResult,
    Stats,
)
from notegraph.memory.context import ContextQuery
from notegraph.memory.engine import MemoryEngine
from notegraph.memory.search import SearchOptions
from notegraph.memory.store import QueryError, SQLiteNoteStore

__all__ = [
    "ContextQuery",
    "ContextResult",
    "Entity",
    "EntityKind",
    "IntegrationEvent",
    "MemoryEngine",
    "Observation",
    "ObservationCategory",
    "QueryError",
    "Relation",
    "RelationType",
    "SQLiteNoteStore",
    "SearchOptions",
    "SearchResult",
    "Stats",
]
