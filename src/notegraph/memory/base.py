"""
Memory data model and store interface.

Entities, observations and relations use deterministic ids so that
re-indexing the same note never duplicates rows. Changing how any id is
composed invalidates previously stored data.
"""

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EntityKind(Enum):
    PROJECT = "project"
    PERSON = "person"
    TOPIC = "topic"
    URL = "url"
    DATE = "date"


class ObservationCategory(Enum):
    TASK = "task"
    DECISION = "decision"
    NOTE = "note"
    LINK = "link"
    QUESTION = "question"
    REFERENCE = "reference"


class RelationType(Enum):
    REFERENCES = "references"
    CHILD_OF = "child_of"
    RELATED_TO = "related_to"


_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Permalink for a display name: lowercase, non-alphanumeric runs -> '-'."""
    return _SLUG_RE.sub("-", name.lower()).strip("-")


def _digest(text: str, length: int) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()[:length]


def entity_id(permalink: str) -> str:
    """Entity id is a pure function of the permalink."""
    if permalink.startswith("entity:"):
        permalink = permalink[len("entity:"):]
    return f"entity:{permalink}"


def date_permalink(date: str) -> str:
    return f"date:{date}"


def url_permalink(url: str) -> str:
    return f"url:{_digest(url, 12)}"


def observation_id(owner_id: str, line_number: int, content: str) -> str:
    return f"obs:{_digest(f'{owner_id}:{line_number}:{content}', 16)}"


def relation_id(from_id: str, to_id: str, relation_type: RelationType) -> str:
    return f"rel:{_digest(f'{from_id}:{to_id}:{relation_type.value}', 16)}"


@dataclass
class Entity:
    """A named thing mentioned in notes."""

    id: str
    name: str
    kind: EntityKind
    permalink: str
    first_seen: str  # YYYY-MM-DD
    last_seen: str  # YYYY-MM-DD
    mention_count: int = 1

    @classmethod
    def create(cls, name: str, kind: EntityKind, permalink: str, seen: str) -> "Entity":
        """New entity sighted on a given date."""
        return cls(
            id=entity_id(permalink),
            name=name,
            kind=kind,
            permalink=permalink,
            first_seen=seen,
            last_seen=seen,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "permalink": self.permalink,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "mention_count": self.mention_count,
        }


@dataclass
class Observation:
    """One fact derived from one note line, owned by exactly one entity."""

    id: str
    entity_id: str
    category: ObservationCategory
    content: str
    source_file: str
    source_line: int
    created_at: str  # note date, YYYY-MM-DD
    completed: bool | None = None  # only meaningful for tasks

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "entity_id": self.entity_id,
            "category": self.category.value,
            "content": self.content,
            "source_file": self.source_file,
            "source_line": self.source_line,
            "created_at": self.created_at,
            "completed": self.completed,
        }


@dataclass
class Relation:
    """Directed typed edge between two entities."""

    id: str
    from_entity_id: str
    to_entity_id: str
    relation_type: RelationType
    source_file: str
    created_at: str

    @classmethod
    def create(
        cls,
        from_id: str,
        to_id: str,
        relation_type: RelationType,
        source_file: str,
        created_at: str,
    ) -> "Relation":
        return cls(
            id=relation_id(from_id, to_id, relation_type),
            from_entity_id=from_id,
            to_entity_id=to_id,
            relation_type=relation_type,
            source_file=source_file,
            created_at=created_at,
        )


@dataclass
class IntegrationEvent:
    """Externally synced activity line (e.g. a commit or PR) bucketed by date."""

    id: str
    date: str  # YYYY-MM-DD
    occurred_at: datetime
    project: str
    repo: str
    kind: str
    line: str  # rendered markdown line
    payload: dict[str, Any] | None = None


@dataclass
class Stats:
    entities: int
    observations: int
    relations: int


@dataclass
class SearchResult:
    """Search hits grouped under their owning entity."""

    entity: Entity
    observations: list[Observation] = field(default_factory=list)
    score: float = 0.0  # lower is better


@dataclass
class ContextResult:
    entities: list[Entity]
    observations: list[Observation]
    formatted_context: str  # markdown for agent consumption


class NoteStore(ABC):
    """Read/write contract every other component goes through."""

    # Writes (run inside store.transaction())

    @abstractmethod
    async def upsert_entity(self, entity: Entity) -> None:
        """Create the entity, or bump its mention stats if it exists."""
        ...

    @abstractmethod
    async def insert_observation(self, observation: Observation) -> None:
        """Upsert by id; replaces, never appends."""
        ...

    @abstractmethod
    async def insert_relation_ignore_duplicate(self, relation: Relation) -> None:
        ...

    @abstractmethod
    async def delete_observations(self, observation_ids: list[str]) -> None:
        ...

    @abstractmethod
    async def release_observations(self, source_file: str, observation_ids: list[str]) -> list[str]:
        """Drop one note's claim on observations; delete rows no note still produces."""
        ...

    @abstractmethod
    async def record_note_hash(self, path: str, content_hash: str) -> None:
        ...

    # Reads

    @abstractmethod
    async def get_entity(self, entity_id: str) -> Entity | None:
        ...

    @abstractmethod
    async def get_observations(self, entity_id: str) -> list[Observation]:
        ...

    @abstractmethod
    async def get_note_hash(self, path: str) -> str | None:
        ...

    @abstractmethod
    async def get_stats(self) -> Stats:
        ...
