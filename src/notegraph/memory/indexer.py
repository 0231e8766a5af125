"""Incremental note indexing driven by content hashes."""

import hashlib
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path

from notegraph.core.logging import get_logger
from notegraph.memory.extractor import Extraction, extract_note
from notegraph.memory.store import SQLiteNoteStore

logger = get_logger("memory.indexer")


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


@dataclass
class IndexReport:
    """Outcome of indexing a single note."""

    path: str
    entities: int  # distinct entities touched
    observations: int
    relations: int
    removed: int  # observations dropped because their line changed or vanished


@dataclass
class IndexAllReport:
    indexed: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # path -> error


class NoteIndexer:
    """Re-derives notes into the store; only changed files on bulk passes."""

    def __init__(self, store: SQLiteNoteStore, note_dirs: list[Path]):
        self.store = store
        self.note_dirs = note_dirs

    async def index_file(self, path: str | Path, today: date | None = None) -> IndexReport:
        """Fully re-derive one note. Raises on unreadable files."""
        path = Path(path)
        content = path.read_text(encoding="utf-8")
        return await self._index_content(str(path), content, today)

    async def _index_content(self, source_file: str, content: str, today: date | None) -> IndexReport:
        extraction = extract_note(content, source_file, today=today)
        removed = await self._commit(extraction, content_hash(content))

        report = IndexReport(
            path=source_file,
            entities=len({e.id for e in extraction.entities}),
            observations=len(extraction.observations),
            relations=len({r.id for r in extraction.relations}),
            removed=removed,
        )
        logger.info(
            f"Indexed {source_file}: {report.entities} entities, "
            f"{report.observations} observations, {report.relations} relations"
            + (f", removed {removed} stale" if removed else "")
        )
        return report

    async def _commit(self, extraction: Extraction, note_hash: str) -> int:
        """Write one extraction atomically. Returns number of stale observations removed."""
        async with self.store.transaction() as store:
            # Owners first so observations and relations never dangle
            for entity in extraction.entities:
                await store.upsert_entity(entity)

            current_ids = {obs.id for obs in extraction.observations}
            stale = await store.get_observation_ids_for_file(extraction.source_file) - current_ids
            # Rows shared with another note stay until that note stops producing them
            removed = await store.release_observations(extraction.source_file, sorted(stale))

            for observation in extraction.observations:
                await store.insert_observation(observation)
            for relation in extraction.relations:
                await store.insert_relation_ignore_duplicate(relation)

            await store.record_note_hash(extraction.source_file, note_hash)
        return len(removed)

    def iter_note_files(self) -> list[Path]:
        """All markdown notes under the configured directories."""
        files: list[Path] = []
        for note_dir in self.note_dirs:
            if not note_dir.is_dir():
                logger.debug(f"Skipping missing notes directory: {note_dir}")
                continue
            files.extend(sorted(p for p in note_dir.glob("*.md") if p.is_file()))
        return files

    async def index_all(self, today: date | None = None) -> IndexAllReport:
        """Index new or changed notes. One failing file never blocks the rest."""
        report = IndexAllReport()
        known = await self.store.get_note_hashes()

        for path in self.iter_note_files():
            source_file = str(path)
            try:
                content = path.read_text(encoding="utf-8")
                if known.get(source_file) == content_hash(content):
                    report.unchanged.append(source_file)
                    continue
                await self._index_content(source_file, content, today)
                report.indexed.append(source_file)
            except (OSError, UnicodeDecodeError, sqlite3.Error) as e:
                logger.error(f"Failed to index {source_file}: {e}", exc_info=True)
                report.failed[source_file] = str(e)

        logger.info(
            f"Index pass complete: {len(report.indexed)} indexed, "
            f"{len(report.unchanged)} unchanged, {len(report.failed)} failed"
        )
        return report
