"""
Derive entities, observations and relations from parsed note lines.

Line processing is a pure step over an immutable ExtractionState:

    state, line_result = process_line(state, record, note)

The state carries the current root entity (most recent depth-0 wiki-linked
bullet), the parent stack of entity-linked bullets, and whether the current
section sits under a reserved header. Headers close the section: the root
entity and the parent stack are cleared.
"""

import re
from dataclasses import dataclass, field, replace
from datetime import date

from notegraph.memory.base import (
    Entity,
    EntityKind,
    Observation,
    ObservationCategory,
    Relation,
    RelationType,
    date_permalink,
    observation_id,
    slugify,
    url_permalink,
)
from notegraph.memory.parser import (
    LineKind,
    LineRecord,
    date_from_filename,
    is_reserved_header,
    parse_note,
    strip_html_comments,
)

_WIKI_LINK_RE = re.compile(r"\[\[([^\]]+)\]\]")
_URL_RE = re.compile(r"https?://[^\s)]+")
_BARE_URL_RE = re.compile(r"^https?://\S+$")
_CHECKBOX_RE = re.compile(r"^\[([ xX])\]\s+(.*)$")
_DECISION_RE = re.compile(r"\b(decided|chose|will use|going to use)\b", re.IGNORECASE)


def categorize(content: str, is_checkbox: bool, under_reserved_header: bool) -> ObservationCategory:
    """Pick an observation category. Earlier rules win."""
    text = content.strip()
    if is_checkbox:
        return ObservationCategory.TASK
    if under_reserved_header:
        return ObservationCategory.REFERENCE
    if _BARE_URL_RE.match(text):
        return ObservationCategory.LINK
    if text.endswith("?"):
        return ObservationCategory.QUESTION
    if _DECISION_RE.search(text):
        return ObservationCategory.DECISION
    return ObservationCategory.NOTE


def extract_wiki_links(content: str) -> list[str]:
    return [name.strip() for name in _WIKI_LINK_RE.findall(content) if name.strip()]


def extract_urls(content: str) -> list[str]:
    return _URL_RE.findall(content)


def split_checkbox(content: str) -> tuple[str, bool, bool]:
    """Return (content without marker, is_checkbox, completed)."""
    match = _CHECKBOX_RE.match(content)
    if not match:
        return content, False, False
    return match.group(2), True, match.group(1).lower() == "x"


@dataclass(frozen=True)
class NoteContext:
    """Per-note constants shared by every line step."""

    source_file: str
    created_at: str  # note date, or the indexing day for undated notes
    date_entity_id: str | None


@dataclass(frozen=True)
class StackFrame:
    entity_id: str
    depth: int


@dataclass(frozen=True)
class ExtractionState:
    root_entity_id: str | None = None
    root_entity_name: str | None = None
    parent_stack: tuple[StackFrame, ...] = ()
    reserved_header: bool = False


@dataclass
class LineExtraction:
    """What a single line contributed."""

    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)
    observation: Observation | None = None


@dataclass
class Extraction:
    """Everything derived from one note, in derivation order.

    `entities` holds one element per mention, so the same entity may appear
    several times; each occurrence bumps its mention count when stored.
    """

    source_file: str
    note_date: str | None
    created_at: str
    entities: list[Entity] = field(default_factory=list)
    observations: list[Observation] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)


def _pop_to_depth(stack: tuple[StackFrame, ...], depth: int) -> tuple[StackFrame, ...]:
    while stack and stack[-1].depth >= depth:
        stack = stack[:-1]
    return stack


def process_line(
    state: ExtractionState,
    record: LineRecord,
    note: NoteContext,
) -> tuple[ExtractionState, LineExtraction]:
    """Advance the extraction state by one parsed line."""
    result = LineExtraction()

    if record.kind == LineKind.HEADER:
        return (
            ExtractionState(reserved_header=is_reserved_header(record.content)),
            result,
        )

    if record.kind != LineKind.BULLET:
        return state, result

    depth = record.depth
    raw, is_checkbox, completed = split_checkbox(record.content)
    content = strip_html_comments(raw)

    stack = _pop_to_depth(state.parent_stack, depth)
    root_id, root_name = state.root_entity_id, state.root_entity_name

    if not content:
        return replace(state, parent_stack=stack), result

    # Wiki links
    line_primary: str | None = None
    for name in extract_wiki_links(content):
        permalink = slugify(name)
        if not permalink:
            continue
        entity = Entity.create(name, EntityKind.PROJECT, permalink, note.created_at)
        result.entities.append(entity)

        if line_primary is None:
            line_primary = entity.id
            if depth == 0:
                root_id, root_name = entity.id, name
                stack = (StackFrame(entity.id, 0),)
            else:
                if stack:
                    result.relations.append(
                        Relation.create(
                            stack[-1].entity_id,
                            entity.id,
                            RelationType.CHILD_OF,
                            note.source_file,
                            note.created_at,
                        )
                    )
                stack = stack + (StackFrame(entity.id, depth),)
            continue

        if entity.id == line_primary:
            continue
        if depth > 0 and len(stack) > 1:
            # Enclosing frame sits below this line's own frame
            result.relations.append(
                Relation.create(
                    stack[-2].entity_id,
                    entity.id,
                    RelationType.CHILD_OF,
                    note.source_file,
                    note.created_at,
                )
            )
        result.relations.append(
            Relation.create(
                line_primary, entity.id, RelationType.RELATED_TO, note.source_file, note.created_at
            )
        )

    # URLs
    for url in extract_urls(content):
        url_entity = Entity.create(url, EntityKind.URL, url_permalink(url), note.created_at)
        result.entities.append(url_entity)
        if root_id:
            result.relations.append(
                Relation.create(
                    root_id, url_entity.id, RelationType.REFERENCES, note.source_file, note.created_at
                )
            )

    owner_id = root_id or note.date_entity_id
    if owner_id:
        result.observation = Observation(
            id=observation_id(owner_id, record.number, content),
            entity_id=owner_id,
            category=categorize(content, is_checkbox, state.reserved_header),
            content=content,
            source_file=note.source_file,
            source_line=record.number,
            created_at=note.created_at,
            completed=completed if is_checkbox else None,
        )

    new_state = replace(
        state,
        root_entity_id=root_id,
        root_entity_name=root_name,
        parent_stack=stack,
    )
    return new_state, result


def extract_note(text: str, source_file: str, today: date | None = None) -> Extraction:
    """Run the full extraction over one note."""
    note_date = date_from_filename(source_file)
    created_at = note_date or (today or date.today()).isoformat()

    extraction = Extraction(source_file=source_file, note_date=note_date, created_at=created_at)

    date_entity_id = None
    if note_date:
        date_entity = Entity.create(note_date, EntityKind.DATE, date_permalink(note_date), note_date)
        extraction.entities.append(date_entity)
        date_entity_id = date_entity.id

    note = NoteContext(source_file=source_file, created_at=created_at, date_entity_id=date_entity_id)
    state = ExtractionState()
    for record in parse_note(text):
        state, line = process_line(state, record, note)
        extraction.entities.extend(line.entities)
        extraction.relations.extend(line.relations)
        if line.observation is not None:
            extraction.observations.append(line.observation)

    return extraction
