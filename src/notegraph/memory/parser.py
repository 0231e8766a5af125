"""Parse note text into typed line records."""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

RESERVED_HEADERS = frozenset({"review", "links", "reading", "reference", "watch", "listen"})

# Leading whitespace, "- ", then content
_BULLET_RE = re.compile(r"^(\s*)- (.+)$")
_HEADER_PREFIX_RE = re.compile(r"^#+\s*")
_DATE_FILENAME_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})\.md$")
_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

INDENT_WIDTH = 4


class LineKind(Enum):
    HEADER = "header"
    BULLET = "bullet"
    OTHER = "other"


@dataclass(frozen=True)
class LineRecord:
    """One parsed line. Numbers are 1-based."""

    number: int
    kind: LineKind
    depth: int
    content: str


def parse_line(number: int, line: str) -> LineRecord:
    """Classify a single raw line."""
    stripped = line.strip()
    if stripped.startswith("#"):
        return LineRecord(number, LineKind.HEADER, 0, _HEADER_PREFIX_RE.sub("", stripped).strip())

    match = _BULLET_RE.match(line.expandtabs(INDENT_WIDTH))
    if match:
        indent, content = match.groups()
        return LineRecord(number, LineKind.BULLET, len(indent) // INDENT_WIDTH, content)

    return LineRecord(number, LineKind.OTHER, 0, line)


def parse_note(text: str) -> list[LineRecord]:
    """Parse full note text into line records. Comments spanning lines are removed first."""
    lines = blank_html_comments(text).splitlines()
    return [parse_line(number, line) for number, line in enumerate(lines, start=1)]


def is_reserved_header(text: str) -> bool:
    """True for section titles whose bullets are always references."""
    return _HEADER_PREFIX_RE.sub("", text.strip()).strip().lower() in RESERVED_HEADERS


def date_from_filename(path: str | Path) -> str | None:
    """Extract YYYY-MM-DD from a daily note filename."""
    match = _DATE_FILENAME_RE.match(Path(path).name)
    return match.group(1) if match else None


def strip_html_comments(text: str) -> str:
    """Remove <!-- ... --> metadata and the whitespace it leaves behind."""
    if "<!--" not in text:
        return text.strip()
    return " ".join(_HTML_COMMENT_RE.sub(" ", text).split())


def blank_html_comments(text: str) -> str:
    """Drop comments from a whole note, leaving their line breaks so line numbers hold."""

    def _blank(match: re.Match[str]) -> str:
        return "\n" * match.group().count("\n") or " "

    return _HTML_COMMENT_RE.sub(_blank, text)
