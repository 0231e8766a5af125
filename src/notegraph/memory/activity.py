"""Bounded recent-activity digest: communication actions and code activity."""

from dataclasses import dataclass, field
from datetime import date, timedelta

from notegraph.core.logging import get_logger
from notegraph.memory.parser import strip_html_comments
from notegraph.memory.store import SQLiteNoteStore

logger = get_logger("memory.activity")

# Phrases written by the triage pipelines when they act on a message
COMMS_PATTERNS = [
    "replied to",
    "unsubscribed from",
    "created draft",
    "reacted in",
    "acknowledged",
]

MAX_ITEMS_PER_SECTION = 10
EMPTY_SUMMARY = "No recent activity found."


@dataclass
class ActivityDigest:
    summary: str
    comms_count: int
    code_count: int
    total_observations: int


@dataclass
class _DayBucket:
    comms: list[str] = field(default_factory=list)
    code: list[str] = field(default_factory=list)


def _render_section(title: str, items: list[str]) -> list[str]:
    lines = [f"\n**{title} ({len(items)}):**"]
    lines.extend(f"- {item}" for item in items[:MAX_ITEMS_PER_SECTION])
    if len(items) > MAX_ITEMS_PER_SECTION:
        lines.append(f"- ... and {len(items) - MAX_ITEMS_PER_SECTION} more")
    return lines


async def build_activity_digest(
    store: SQLiteNoteStore,
    days: int = 7,
    limit: int = 50,
    include_comms: bool = True,
    include_code: bool = True,
    today: date | None = None,
) -> ActivityDigest:
    """
    Summarize the last `days` days for prompt injection.

    Code items come first; comms fill whatever is left of `limit`, so the
    digest never carries more than `limit` items in total.
    """
    if days < 0:
        raise ValueError(f"days must not be negative, got {days}")
    if limit < 0:
        raise ValueError(f"limit must not be negative, got {limit}")

    cutoff = ((today or date.today()) - timedelta(days=days)).isoformat()
    by_date: dict[str, _DayBucket] = {}
    code_count = 0
    comms_count = 0

    if include_code:
        for event in await store.get_integration_events(cutoff, limit):
            by_date.setdefault(event.date, _DayBucket()).code.append(strip_html_comments(event.line))
            code_count += 1

    if include_comms:
        remaining = limit - code_count
        for obs in await store.get_comms_observations(cutoff, COMMS_PATTERNS, remaining):
            by_date.setdefault(obs.created_at[:10], _DayBucket()).comms.append(obs.content)
            comms_count += 1

    if not by_date:
        return ActivityDigest(summary=EMPTY_SUMMARY, comms_count=0, code_count=0, total_observations=0)

    lines: list[str] = []
    for day in sorted(by_date, reverse=True)[:days]:
        bucket = by_date[day]
        lines.append(f"## {day}")
        if bucket.comms:
            lines.extend(_render_section("Comms", bucket.comms))
        if bucket.code:
            lines.extend(_render_section("Code", bucket.code))
        lines.append("")

    logger.debug(f"Activity digest: {comms_count} comms, {code_count} code items since {cutoff}")
    return ActivityDigest(
        summary="\n".join(lines),
        comms_count=comms_count,
        code_count=code_count,
        total_observations=comms_count + code_count,
    )
