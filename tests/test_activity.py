"""Tests for the activity digest and curated memory files."""

from datetime import date, datetime
from pathlib import Path

import pytest

from notegraph.memory.activity import EMPTY_SUMMARY, build_activity_digest
from notegraph.memory.base import IntegrationEvent
from notegraph.memory.curated import format_curated_memory_for_prompt, read_curated_memory
from notegraph.memory.indexer import NoteIndexer
from notegraph.memory.store import SQLiteNoteStore

TODAY = date(2026, 1, 30)

JAN_30 = """## Email Actions
- [10:00] replied to alice: "Re: plan"
- [10:05] unsubscribed from newsletter
- [[Lazer]] replied to thread
"""

JAN_20 = """## Email Actions
- [09:00] replied to bob: "old news"
"""

PR_EVENT = IntegrationEvent(
    id="github:pr:owner/repo#123",
    date="2026-01-29",
    occurred_at=datetime(2026, 1, 29, 14, 0),
    project="Maxwell",
    repo="owner/repo",
    kind="pr_opened",
    line='[14:00] [[Maxwell]] PR #123 "Test PR" <!-- pr_opened:owner/repo#123 -->',
)


@pytest.fixture
async def memory_store(tmp_path: Path):
    store = SQLiteNoteStore(tmp_path / "activity.db")
    await store.connect()
    yield store
    await store.close()


async def _seed(store: SQLiteNoteStore, tmp_path: Path, notes: dict[str, str], events=()) -> None:
    daily = tmp_path / "daily"
    daily.mkdir(exist_ok=True)
    for name, text in notes.items():
        (daily / name).write_text(text)
    await NoteIndexer(store, [daily]).index_all(today=TODAY)
    async with store.transaction() as tx:
        for event in events:
            await tx.record_integration_event(event)


@pytest.mark.asyncio
async def test_digest_groups_by_day(memory_store: SQLiteNoteStore, tmp_path: Path):
    await _seed(
        memory_store,
        tmp_path,
        {"2026-01-30.md": JAN_30, "2026-01-20.md": JAN_20},
        [PR_EVENT],
    )

    digest = await build_activity_digest(memory_store, days=7, today=TODAY)

    assert digest.comms_count == 2
    assert digest.code_count == 1
    assert digest.total_observations == 3
    summary = digest.summary
    assert summary.index("## 2026-01-30") < summary.index("## 2026-01-29")
    assert "**Comms (2):**" in summary
    assert '- [10:00] replied to alice: "Re: plan"' in summary
    assert '- [14:00] [[Maxwell]] PR #123 "Test PR"\n' in summary
    assert "<!--" not in summary
    # Outside the window, and entity-owned lines are not comms actions
    assert "old news" not in summary
    assert "replied to thread" not in summary


@pytest.mark.asyncio
async def test_digest_limit_counts_code_first(memory_store: SQLiteNoteStore, tmp_path: Path):
    await _seed(memory_store, tmp_path, {"2026-01-30.md": JAN_30}, [PR_EVENT])

    digest = await build_activity_digest(memory_store, days=7, limit=1, today=TODAY)
    assert (digest.code_count, digest.comms_count) == (1, 0)

    digest = await build_activity_digest(memory_store, days=7, limit=2, today=TODAY)
    assert (digest.code_count, digest.comms_count) == (1, 1)


@pytest.mark.asyncio
async def test_digest_section_filters(memory_store: SQLiteNoteStore, tmp_path: Path):
    await _seed(memory_store, tmp_path, {"2026-01-30.md": JAN_30}, [PR_EVENT])

    comms_only = await build_activity_digest(memory_store, include_code=False, today=TODAY)
    assert (comms_only.comms_count, comms_only.code_count) == (2, 0)
    assert "**Code" not in comms_only.summary

    code_only = await build_activity_digest(memory_store, include_comms=False, today=TODAY)
    assert (code_only.comms_count, code_only.code_count) == (0, 1)


@pytest.mark.asyncio
async def test_digest_truncates_long_sections(memory_store: SQLiteNoteStore, tmp_path: Path):
    lines = "\n".join(f"- replied to person {i}" for i in range(12))
    await _seed(memory_store, tmp_path, {"2026-01-30.md": f"## Email Actions\n{lines}\n"})

    digest = await build_activity_digest(memory_store, today=TODAY)

    assert "**Comms (12):**" in digest.summary
    assert digest.summary.count("- replied to person") == 10
    assert "- ... and 2 more" in digest.summary


@pytest.mark.asyncio
async def test_digest_empty(memory_store: SQLiteNoteStore):
    digest = await build_activity_digest(memory_store, today=TODAY)
    assert digest.summary == EMPTY_SUMMARY
    assert digest.total_observations == 0


@pytest.mark.asyncio
async def test_digest_rejects_negative_arguments(memory_store: SQLiteNoteStore):
    with pytest.raises(ValueError):
        await build_activity_digest(memory_store, days=-1)
    with pytest.raises(ValueError):
        await build_activity_digest(memory_store, limit=-1)


def test_curated_memory_missing_files(tmp_path: Path):
    curated = read_curated_memory(tmp_path)
    assert (curated.reset, curated.memory, curated.user) == ("", "", "")
    assert format_curated_memory_for_prompt(tmp_path) == ""


def test_curated_memory_prompt(tmp_path: Path):
    (tmp_path / "RESET.md").write_text("Focus on Lazer launch.")
    (tmp_path / "USER.md").write_text("Prefers short answers.")

    prompt = format_curated_memory_for_prompt(tmp_path)

    assert prompt == (
        "# Operational Context (RESET.md)\nFocus on Lazer launch."
        "\n\n---\n\n"
        "# About You (USER.md)\nPrefers short answers."
    )
