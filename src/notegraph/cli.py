"""
CLI entry point.

Commands:
- init: Create the notes directories and database
- index: Index new or changed notes
- search <query> [--recency] [--limit N] [--json]: Full-text search
- context <query> [--days N]: Markdown context bundle for an agent
- tasks: List pending tasks
- stats: Entity/observation/relation counts
- digest [--days N]: Recent comms and code activity

Flags:
- --debug: Enable debug logging to file
"""

import asyncio
import json
import logging
import sys

from notegraph.core.config import Settings, get_settings
from notegraph.core.logging import get_logger, setup_logging
from notegraph.memory.context import ContextQuery
from notegraph.memory.engine import MemoryEngine
from notegraph.memory.search import SearchOptions
from notegraph.memory.store import QueryError

USAGE = """Usage: notegraph [--debug] <command> [args]
Commands: init, index, search, context, tasks, stats, digest
Flags: --debug (enable debug logging to notes/notegraph.log)"""


def _pop_flag(args: list[str], flag: str) -> bool:
    if flag in args:
        args.remove(flag)
        return True
    return False


def _pop_int_option(args: list[str], option: str, default: int) -> int:
    """Remove `option N` from args and return N."""
    if option not in args:
        return default
    index = args.index(option)
    try:
        value = int(args[index + 1])
    except (IndexError, ValueError):
        raise ValueError(f"{option} expects an integer")
    del args[index : index + 2]
    return value


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = list(sys.argv[1:] if argv is None else argv)
    settings = get_settings()

    # Parse --debug flag (enables verbose DEBUG traces)
    debug_mode = _pop_flag(args, "--debug")
    log_level = logging.DEBUG if debug_mode else logging.INFO
    setup_logging(level=log_level, log_file=settings.log_file if debug_mode else None)
    logger = get_logger("cli")

    if not args:
        print(USAGE)
        return 1

    command, rest = args[0], args[1:]
    try:
        if command == "init":
            return asyncio.run(_init(settings))
        if command == "index":
            return asyncio.run(_index(settings))
        if command == "search":
            recency = _pop_flag(rest, "--recency")
            as_json = _pop_flag(rest, "--json")
            limit = _pop_int_option(rest, "--limit", settings.search_limit)
            return asyncio.run(_search(settings, " ".join(rest), limit, recency, as_json))
        if command == "context":
            days = _pop_int_option(rest, "--days", 7)
            return asyncio.run(_context(settings, " ".join(rest), days))
        if command == "tasks":
            return asyncio.run(_tasks(settings))
        if command == "stats":
            return asyncio.run(_stats(settings))
        if command == "digest":
            days = _pop_int_option(rest, "--days", 7)
            return asyncio.run(_digest(settings, days))
    except QueryError as e:
        print(f"Search error: {e.reason}")
        return 2
    except ValueError as e:
        logger.debug(f"Command {command} rejected: {e}")
        print(f"Error: {e}")
        return 2

    print(f"Unknown command: {command}")
    print(USAGE)
    return 1


async def _init(settings: Settings) -> int:
    settings.daily_dir.mkdir(parents=True, exist_ok=True)
    settings.projects_dir.mkdir(parents=True, exist_ok=True)
    async with MemoryEngine(settings):
        pass
    print(f"Initialized: {settings.notes_dir} (database {settings.db_path})")
    return 0


async def _index(settings: Settings) -> int:
    async with MemoryEngine(settings) as engine:
        report = await engine.index_all()
        stats = await engine.get_stats()

    print(
        f"Indexed {len(report.indexed)} notes ({len(report.unchanged)} unchanged, "
        f"{len(report.failed)} failed)"
    )
    for path, error in report.failed.items():
        print(f"  FAILED {path}: {error}")
    print(f"{stats.entities} entities, {stats.observations} observations, {stats.relations} relations")
    return 1 if report.failed else 0


async def _search(settings: Settings, query: str, limit: int, recency: bool, as_json: bool = False) -> int:
    if not query:
        print("Usage: notegraph search <query> [--recency] [--limit N] [--json]")
        return 1

    async with MemoryEngine(settings) as engine:
        await engine.index_all()
        results = await engine.search(query, limit, SearchOptions(recency=recency))

    if as_json:
        payload = [
            {
                "entity": result.entity.to_dict(),
                "score": result.score,
                "observations": [obs.to_dict() for obs in result.observations],
            }
            for result in results
        ]
        print(json.dumps(payload, indent=2))
        return 0
    if not results:
        print("No results.")
        return 0
    for i, result in enumerate(results, 1):
        print(f"{i}. {result.entity.name} [{result.entity.kind.value}] (score: {result.score:.2f})")
        for obs in result.observations[:3]:
            print(f"     {obs.created_at}  {obs.content}")
    return 0


async def _context(settings: Settings, query: str, days: int) -> int:
    async with MemoryEngine(settings) as engine:
        await engine.index_all()
        context = await engine.build_context(
            ContextQuery(
                query=query or None,
                recent_days=days,
                include_pending_tasks=True,
                limit=settings.context_limit,
            )
        )
        curated = engine.curated_context()

    if curated:
        print(curated)
        print("\n---\n")
    print(context.formatted_context or "No context found.")
    return 0


async def _tasks(settings: Settings) -> int:
    async with MemoryEngine(settings) as engine:
        await engine.index_all()
        tasks = await engine.get_pending_tasks()

    print(f"{len(tasks)} pending tasks")
    for task in tasks:
        print(f"- [ ] {task.content}  ({task.created_at})")
    return 0


async def _stats(settings: Settings) -> int:
    async with MemoryEngine(settings) as engine:
        stats = await engine.get_stats()
    print(f"Entities: {stats.entities}")
    print(f"Observations: {stats.observations}")
    print(f"Relations: {stats.relations}")
    return 0


async def _digest(settings: Settings, days: int) -> int:
    async with MemoryEngine(settings) as engine:
        await engine.index_all()
        digest = await engine.build_activity_digest(days=days)
    print(digest.summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
