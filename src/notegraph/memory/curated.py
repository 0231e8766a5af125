"""Hand-maintained memory files injected into every prompt."""

from dataclasses import dataclass
from pathlib import Path


@dataclass
class CuratedMemory:
    reset: str = ""  # RESET.md: operational context
    memory: str = ""  # MEMORY.md: stable preferences
    user: str = ""  # USER.md: about the user


def _read_optional(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def read_curated_memory(root: Path) -> CuratedMemory:
    """Read curated files from `root`; missing files are empty."""
    return CuratedMemory(
        reset=_read_optional(root / "RESET.md"),
        memory=_read_optional(root / "MEMORY.md"),
        user=_read_optional(root / "USER.md"),
    )


def format_curated_memory_for_prompt(root: Path) -> str:
    curated = read_curated_memory(root)
    parts = []
    if curated.reset:
        parts.append("# Operational Context (RESET.md)\n" + curated.reset)
    if curated.memory:
        parts.append("# Stable Preferences (MEMORY.md)\n" + curated.memory)
    if curated.user:
        parts.append("# About You (USER.md)\n" + curated.user)
    return "\n\n---\n\n".join(parts)
