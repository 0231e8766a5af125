"""
Configuration management.

Loads settings from environment variables and .env file.
Prefix: NOTEGRAPH_
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NOTEGRAPH_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Storage
    notes_dir: Path = Field(default=Path("notes"), description="Root of the markdown notes tree")
    db_name: str = Field(default="memory.db", description="SQLite database name inside notes_dir")
    curated_dir: Path = Field(
        default=Path("."),
        description="Directory holding RESET.md, MEMORY.md and USER.md",
    )

    # Retrieval defaults
    search_limit: int = Field(default=20, ge=1, le=100, description="Default search result limit")
    context_limit: int = Field(default=50, ge=1, description="Default context observation limit")
    half_life_days: float = Field(default=30.0, gt=0, description="Recency decay half-life")

    @property
    def daily_dir(self) -> Path:
        return self.notes_dir / "daily"

    @property
    def projects_dir(self) -> Path:
        return self.notes_dir / "projects"

    @property
    def db_path(self) -> Path:
        return self.notes_dir / self.db_name

    @property
    def log_file(self) -> Path:
        return self.notes_dir / "notegraph.log"


def get_settings() -> Settings:
    """Get settings instance."""
    return Settings()
