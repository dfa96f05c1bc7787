"""Configuration settings for Quire.

Storage layout under ``storage_dir``:
- releases.db: release ledger, channel state, sync attempts
- releases/<version>/: artifact files frozen with each release
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="QUIRE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage directory (default: .quire in current directory)
    storage_dir: Path = Field(default=Path(".quire"))

    # Build defaults; book.py and CLI options take precedence
    build_dir: Path | None = None
    render_concurrency: int = 4
    sync_concurrency: int = 4
    sync_timeout: float = 120.0

    # Document converter
    pandoc_path: str = "pandoc"
    pdf_engine: str | None = None

    # Channel credentials (passed through, never negotiated)
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    webhook_api_key: str = ""

    @property
    def releases_db_path(self) -> Path:
        """Path to the release ledger database."""
        return self.storage_dir / "releases.db"

    @property
    def releases_dir(self) -> Path:
        """Directory holding per-release artifact copies."""
        return self.storage_dir / "releases"

    def ensure_storage_dir(self) -> None:
        """Create storage directory if it doesn't exist."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (useful for testing)."""
    global _settings
    _settings = None
