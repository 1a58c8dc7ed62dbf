"""
Configuration Management

Centralized configuration using Pydantic Settings.
All settings loaded from environment variables (prefix ``PICFINDER_``)
or a ``.env`` file, with sensible defaults for a local single-user index.
"""
from pathlib import Path
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PICFINDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================================
    # Database Configuration
    # ============================================================
    database_url: str = Field(
        "sqlite:///picfinder.db",
        description="SQLAlchemy database URL for the image index",
    )
    database_connect_retries: int = Field(3, description="Connection attempts at startup")
    database_retry_delay: float = Field(1.0, description="Seconds between connection attempts")

    # ============================================================
    # Scan Configuration
    # ============================================================
    supported_extensions: str = Field(
        "jpg,jpeg,png,bmp,webp",
        description="Comma-separated list of image extensions to index",
    )
    max_scan_depth: int = Field(10, description="Maximum directory depth below a watched folder")
    follow_symlinks: bool = Field(False, description="Descend into symlinked directories")
    checkpoint_interval: int = Field(
        10,
        description="Write folder image count back every N extracted files (0 disables)",
    )

    # ============================================================
    # OCR Configuration
    # ============================================================
    ocr_language: str = Field("eng", description="Tesseract language code(s), e.g. 'eng+deu'")
    ocr_timeout_seconds: float = Field(
        0.0,
        description="Per-image recognition timeout in seconds (0 = no timeout)",
    )
    tesseract_cmd: Optional[str] = Field(None, description="Path to the tesseract binary")

    # ============================================================
    # Search Configuration
    # ============================================================
    search_debounce_seconds: float = Field(
        0.3,
        description="Query changes arriving faster than this are coalesced",
    )

    # ============================================================
    # Tree Grants
    # ============================================================
    config_dir: str = Field("config", description="Directory holding tree_grants.yaml")

    # ============================================================
    # Logging Configuration
    # ============================================================
    log_level: str = Field("INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")

    @property
    def extensions_list(self) -> List[str]:
        """Parse supported extensions into a normalized list."""
        return [
            ext.strip().lower().lstrip(".")
            for ext in self.supported_extensions.split(",")
            if ext.strip()
        ]

    @property
    def config_path(self) -> Path:
        """Config directory as a Path (``~`` expanded)."""
        return Path(self.config_dir).expanduser()


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
