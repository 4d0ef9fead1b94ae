"""
Configuration management for XRay Report Assistant.

Uses Pydantic Settings for type-safe environment variable handling.
All configuration is loaded from environment variables or .env file.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    app_name: str = "XRay Report Assistant"
    app_version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"

    # ==========================================================================
    # Server
    # ==========================================================================
    host: str = "0.0.0.0"
    port: int = 8000

    # ==========================================================================
    # Model Configuration
    # ==========================================================================
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.5-flash"
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0

    # ==========================================================================
    # Rate Limiting
    # ==========================================================================
    rate_limit_per_minute: int = 30

    # ==========================================================================
    # File Upload
    # ==========================================================================
    max_file_size_mb: int = 20
    preview_size: int = 256

    # ==========================================================================
    # Knowledge Base
    # ==========================================================================
    knowledge_store_path: str = "data/knowledge_base.json"
    knowledge_store_key: str = "xray_feedback_knowledge_base_v2"

    # ==========================================================================
    # Output Settings
    # ==========================================================================
    output_dir: str = "outputs"
    temp_dir: str = "temp"

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def max_file_size_bytes(self) -> int:
        """Maximum file size in bytes."""
        return self.max_file_size_mb * 1024 * 1024

    @property
    def knowledge_path(self) -> Path:
        """Path to the persisted knowledge base file."""
        return Path(self.knowledge_store_path)

    @property
    def output_path(self) -> Path:
        """Path to output directory."""
        path = Path(self.output_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def temp_path(self) -> Path:
        """Path to temporary directory."""
        path = Path(self.temp_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()


# Convenience access
settings = get_settings()
