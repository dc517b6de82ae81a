"""
Configuration Management System

Settings for the focus scheduler server and its scheduling engine.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    """Server and engine settings for the focus scheduler."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FOCUS_",
        extra="ignore",
    )

    data_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent / "data",
        description="Data storage directory",
    )

    timezone: str = Field(
        default="America/New_York",
        description="Timezone working hours and commitments are interpreted in",
    )

    meeting_source: Literal["local", "google"] = Field(
        default="local",
        description="Where calendar meetings are read from",
    )

    # Google OAuth settings
    google_client_id: Optional[str] = Field(
        default=None,
        description="Google OAuth Client ID"
    )

    google_client_secret: Optional[str] = Field(
        default=None,
        description="Google OAuth Client Secret"
    )

    google_credentials_path: str = Field(
        default="credentials.json",
        description="Path to Google credentials JSON file"
    )

    oauth_redirect_uri: Optional[str] = Field(
        default=None,
        description="OAuth redirect URI (e.g., https://your-app.fly.dev/oauth/callback)"
    )

    server_url: Optional[str] = Field(
        default=None,
        description="Public server URL for OAuth callbacks"
    )

    # Engine settings
    min_slot_minutes: int = Field(
        default=30,
        gt=0,
        description="Shortest free gap the availability finder reports",
    )

    min_block_minutes: int = Field(
        default=60,
        gt=0,
        description="Shortest focus block the packer creates",
    )

    default_optimal_focus_hours: float = Field(
        default=1.5,
        gt=0,
        description="Target focus block length when the user has no preference",
    )

    max_suggestions: int = Field(
        default=5,
        gt=0,
        description="Maximum focus block suggestions returned per run",
    )

    recency_window_days: int = Field(
        default=7,
        ge=0,
        description="Context younger than this counts as recent for confidence scoring",
    )

    surface_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Confidence at or above which suggestions are surfaced proactively",
    )


# ============= Singleton Pattern =============

# Global settings instance for application-wide access
_settings: Optional[ServerSettings] = None


def get_settings() -> ServerSettings:
    """
    Get or create the global settings singleton instance.

    The first call creates the instance, subsequent calls
    return the same instance for consistency.

    Returns:
        ServerSettings: The global settings instance
    """
    global _settings
    if _settings is None:
        _settings = ServerSettings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None
