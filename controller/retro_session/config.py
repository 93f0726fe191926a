"""Central configuration for the retro session controller."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .state import HostContext

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class TimerSettings(BaseModel):
    """Play time limit configuration."""
    limit_seconds: Optional[int] = Field(None, description="Session time limit; empty or <= 0 disables the timer")
    warning_threshold: int = Field(30, description="Remaining seconds at which the display turns to warning mode")
    tick_seconds: float = Field(1.0, description="Length of one countdown tick (seconds)")

    @field_validator("limit_seconds", mode="before")
    @classmethod
    def _parse_limit(cls, value: object) -> object:
        if value is None:
            return None
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            try:
                value = int(value)
            except ValueError:
                return None
        if isinstance(value, (int, float)) and int(value) > 0:
            return int(value)
        return None


class ConnectionSettings(BaseModel):
    """Backend WebSocket health monitoring."""
    health_check_interval: float = Field(30.0, description="Seconds between health_status_check pings")
    max_failures: int = Field(3, description="Consecutive post-load failures before the session is terminated")
    reconnect_delay: float = Field(5.0, description="Fixed delay before a reconnect attempt (seconds)")
    default_port: int = Field(8080, description="Port used when neither host origin nor referrer is known")
    path: str = Field("/ws", description="WebSocket endpoint path on the backend")


class SaveSettings(BaseModel):
    """Save state persistence."""
    auto_save_enabled: bool = Field(False, description="Periodically persist emulator state")
    auto_save_interval: float = Field(30.0, description="Seconds between auto-saves")
    fallback_path_template: str = Field(
        "/states/{name}.state", description="Same-origin static save file used when the backend has none"
    )
    request_timeout: float = Field(15.0, description="Timeout for save/load requests (seconds)")
    token_wait_seconds: float = Field(5.0, description="Max wait for an auth token before the first load")
    token_poll_interval: float = Field(0.1, description="Poll interval while waiting for a token")


class PromptSettings(BaseModel):
    """Save prompt shown before a session ends."""
    enabled: bool = Field(True, description="Ask the user before ending; when off the session ends directly")
    countdown_seconds: int = Field(10, description="Countdown before the prompt discards and ends the session")
    tick_seconds: float = Field(1.0, description="Length of one prompt countdown step (seconds)")


class HostSettings(BaseModel):
    """Where the player page lives and how a finished session is routed away."""
    context: HostContext = Field(HostContext.STANDALONE, description="embedded, managed_shell or standalone")
    page_url: str = Field("http://localhost:8000/", description="URL of the player page")
    host_origin: Optional[str] = Field(None, description="Origin of the hosting frame, when readable")
    referrer: Optional[str] = Field(None, description="Referring document URL")
    exit_url: str = Field("/selectGame", description="Navigation target for standalone sessions")


class Settings(BaseSettings):
    """Environment-driven settings for controller subsystems."""

    # Backend & identity
    backend_api_url: Optional[str] = Field(None, description="REST base URL; derived from the page origin when empty")
    token: Optional[str] = Field(None, description="Auth token supplied with the page URL")
    game_id: Optional[str] = Field(None, description="Explicit game identifier")
    game_name: str = Field("game", description="Display name of the game")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(5000, description="Port for FastAPI server")
    ui_event_queue_size: int = Field(16, description="Max buffered events per UI subscriber")
    emulator_reply_timeout: float = Field(5.0, description="Max wait for the page to answer get_state")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    timer: TimerSettings = Field(default_factory=TimerSettings, description="Time limit settings")
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings, description="Health monitor settings")
    save: SaveSettings = Field(default_factory=SaveSettings, description="Save state settings")
    prompt: PromptSettings = Field(default_factory=PromptSettings, description="Save prompt settings")
    hosting: HostSettings = Field(default_factory=HostSettings, description="Hosting context settings")

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
