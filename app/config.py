from functools import lru_cache
from pathlib import Path
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="EventConnect Realtime", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Level of the realtime service loggers")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="List of allowed CORS origins",
    )

    database_url: str = Field(
        default="sqlite+pysqlite:///./eventconnect.db",
        description="SQLAlchemy URL of the durable chat store",
    )

    jwt_secret_key: str = Field(default="changeme")
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7)

    chat_max_connections_per_user: int = Field(
        default=5,
        ge=1,
        description="Maximum number of simultaneous websocket endpoints per user.",
    )
    chat_offline_queue_limit: int = Field(
        default=100,
        ge=1,
        description="Number of messages kept for a user while they are offline.",
    )
    chat_reconcile_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Interval of the sweep that drops endpoints whose transport died silently.",
    )
    chat_typing_ttl_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Seconds before a typing indicator expires on its own; 0 disables expiry.",
    )
    chat_search_max_limit: int = Field(default=100, ge=1)

    websocket_keepalive_timeout_seconds: float = Field(
        default=25.0,
        description="Idle receive timeout after which the server pings the client.",
    )
    websocket_keepalive_ping_interval_seconds: float = Field(
        default=25.0,
        description="Minimum delay between two server pings on an idle socket.",
    )

    presence_cache_url: str | None = Field(
        default=None,
        description="Redis URL used as the presence fallback cache; in-memory when unset.",
    )
    presence_cache_ttl_seconds: int = Field(default=3600, ge=1)
    presence_cache_namespace: str = Field(default="eventconnect")

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[1] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return []
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("presence_cache_url", mode="before")
    @classmethod
    def empty_cache_url_is_none(cls, value: str | None) -> str | None:
        if value in (None, "", Ellipsis):
            return None
        return str(value).strip() or None


@lru_cache
def get_settings() -> Settings:
    return Settings()
