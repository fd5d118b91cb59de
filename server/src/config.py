from pathlib import Path
from typing import List, Literal, Optional
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


DEFAULT_POLLING_INTERVAL = 60
DEFAULT_UPDATE_INTERVAL = 360
DEFAULT_HISTORY_DAYS = 0.25
DEFAULT_NODE_LIST_URL = (
    "https://raw.githubusercontent.com/turtlecoin/turtlecoin-nodes-json/master/turtlecoin-nodes.json"
)


class Settings(BaseSettings):
    """Application configuration sourced from environment variables or overrides."""

    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_reload: bool = False
    api_log_level: str = "info"

    # Deployment environment; anything other than "production" logs a warning.
    env: str = "development"

    # Collector timing. Values that are unset or non-positive fall back to the
    # documented defaults so partial overrides merge over them.
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    update_interval: float = DEFAULT_UPDATE_INTERVAL
    history_days: float = DEFAULT_HISTORY_DAYS
    node_list_url: str = DEFAULT_NODE_LIST_URL
    probe_timeout: float = 5.0
    directory_timeout: float = 10.0

    db_backend: Literal["sqlite", "postgres", "mysql"] = "sqlite"
    sqlite_path: str = "node_monitor.sqlite3"
    db_host: Optional[str] = None
    db_port: Optional[int] = None
    db_user: Optional[str] = None
    db_pass: Optional[str] = None
    db_name: str = "turtlecoin"
    # Explicit SQLAlchemy URL; wins over the db_* fields when set.
    database_url: Optional[str] = None
    sql_echo: bool = False

    cors_allow_origins: str | List[str] = []

    model_config = SettingsConfigDict(
        env_prefix="NODEMON_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("polling_interval", mode="before")
    @classmethod
    def _default_polling_interval(cls, value):
        return _positive_or_default(value, DEFAULT_POLLING_INTERVAL)

    @field_validator("update_interval", mode="before")
    @classmethod
    def _default_update_interval(cls, value):
        return _positive_or_default(value, DEFAULT_UPDATE_INTERVAL)

    @field_validator("history_days", mode="before")
    @classmethod
    def _default_history_days(cls, value):
        return _positive_or_default(value, DEFAULT_HISTORY_DAYS)

    @field_validator("node_list_url", mode="before")
    @classmethod
    def _default_node_list_url(cls, value):
        if value is None or not str(value).strip():
            return DEFAULT_NODE_LIST_URL
        return str(value).strip()

    @field_validator("db_backend", mode="before")
    @classmethod
    def _normalize_backend(cls, value):
        if value in (None, ""):
            return "sqlite"
        value = str(value).strip().lower()
        if value in ("postgresql", "pg"):
            return "postgres"
        return value

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _coerce_origins(cls, value):
        """Allow comma separated env strings or a JSON array."""
        if value in (None, ""):
            return []
        if isinstance(value, str):
            v = value.strip()
            if v.startswith("["):
                try:
                    decoded = json.loads(v)
                    if isinstance(decoded, list):
                        return [str(item).strip() for item in decoded if str(item).strip()]
                except ValueError:
                    pass
            return [item.strip() for item in v.split(",") if item.strip()]
        if isinstance(value, (tuple, set, list)):
            return [str(item).strip() for item in value if str(item).strip()]
        return value

    @property
    def is_production(self) -> bool:
        return self.env.strip().lower() == "production"

    @property
    def history_seconds(self) -> float:
        return self.history_days * 24 * 60 * 60

    def resolved_database_url(self) -> str:
        """Return the SQLAlchemy URL for the configured backend.

        Server backends need host, user, password and database name. Missing
        parameters raise ConfigurationError so the process can stop before
        anything is scheduled.
        """
        if self.database_url:
            return self.database_url

        if self.db_backend == "sqlite":
            return f"sqlite+aiosqlite:///{self.sqlite_path}"

        missing = [
            name
            for name, value in (
                ("db_host", self.db_host),
                ("db_user", self.db_user),
                ("db_pass", self.db_pass),
                ("db_name", self.db_name),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Missing database connection parameters for {self.db_backend}: {', '.join(missing)}"
            )

        if self.db_backend == "postgres":
            port = self.db_port or 5432
            return f"postgresql+asyncpg://{self.db_user}:{self.db_pass}@{self.db_host}:{port}/{self.db_name}"

        port = self.db_port or 3306
        return f"mysql+aiomysql://{self.db_user}:{self.db_pass}@{self.db_host}:{port}/{self.db_name}"

    @property
    def database_path(self) -> Path:
        """Return the on-disk path for the SQLite database when applicable."""
        url = self.resolved_database_url()
        if url.startswith("sqlite"):
            raw_path = url.split("///", maxsplit=1)[-1]
            return Path(raw_path).expanduser().resolve()
        raise ValueError("Database URL is not pointing to a SQLite database")


def _positive_or_default(value, default):
    if value in (None, ""):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        return value
    if number <= 0:
        return default
    return number
