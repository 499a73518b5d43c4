from __future__ import annotations

from pathlib import Path
from typing import Any, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_origins(raw: Any) -> List[str]:
    """
    Normalize CORS allow origins from env.

    Supports:
      - list[str] (already parsed)
      - "*"
      - comma-separated string: "https://a.org, https://b.org"
    """
    if raw is None:
        return ["*"]

    if isinstance(raw, list):
        items = [str(x).strip() for x in raw]
        items = [x for x in items if x]
        return items or ["*"]

    s = str(raw).strip()
    if not s or s == "*":
        return ["*"]

    if "," in s:
        parts = [p.strip() for p in s.split(",")]
        parts = [p for p in parts if p]
        return parts or ["*"]

    return [s]


def _as_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    s = ("" if raw is None else str(raw)).strip().lower()
    return s in ("1", "true", "yes", "y", "on")


class Settings(BaseSettings):
    """
    Central service settings.

    - Keeps env var names stable (APP_ENV, DATABASE_URL, DB_PATH, ...)
    - Normalizes user-provided values (CORS, log level, DB URL)
    - Provides a single resolved DB URL source of truth
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # App identity
    env: str = Field(default="local", alias="APP_ENV")
    app_name: str = Field(default="namhatta-leadership", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server runtime (uvicorn)
    host: str = Field(default="127.0.0.1", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS")

    # Preferred: a real SQLAlchemy URL (SQLite locally, Postgres in production)
    database_url: str = Field(default="", alias="DATABASE_URL")

    # Fallback when DATABASE_URL is not set
    db_path: str = Field(default="./data/namhatta.sqlite", alias="DB_PATH")

    # Supervisor eligibility policy.
    # False: any higher rank may supervise (rank <= required max rank).
    # True: only the immediate parent rank may supervise.
    strict_parent_rank: bool = Field(default=False, alias="HIERARCHY_STRICT_PARENT_RANK")

    # -------------------------
    # Validators / normalizers
    # -------------------------

    @field_validator("log_level", mode="before")
    @classmethod
    def _norm_log_level(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip().upper()
        return s or "INFO"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _norm_cors_allow_origins(cls, v: Any) -> list[str]:
        return _split_origins(v)

    @field_validator("host", mode="before")
    @classmethod
    def _norm_host(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "127.0.0.1"

    @field_validator("database_url", mode="before")
    @classmethod
    def _norm_database_url(cls, v: Any) -> str:
        return ("" if v is None else str(v)).strip()

    @field_validator("db_path", mode="before")
    @classmethod
    def _norm_db_path(cls, v: Any) -> str:
        s = ("" if v is None else str(v)).strip()
        return s or "./data/namhatta.sqlite"

    @field_validator("strict_parent_rank", mode="before")
    @classmethod
    def _norm_strict_parent_rank(cls, v: Any) -> bool:
        return _as_bool(v)

    # -------------------------
    # Derived helpers
    # -------------------------

    @property
    def resolved_database_url(self) -> str:
        """
        Priority:
        1) DATABASE_URL if provided
        2) Build sqlite:/// URL from DB_PATH

        DB_PATH may be a full sqlite URL or a file path (relative or absolute).
        """
        if self.database_url:
            return self.database_url

        path = (self.db_path or "").strip() or "./data/namhatta.sqlite"

        if path.startswith("sqlite:"):
            return path

        p = Path(path)

        if not p.is_absolute():
            if str(p).startswith("./"):
                return f"sqlite:///{p.as_posix()}"
            return f"sqlite:///./{p.as_posix()}"

        # Absolute path needs 4 slashes after scheme (sqlite:////abs/path)
        return f"sqlite:////{p.as_posix().lstrip('/')}"


settings = Settings()
