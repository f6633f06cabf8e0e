# nlcube/settings.py
from __future__ import annotations
from pathlib import Path
from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, AliasChoices, ValidationError

from nlcube.core.errors import ConfigurationError


class Settings(BaseSettings):
    # pydantic v2 config
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Storage ---
    # One directory per subject: <DATA_DIR>/<subject>/<subject>.duckdb
    DATA_DIR: Path = Path("data")

    # --- Connection pools (per subject) ---
    POOL_SIZE: int = Field(default=5, ge=1, validation_alias=AliasChoices("POOL_SIZE", "DB_POOL_SIZE"))
    ACQUIRE_TIMEOUT_S: float = Field(default=10.0, gt=0)
    CONNECT_RETRIES: int = Field(default=3, ge=1)
    REMOVE_TIMEOUT_S: float = Field(default=5.0, ge=0)
    DUCKDB_THREADS: Optional[int] = Field(default=None, ge=1)
    DUCKDB_MEMORY_LIMIT: Optional[str] = None

    # Worker threads shared by store calls and blocking translator calls
    WORKER_THREADS: int = Field(default=16, ge=1)

    # --- Schema cache ---
    SCHEMA_STALE_AFTER_S: float = Field(default=300.0, ge=0)  # 5 minutes

    # --- Translation ---
    LLM_BACKEND: Literal["gemini", "ollama", "remote"] = "gemini"
    LLM_MODEL: str = Field(default="gemini-1.5-pro", validation_alias=AliasChoices("LLM_MODEL", "GEMINI_MODEL"))
    LLM_API_KEY: Optional[str] = Field(default=None, validation_alias=AliasChoices("LLM_API_KEY", "GEMINI_API_KEY"))
    LLM_API_URL: Optional[str] = None
    TRANSLATION_TIMEOUT_S: float = Field(default=60.0, gt=0)

    # --- Execution ---
    EXECUTION_TIMEOUT_S: float = Field(default=30.0, gt=0,
                                       validation_alias=AliasChoices("EXECUTION_TIMEOUT_S", "STATEMENT_TIMEOUT_S"))
    QUERY_RETRY_ATTEMPTS: int = Field(default=3, ge=1)
    ALLOW_WRITE_QUERIES: bool = False

    # Misc
    APP_NAME: str = "NL-Cube API"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"


def load_settings(**overrides) -> Settings:
    """Build settings from env/.env; any invalid value is fatal at startup."""
    try:
        s = Settings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if s.DATA_DIR.exists() and not s.DATA_DIR.is_dir():
        raise ConfigurationError(f"DATA_DIR is not a directory: {s.DATA_DIR}")
    if s.LLM_BACKEND == "remote" and not (s.LLM_API_URL and s.LLM_API_KEY):
        raise ConfigurationError("LLM_API_URL and LLM_API_KEY are required for the remote backend")
    return s
