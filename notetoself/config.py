"""Configuration management for note-to-self."""

import json
import os
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_PLACEHOLDER_TEXT = "New Text Box..."


class DatabaseConfig(BaseModel):
    dsn: str = ""
    min_size: int = 1
    max_size: int = 5
    command_timeout_seconds: float = 30
    acquire_timeout_seconds: float = 10


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3000
    cors_origins: list[str] = ["http://localhost:3000"]
    cookie_secure: bool = False
    session_ttl_seconds: float = 86400
    max_sessions: int = 10000


class NoteToSelfConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    placeholder_text: str = DEFAULT_PLACEHOLDER_TEXT


def _config_dir() -> Path:
    return Path.home() / ".notetoself"


def _config_path() -> Path:
    return _config_dir() / "config.json"


def ensure_dirs() -> None:
    """Create the config directory."""
    _config_dir().mkdir(exist_ok=True)


def load_config() -> NoteToSelfConfig:
    """Load config from ~/.notetoself/config.json, returning defaults if missing.

    DATABASE_URL in the environment takes precedence over the stored DSN.
    """
    path = _config_path()
    config = NoteToSelfConfig.model_validate_json(path.read_text()) if path.exists() else NoteToSelfConfig()
    env_dsn = os.environ.get("DATABASE_URL")
    if env_dsn:
        config.database.dsn = env_dsn
    return config


def save_config(config: NoteToSelfConfig) -> None:
    """Save config to ~/.notetoself/config.json."""
    ensure_dirs()
    path = _config_path()
    path.write_text(json.dumps(config.model_dump(), indent=2) + "\n")
