# src/sitewatch/config.py

"""Centralized settings.

Two layers:
- process settings (paths, queue tuning, Matrix credentials) from environment
  variables, optionally via a local .env file;
- the task configuration file (config.json): a declarative JSON document
  validated with pydantic. It is parsed, never executed.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

ENV_PREFIX = "SITEWATCH"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv() -> None:
    """Load a local .env (if any). Real environment variables win."""
    load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Optional[Path]) -> Optional[Path]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/126.0 Safari/537.36"
)


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Connector flags ----
    console_enabled: bool
    matrix_enabled: bool

    # ---- Local data paths ----
    data_dir: Path
    log_dir: Path
    cache_db_path: Path
    config_path: Path
    cookie_file: Optional[Path]

    # ---- Request queue ----
    request_retries: int
    request_poll_interval: float
    request_queue_size: int
    request_timeout: float
    user_agent: str

    # ---- Matrix ----
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_store_path: Path
    matrix_rooms: List[str]

    @staticmethod
    def from_env() -> "Settings":
        _load_dotenv()

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/sitewatch")) or Path(".local/sitewatch")

        return Settings(
            app_name=_env(_k("APP_NAME"), "sitewatch") or "sitewatch",
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            matrix_enabled=_env_bool(_k("MATRIX_ENABLED"), False),
            data_dir=data_dir,
            log_dir=_env_path(_k("LOG_DIR"), data_dir / "logs") or data_dir / "logs",
            cache_db_path=_env_path(_k("CACHE_DB_PATH"), data_dir / "cache" / "db.sqlite")
            or data_dir / "cache" / "db.sqlite",
            config_path=_env_path(_k("CONFIG_PATH"), Path("config.json")) or Path("config.json"),
            cookie_file=_env_path(_k("COOKIE_FILE"), None),
            request_retries=max(1, _env_int(_k("REQUEST_RETRIES"), 5)),
            request_poll_interval=max(0.0, _env_float(_k("REQUEST_POLL_INTERVAL"), 1.0)),
            request_queue_size=max(1, _env_int(_k("REQUEST_QUEUE_SIZE"), 256)),
            request_timeout=max(1.0, _env_float(_k("REQUEST_TIMEOUT"), 30.0)),
            user_agent=_env(_k("USER_AGENT"), DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT,
            matrix_homeserver=_env(_k("MATRIX_HOMESERVER")).strip(),
            matrix_user_id=_env(_k("MATRIX_USER_ID")).strip(),
            matrix_password=_env(_k("MATRIX_PASSWORD")).strip(),
            matrix_store_path=_env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")
            or data_dir / "matrix_store",
            matrix_rooms=_env_list(_k("MATRIX_ROOMS"), []),
        )


_SETTINGS: Settings | None = None


def get_settings() -> Settings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = Settings.from_env()
    return _SETTINGS


# --------------------------------------------------------------------------------------
# Task configuration file (config.json)
# --------------------------------------------------------------------------------------


class SystemConfig(BaseModel):
    """Settings that apply to the whole bot rather than a single task."""

    model_config = ConfigDict(extra="forbid")

    # Rooms/channels that receive boot and shutdown notices.
    log_channels: list[str] = Field(default_factory=list)
    # Used by tasks that don't name their own targets.
    default_targets: list[str] = Field(default_factory=list)


class TaskFileConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    system: SystemConfig = Field(default_factory=SystemConfig)
    tasks: dict[str, dict[str, Any]] = Field(default_factory=dict)

    @field_validator("tasks")
    @classmethod
    def _slugs_are_clean(cls, value: dict[str, dict[str, Any]]) -> dict[str, dict[str, Any]]:
        for slug in value:
            if not slug or slug != slug.strip() or " " in slug:
                raise ValueError(f"invalid task slug: {slug!r}")
        return value

    def task_config(self, slug: str) -> dict[str, Any] | None:
        return self.tasks.get(slug)


def load_task_config(path: str | Path) -> TaskFileConfig:
    """
    Read and validate the task configuration file.

    Raises ConfigError if the file is missing, is not valid JSON,
    or does not match the schema.
    """
    p = Path(path)
    if not p.is_file():
        raise ConfigError("could not find the config file.", path=p)

    try:
        raw = json.loads(p.read_text("utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"could not read config file: {e}", path=p) from e
    except json.JSONDecodeError as e:
        raise ConfigError(
            f"could not parse config file (line {e.lineno}, column {e.colno}): {e.msg}",
            path=p,
        ) from e

    try:
        return TaskFileConfig.model_validate(raw)
    except ValidationError as e:
        details = [
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigError("config file is invalid.", path=p, details=details) from e


def build_new_config(templates: Mapping[str, dict[str, Any]]) -> dict[str, Any]:
    """Assemble a fresh config document from each task's config template."""
    doc = TaskFileConfig(tasks={slug: dict(tpl) for slug, tpl in templates.items()})
    return doc.model_dump(mode="json")


def write_new_config(path: str | Path, templates: Mapping[str, dict[str, Any]]) -> Path:
    """
    Write a fresh config file. Never overwrites an existing one.
    """
    p = Path(path)
    if p.exists():
        raise ConfigError("config file already exists; refusing to overwrite it.", path=p)

    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(".tmp")
    tmp.write_text(json.dumps(build_new_config(templates), ensure_ascii=False, indent=2) + "\n", "utf-8")
    os.replace(tmp, p)
    return p
