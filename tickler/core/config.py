"""
Tickler Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (TICKLER_*)
3. Project config (./tickler.toml)
4. User config (~/.tickler/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    TICKLER_DB_PATH → scheduler.db_path
    TICKLER_FIRE_TIMEOUT → scheduler.fire_timeout
    TICKLER_CATCH_UP → scheduler.catch_up
    TICKLER_HEARTBEAT_INTERVAL → heartbeat.interval_seconds
    TICKLER_EXECUTOR → executor.kind
    TICKLER_WEBHOOK_URL → executor.webhook_url
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from tickler.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Intent store and firing configuration."""

    db_path: str = "~/.tickler/scheduler.db"
    fire_timeout: float = 300.0  # seconds per executor invocation
    max_concurrent_fires: int = Field(default=4, ge=1)
    grace_seconds: float = 5.0  # tolerated lateness for one-off times
    catch_up: Literal["fire_once", "skip"] = "fire_once"
    default_task_type: str = "agent_intent"
    poll_interval: float = 30.0  # store re-read period for intents written elsewhere; 0 disables


class HeartbeatConfig(BaseModel):
    """Liveness heartbeat configuration."""

    enabled: bool = True
    interval_seconds: float = Field(default=60.0, gt=0)
    missed_intervals: int = Field(default=3, ge=1)


class ExecutorConfig(BaseModel):
    """Executor used by `tickler run`."""

    kind: Literal["log", "webhook"] = "log"
    webhook_url: str = ""
    timeout: float = 30.0

    @property
    def configured(self) -> bool:
        return self.kind == "log" or bool(self.webhook_url)


class LoggingConfig(BaseModel):
    """Log file configuration."""

    log_dir: str = "~/.tickler/logs"
    events_log: bool = True


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TicklerConfig(BaseModel):
    """Root configuration for Tickler."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> TicklerConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        user_config_path = user_path or Path.home() / ".tickler" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        project_config_path = project_path or Path.cwd() / "tickler.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        _deep_merge(merged, _load_from_env())

        if overrides:
            _deep_merge(merged, overrides)

        _substitute_env_vars(merged)

        try:
            return TicklerConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def get_db_path(self) -> Path:
        """Resolved path of the intent database."""
        return Path(self.scheduler.db_path).expanduser()

    def get_log_dir(self) -> Path:
        """Resolved log directory."""
        return Path(self.logging.log_dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        import tomllib
    except ImportError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


_ENV_MAPPING = {
    "TICKLER_DB_PATH": ("scheduler", "db_path"),
    "TICKLER_FIRE_TIMEOUT": ("scheduler", "fire_timeout"),
    "TICKLER_MAX_CONCURRENT_FIRES": ("scheduler", "max_concurrent_fires"),
    "TICKLER_CATCH_UP": ("scheduler", "catch_up"),
    "TICKLER_POLL_INTERVAL": ("scheduler", "poll_interval"),
    "TICKLER_HEARTBEAT_ENABLED": ("heartbeat", "enabled"),
    "TICKLER_HEARTBEAT_INTERVAL": ("heartbeat", "interval_seconds"),
    "TICKLER_EXECUTOR": ("executor", "kind"),
    "TICKLER_WEBHOOK_URL": ("executor", "webhook_url"),
    "TICKLER_LOG_DIR": ("logging", "log_dir"),
}


def _load_from_env() -> dict[str, Any]:
    """Load configuration from TICKLER_* environment variables."""
    result: dict[str, Any] = {}
    for env_var, (section, key) in _ENV_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)
    return result


def _convert_value(value: str) -> Any:
    """Convert string value to appropriate type."""
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute(value: str) -> str:
    for var_name in _ENV_PATTERN.findall(value):
        value = value.replace(f"${{{var_name}}}", os.environ.get(var_name, ""))
    return value


def _substitute_env_vars(data: dict) -> None:
    """Recursively substitute ${ENV_VAR} patterns in string values."""
    for key, value in data.items():
        if isinstance(value, dict):
            _substitute_env_vars(value)
        elif isinstance(value, str):
            data[key] = _substitute(value)
        elif isinstance(value, list):
            data[key] = [_substitute(v) if isinstance(v, str) else v for v in value]
