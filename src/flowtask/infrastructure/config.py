"""Configuration management with hierarchical loading."""

import os
import sys
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from flowtask.domain.models import DEFAULT_WORKSPACE_COLOR
from flowtask.infrastructure.logger import get_logger

logger = get_logger(__name__)

APP_NAME = "flowtask"


def user_data_dir() -> Path:
    """Return the per-user local data directory for FlowTask.

    FLOWTASK_HOME overrides the platform default.
    """
    if override := os.getenv("FLOWTASK_HOME"):
        return Path(override)
    if sys.platform == "win32":
        base = os.getenv("LOCALAPPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / APP_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_NAME
    base = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_NAME


def user_config_dir() -> Path:
    """Return the per-user configuration directory for FlowTask."""
    if override := os.getenv("FLOWTASK_HOME"):
        return Path(override)
    if sys.platform in ("win32", "darwin"):
        return user_data_dir()
    base = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME


class DatabaseConfig(BaseModel):
    """Storage configuration."""

    path: Path | None = None  # None: <user data dir>/flowtask.db
    busy_timeout_ms: int = Field(default=5000, ge=0)


class WorkspaceConfig(BaseModel):
    """Default workspace bootstrapped into an empty database."""

    default_name: str = "Development"
    default_color: str = DEFAULT_WORKSPACE_COLOR


class TaskConfig(BaseModel):
    """Task defaults applied by the command layer."""

    default_priority: int = 2
    sync_limit: int = Field(default=50, ge=1)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "WARNING"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    workspace: WorkspaceConfig = Field(default_factory=WorkspaceConfig)
    tasks: TaskConfig = Field(default_factory=TaskConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. User file (<user config dir>/config.yaml)
        3. Project overrides (.flowtask/config.yaml)
        4. Environment variables (FLOWTASK_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        user_config_path = user_config_dir() / "config.yaml"
        if user_config_path.exists():
            config_dict = self._merge_dicts(config_dict, self._load_yaml(user_config_path))

        project_config_path = self.project_root / ".flowtask" / "config.yaml"
        if project_config_path.exists():
            config_dict = self._merge_dicts(config_dict, self._load_yaml(project_config_path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        logger.debug("config_loaded", project_root=str(self.project_root))
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with FLOWTASK_ prefix."""
        env_mappings = {
            "FLOWTASK_LOG_LEVEL": ["log_level"],
            "FLOWTASK_DB_PATH": ["database", "path"],
            "FLOWTASK_DEFAULT_PRIORITY": ["tasks", "default_priority"],
        }

        for env_var, path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                current = config_dict
                for key in path[:-1]:
                    if key not in current:
                        current[key] = {}
                    current = current[key]
                try:
                    current[path[-1]] = int(value)
                except ValueError:
                    current[path[-1]] = value

        return config_dict

    def get_database_path(self) -> Path:
        """Get path to the SQLite database file, creating its directory."""
        configured = self.load_config().database.path
        db_path = configured if configured is not None else user_data_dir() / "flowtask.db"
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        return db_path

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = user_data_dir() / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
