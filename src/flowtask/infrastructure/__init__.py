"""Infrastructure layer for FlowTask."""

from flowtask.infrastructure.config import Config, ConfigManager
from flowtask.infrastructure.connection_guard import ConnectionGuard
from flowtask.infrastructure.database import Database
from flowtask.infrastructure.logger import get_logger, setup_logging

__all__ = [
    "Config",
    "ConfigManager",
    "ConnectionGuard",
    "Database",
    "get_logger",
    "setup_logging",
]
