"""Core module for configuration and utilities."""

from app.core.config import settings
from app.core.database import Base, Database, get_database, get_session

__all__ = [
    "settings",
    "Base",
    "Database",
    "get_database",
    "get_session",
]
