# usermanager Core Module
from .config import get_settings, settings
from .database import Base, check_db_connection, dispose_engine, get_db
from .logging import setup_logging

__all__ = [
    "settings",
    "get_settings",
    "setup_logging",
    "Base",
    "get_db",
    "check_db_connection",
    "dispose_engine",
]
