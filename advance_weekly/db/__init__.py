"""Database package for Advance Weekly."""

from .base import Base, get_db, get_engine, get_session_local, init_database
from .operation_store import OperationStore
from .repository import ScopedDataRepository, open_repository

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "OperationStore",
    "ScopedDataRepository",
    "open_repository",
]
