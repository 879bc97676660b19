"""
Database models and configuration.
"""
from .base import Base, init_db, make_engine, make_session_factory
from .models import AttemptRecord, ItemRecord, ResponseRow

__all__ = [
    "AttemptRecord",
    "Base",
    "ItemRecord",
    "ResponseRow",
    "init_db",
    "make_engine",
    "make_session_factory",
]
