"""
Database base configuration for SQLAlchemy models.

This module uses SQLAlchemy 2.0 style with DeclarativeBase. The engine is
synchronous: the CAT engine never blocks on I/O itself, and each inbound
operation is a short read-modify-write transaction.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from adaptive_testing.core.config import settings


class Base(DeclarativeBase):
    """
    SQLAlchemy 2.0 declarative base class with type annotation support.
    """

    pass


def make_engine(url: Optional[str] = None, echo: Optional[bool] = None, **kwargs) -> Engine:
    """
    Create an engine for ``url`` (defaults to settings.DATABASE_URL).

    SQLite connections are allowed to cross threads, since repositories may
    be shared by worker threads.
    """
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        kwargs["connect_args"] = connect_args
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_engine(
        url,
        echo=settings.DATABASE_ECHO if echo is None else echo,
        **kwargs,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        bind=bind, autocommit=False, autoflush=False, expire_on_commit=False
    )


def init_db(bind: Engine) -> None:
    """Create all tables that do not exist yet."""
    # Import models so their tables are registered on Base.metadata
    from adaptive_testing.models import models  # noqa: F401

    Base.metadata.create_all(bind=bind)
