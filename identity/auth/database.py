"""
Identity Backend - Database Configuration

SQLModel database setup with connection pooling.
Supports PostgreSQL (production) and SQLite (development).

Usage:
    from identity.auth.database import get_engine, init_db

    engine = get_engine()
    init_db(engine)  # Creates tables
"""

import asyncio
from typing import Callable, TypeVar

from sqlmodel import SQLModel, Session, create_engine

from identity.config import settings

T = TypeVar("T")

SessionFactory = Callable[[], Session]


def get_database_url() -> str:
    """
    Get database URL from settings.

    Returns:
        PostgreSQL or SQLite connection string
    """
    if getattr(settings, "DATABASE_URL", None):
        return settings.DATABASE_URL

    # Default to SQLite for local development
    return "sqlite:///./identity.db"


def get_engine(database_url: str = None, echo: bool = False):
    """
    Create SQLAlchemy engine with appropriate configuration.

    Args:
        database_url: Override database URL
        echo: Log SQL statements

    Returns:
        SQLAlchemy Engine
    """
    url = database_url or get_database_url()

    if url.startswith("sqlite"):
        # Store calls run on worker threads
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    else:
        # PostgreSQL configuration with connection pooling
        engine = create_engine(
            url,
            echo=echo,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
        )

    return engine


def init_db(engine) -> None:
    """
    Initialize database tables.

    Creates all tables defined in SQLModel models.
    Safe to call multiple times (uses CREATE IF NOT EXISTS).
    """
    # Import models to register them with SQLModel
    from identity.auth.models import (  # noqa: F401
        AdminUser,
        ClientUser,
        EmployeeUser,
        Session as SessionRecord,
        SessionActivity,
    )

    SQLModel.metadata.create_all(engine)


def get_session_factory(engine) -> SessionFactory:
    """
    Create a session factory bound to engine.

    Objects stay readable after commit so they can be returned to callers
    once the session is closed.
    """
    def session_factory() -> Session:
        return Session(engine, expire_on_commit=False)

    return session_factory


async def run_in_session(factory: SessionFactory, work: Callable[[Session], T]) -> T:
    """Run blocking database work in a worker thread with its own session."""
    def _call() -> T:
        with factory() as db:
            return work(db)

    return await asyncio.to_thread(_call)
