# backend/qachat/api/dependencies/database.py
"""
Database-related dependencies.
"""

from typing import Callable, Generator

from fastapi import Request
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from ...database import SessionLocal


def get_session_factory(connection: HTTPConnection) -> Callable[[], Session]:
    """Session factory bound to the application (tests swap it on app.state)."""
    return getattr(connection.app.state, "session_factory", None) or SessionLocal


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    Get database session dependency.

    Yields:
        Database session that will be closed after use
    """
    db = get_session_factory(request)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
