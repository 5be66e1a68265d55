"""SQLAlchemy declarative base and session helpers."""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from approvable.core.config import Settings, get_settings


class Base(DeclarativeBase):
    pass


def create_db_engine(settings: Optional[Settings] = None, **kwargs) -> Engine:
    """Create an engine for the configured database URL."""
    settings = settings or get_settings()
    return create_engine(settings.database_url, echo=settings.database_echo, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
