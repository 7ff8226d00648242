"""PostgreSQL connection and schema init for the task service.

Uses SQLModel over psycopg2; connection params from env (POSTGRES_*), or a
full DATABASE_URL when set.
"""

import logging
import os

from sqlalchemy import create_engine
from sqlmodel import SQLModel

from models import Notification, Task, TaskParticipant, User  # noqa: F401 (registers tables)

logger = logging.getLogger(__name__)


def _connection_params():
    return {
        "host": os.environ.get("POSTGRES_HOST", "localhost"),
        "port": int(os.environ.get("POSTGRES_PORT", "5432")),
        "user": os.environ.get("POSTGRES_USER", "postgres"),
        "password": os.environ.get("POSTGRES_PASSWORD", ""),
        "dbname": os.environ.get("POSTGRES_DB", "taskdb"),
    }


def _database_url() -> str:
    override = (os.environ.get("DATABASE_URL") or "").strip()
    if override:
        return override
    p = _connection_params()
    return (
        f"postgresql+psycopg2://{p['user']}:{p['password']}"
        f"@{p['host']}:{p['port']}/{p['dbname']}"
    )


_engine = None


def get_engine():
    """Return a shared SQLAlchemy engine for SQLModel sessions."""
    global _engine
    if _engine is None:
        _engine = create_engine(_database_url(), echo=False, pool_pre_ping=True)
    return _engine


def init_db() -> None:
    """Create all tables from SQLModel metadata if they do not exist."""
    engine = get_engine()
    SQLModel.metadata.create_all(engine)
    logger.info("Database schema ready (%s).", engine.url.render_as_string(hide_password=True))
