"""
Database configuration and session management
"""

from sqlmodel import SQLModel, Session, create_engine
from sqlalchemy import event
import structlog

from classbook.core.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()


def build_engine(url: str, echo: bool = False, **kwargs):
    """Create an engine, enabling foreign keys when running on SQLite"""
    connect_args = dict(kwargs.pop("connect_args", {}))
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    new_engine = create_engine(url, echo=echo, future=True, connect_args=connect_args, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def enable_sqlite_fk(dbapi_connection, _):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)


def init_db():
    """Initialize database tables"""
    # Import models so their tables are registered on the metadata
    import classbook.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables created")


def get_session():
    """Dependency to get database session"""
    with Session(engine) as session:
        yield session
