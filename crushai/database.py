"""
Database connection and session management for CrushAI.

PostgreSQL (or sqlite in tests) through SQLAlchemy, and Redis for reference
bindings and pub/sub. Connections are owned by the objects built here and
handed to the services that need them; nothing is stored in module globals.
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

import redis
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from crushai.models import Base

logger = logging.getLogger(__name__)


def _redact_url(url: str) -> str:
    return url.split("@", 1)[1] if "@" in url else url.split(":", 1)[0]


class Database:
    """Engine plus a thread-scoped session factory."""

    def __init__(self, url: str, echo: bool = False, create_tables: Optional[bool] = None):
        self.url = url
        self.dialect = url.split(":", 1)[0].split("+", 1)[0]

        engine_kwargs = {"echo": echo, "pool_pre_ping": True}
        if url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url.rstrip("/") == "sqlite:":
                # Every connection to an in-memory database is a new database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs.update(
                {
                    "pool_size": 10,
                    "max_overflow": 20,
                    "pool_recycle": 3600,
                }
            )

        self.engine = create_engine(url, **engine_kwargs)

        @event.listens_for(self.engine, "connect")
        def receive_connect(dbapi_conn, connection_record):
            logger.debug("New database connection established")

        self._factory = scoped_session(sessionmaker(bind=self.engine, expire_on_commit=False))

        if create_tables is None:
            create_tables = url.startswith("sqlite")
        if create_tables:
            if not url.startswith("sqlite"):
                logger.warning("Creating database tables - use migrations in production!")
            Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized: {_redact_url(url)}")

    def get_session(self) -> Session:
        return self._factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        Usage:
            with db.session_scope() as session:
                session.add(obj)
                # Automatically commits on success, rolls back on error
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database transaction failed: {e}")
            raise
        finally:
            self._factory.remove()

    def health(self) -> dict:
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return {"status": "healthy", "database": self.dialect, "connected": True}
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "database": self.dialect, "connected": False, "error": str(e)}

    def close(self) -> None:
        self._factory.remove()
        self.engine.dispose()
        logger.info("Database connections closed")


def init_redis(url: str) -> Optional[redis.Redis]:
    """
    Build a Redis client from a URL and check it answers.

    Returns:
        Redis client or None if the server is unreachable
    """
    try:
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        client.ping()
    except redis.RedisError as e:
        logger.error(f"Failed to initialize Redis: {e}")
        return None

    logger.info(f"Redis initialized: {_redact_url(url)}")
    return client
