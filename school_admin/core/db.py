# school_admin/core/db.py - SQLAlchemy database setup with connection pooling
from sqlalchemy import create_engine, text, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool, QueuePool
from typing import Generator, Optional, Any, Iterable, Sequence
import logging
import time
import threading
from contextlib import contextmanager

from school_admin.core.config import settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Database manager with connection pooling and health monitoring"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.DATABASE_URL
        self.engine: Optional[Engine] = None
        self.SessionLocal: Optional[sessionmaker] = None
        self._initialized = False
        self._lock = threading.Lock()

    def initialize(self):
        """Initialize database engine and session maker"""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                self.engine = self._create_engine()
                self.SessionLocal = sessionmaker(
                    autocommit=False,
                    autoflush=False,
                    expire_on_commit=False,
                    bind=self.engine
                )
                self._setup_event_listeners()
                self._test_connection()

                self._initialized = True
                logger.info("Database initialized successfully")

            except Exception as e:
                logger.error(f"Failed to initialize database: {e}")
                raise

    def _create_engine(self) -> Engine:
        """Create SQLAlchemy engine for the configured backend"""
        is_sqlite = self.url.startswith("sqlite")

        engine_args = {
            "url": self.url,
            "echo": settings.DATABASE_ECHO,
        }

        if is_sqlite:
            engine_args.update({
                "poolclass": StaticPool,
                "connect_args": {
                    "check_same_thread": False,
                    "timeout": settings.DATABASE_POOL_TIMEOUT,
                },
            })
        else:
            engine_args.update({
                "poolclass": QueuePool,
                "pool_size": settings.DATABASE_POOL_SIZE,
                "max_overflow": settings.DATABASE_MAX_OVERFLOW,
                "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
                "pool_recycle": settings.DATABASE_POOL_RECYCLE,
                "pool_pre_ping": True,  # Verify connections before use
                "connect_args": {
                    "connect_timeout": 10,
                    "application_name": f"school_admin_{settings.ENV}",
                    "options": f"-c timezone=UTC -c statement_timeout={settings.DATABASE_POOL_TIMEOUT * 1000}",
                },
            })

        return create_engine(**engine_args)

    def _setup_event_listeners(self):
        """Set up SQLAlchemy event listeners"""
        if self.url.startswith("sqlite"):
            enable_sqlite_foreign_keys(self.engine)

        @event.listens_for(self.engine, "before_cursor_execute")
        def receive_before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            context._query_start_time = time.time()

        @event.listens_for(self.engine, "after_cursor_execute")
        def receive_after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            if hasattr(context, "_query_start_time"):
                total = time.time() - context._query_start_time
                if total > 0.5:
                    logger.warning(f"Slow query ({total:.3f}s): {statement[:100]}...")

    def _test_connection(self):
        """Test database connection and log status"""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            logger.info("Database connection test successful")
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            raise

    def get_session(self) -> Generator[Session, None, None]:
        """
        Get database session with automatic cleanup and error handling.

        Yields:
            Session: SQLAlchemy database session
        """
        if not self._initialized:
            self.initialize()

        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def health_check(self) -> dict:
        """
        Perform database health check.

        Returns:
            Dict with health status information
        """
        try:
            if not self._initialized:
                self.initialize()
            start_time = time.time()
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            response_time = (time.time() - start_time) * 1000
            return {
                "status": "healthy",
                "response_time_ms": round(response_time, 2),
                "database_url": self.url.split("@")[-1] if "@" in self.url else "local",
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    def close(self):
        """Close database connections and cleanup"""
        if self.engine:
            self.engine.dispose()
            self.engine = None
            self.SessionLocal = None
            self._initialized = False
            logger.info("Database connections closed")


def enable_sqlite_foreign_keys(engine: Engine) -> None:
    """SQLite leaves foreign keys off unless asked per connection"""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@contextmanager
def unit_of_work(session: Session):
    """
    Commit the work done inside the block, or roll it back on any error.

    Each pipeline step runs in its own unit of work against the shared session.
    """
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise


def _dialect_insert(session: Session):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert is not supported on dialect '{dialect}'")
    return insert


def upsert(
    session: Session,
    model: Any,
    rows: Sequence[dict],
    index_elements: Iterable[str],
    update_columns: Iterable[str],
    index_where: Any = None,
) -> int:
    """
    Insert rows, updating the listed columns when a unique key already matches.

    Args:
        session: Active session; the caller owns commit/rollback
        model: ORM class being written
        rows: Column/value dicts, one per row
        index_elements: Columns of the unique index used as conflict target
        update_columns: Columns overwritten from the incoming row on conflict
        index_where: Predicate of a partial unique index, if the target is one

    Returns:
        Number of rows submitted
    """
    if not rows:
        return 0

    insert = _dialect_insert(session)
    stmt = insert(model).values(list(rows))
    stmt = stmt.on_conflict_do_update(
        index_elements=list(index_elements),
        index_where=index_where,
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    session.execute(stmt)
    return len(rows)


# Create global database manager instance
db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency to get database session.

    Yields:
        Session: SQLAlchemy database session
    """
    yield from db_manager.get_session()


def get_engine() -> Engine:
    """Get SQLAlchemy engine instance"""
    if not db_manager._initialized:
        db_manager.initialize()
    return db_manager.engine


def health_check() -> dict:
    """Get database health status (convenience function)"""
    return db_manager.health_check()


__all__ = [
    "DatabaseManager",
    "db_manager",
    "enable_sqlite_foreign_keys",
    "get_db",
    "get_engine",
    "health_check",
    "unit_of_work",
    "upsert",
]
