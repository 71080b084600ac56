"""Database session management."""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crowdfund.config import Config
from crowdfund.db.models import Base
from crowdfund.log import get_logger

logger = get_logger(__name__)


class Database:
    """Owns the engine and session factory for one database URL.

    Built once at startup and passed to the components that need it.
    """

    def __init__(self, db_url: str, echo: bool = False):
        """Create the engine and session factory.

        Args:
            db_url: SQLAlchemy database URL
            echo: Log SQL statements (debugging only)
        """
        self.db_url = db_url
        if db_url.startswith("sqlite"):
            engine_kwargs = {"connect_args": {"check_same_thread": False}}
            if ":memory:" in db_url or db_url in ("sqlite://", "sqlite+pysqlite://"):
                # One shared connection so every session sees the same in-memory database
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs = {
                "pool_size": 10,
                "max_overflow": 20,
                "pool_pre_ping": True,  # Verify connections before using
            }

        self.engine: Engine = create_engine(db_url, echo=echo, **engine_kwargs)
        self._session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, config: Config) -> "Database":
        """Build a database from configuration."""
        return cls(config.db_url)

    def create_schema(self) -> None:
        """Create all tables (local development and tests)."""
        Base.metadata.create_all(self.engine)
        logger.info("Database schema created")

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a database session with context manager.

        Commits on success, rolls back on any exception.

        Yields:
            SQLAlchemy Session

        Example:
            with database.session() as session:
                # Use session
                pass
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Close all pooled connections."""
        self.engine.dispose()
