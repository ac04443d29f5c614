"""Audio Resource Ingestor - Database engine, sessions and the record store.

SQLAlchemy sync engine/session factory for SQLite, plus ResourceRepository,
the keyed metadata record store used by the orchestrator.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import Engine, create_engine, delete, select
from sqlalchemy.orm import sessionmaker

from ingestor.config import DB_PATH
from ingestor.models import Base, Resource

logger = logging.getLogger(__name__)


def get_database_url(db_path: str | Path | None = None) -> str:
    """SQLite URL for db_path (config.DB_PATH when omitted)."""
    return f"sqlite:///{DB_PATH if db_path is None else db_path}"


def init_db(db_path: str | Path | None = None, echo: bool = False) -> tuple[Engine, sessionmaker]:
    """Open the metadata database and make sure the resources table exists.

    Safe to call repeatedly; existing tables are left alone.

    Returns:
        Tuple of (engine, SessionFactory).
    """
    Path(DB_PATH if db_path is None else db_path).parent.mkdir(parents=True, exist_ok=True)

    engine = create_engine(
        get_database_url(db_path),
        echo=echo,
        # Sessions never cross threads (one per repository call), but the
        # API serves requests from a thread pool
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)

    # expire_on_commit=False keeps returned records readable after close
    SessionFactory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    logger.debug("Metadata database ready at %s", engine.url)
    return engine, SessionFactory


# --- Metadata Record Store ---


class ResourceRepository:
    """Keyed store for Resource records.

    Every method is its own unit of work: it opens a session, commits (for
    writes) and closes it. Nothing is cached between calls, so one repository
    may serve concurrent requests.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def save(self, resource: Resource) -> Resource:
        """Insert a new record and return it with its assigned id.

        Raises:
            sqlalchemy.exc.SQLAlchemyError: If the insert or commit fails.
        """
        with self._session_factory() as session:
            try:
                session.add(resource)
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.debug("Saved resource id=%s storage_key=%s", resource.id, resource.storage_key)
        return resource

    def find_by_id(self, resource_id: int) -> Resource | None:
        """Return the record for resource_id, or None if absent."""
        with self._session_factory() as session:
            return session.get(Resource, resource_id)

    def exists_by_id(self, resource_id: int) -> bool:
        """Return True if a record with resource_id exists."""
        with self._session_factory() as session:
            stmt = select(Resource.id).where(Resource.id == resource_id)
            return session.execute(stmt).first() is not None

    def delete_by_id(self, resource_id: int) -> None:
        """Delete the record for resource_id. Deleting an absent id is a no-op."""
        with self._session_factory() as session:
            try:
                session.execute(delete(Resource).where(Resource.id == resource_id))
                session.commit()
            except Exception:
                session.rollback()
                raise
        logger.debug("Deleted resource record id=%s", resource_id)
