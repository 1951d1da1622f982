"""Target database management for mybb2flarum.

This module provides the target forum store with:
- Engine and session management (SQLite gets WAL mode)
- Table creation, optionally including the attachment subsystem tables
- Capability probing through table inspection
- Repository access and row count summaries

Example:
    >>> from mybb2flarum.database import DatabaseManager
    >>>
    >>> db = DatabaseManager("sqlite:///data/flarum.db")
    >>> db.initialize(with_uploads=True)
    >>>
    >>> tags = db.repo(TagRow)
    >>> print(tags.count())
    >>>
    >>> db.close()
"""

from pathlib import Path
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from mybb2flarum.config import settings
from mybb2flarum.logging import logger
from mybb2flarum.models import CORE_MODELS, UPLOAD_MODELS
from mybb2flarum.repository import Repository, RepositoryFactory, T


# =============================================================================
# Database Manager
# =============================================================================


class DatabaseManager:
    """Manages the target forum database.

    Features:
    - Connection management with WAL mode for SQLite files
    - Table creation for the core forum schema and the upload subsystem
    - Table presence checks used as capability probes
    - Type-safe repositories bound to a single session

    Args:
        url: SQLAlchemy URL of the target database (defaults to settings.target_url)

    Example:
        >>> db = DatabaseManager()
        >>> db.initialize()
        >>> db.has_table("fof_upload_files")
        False
        >>> db.get_entity_counts()
        {'groups': 0, 'users': 0, ...}
        >>> db.close()
    """

    def __init__(self, url: str | None = None):
        """Initialize database manager.

        Args:
            url: SQLAlchemy URL (defaults to settings.target_url)
        """
        self.url = url or settings.target_url or "sqlite://"
        self.engine: Engine | None = None
        self.session: Session | None = None
        self._repositories: RepositoryFactory | None = None

    def initialize(self, create_tables: bool = True, with_uploads: bool = False) -> None:
        """Initialize database engine and optionally create tables.

        Args:
            create_tables: Create the core forum tables when missing
            with_uploads: Also create the attachment subsystem tables
        """
        self.engine = self._create_engine()

        if create_tables:
            self.create_tables(with_uploads=with_uploads)

        self.session = Session(self.engine)
        self._repositories = RepositoryFactory(self.session)
        logger.info(f"✅ Target database initialized at {self.display_url}")

    def _create_engine(self) -> Engine:
        url = make_url(self.url)

        if url.get_backend_name() != "sqlite":
            return create_engine(self.url, echo=False, pool_pre_ping=True)

        if not url.database or url.database == ":memory:":
            # One shared in-memory database for every connection
            return create_engine(
                self.url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )

        Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            self.url,
            echo=False,
            connect_args={"check_same_thread": False},
        )

        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA journal_mode = WAL;")
            conn.exec_driver_sql("PRAGMA synchronous = NORMAL;")
            conn.commit()

        return engine

    @property
    def display_url(self) -> str:
        """Database URL with the password masked."""
        return make_url(self.url).render_as_string(hide_password=True)

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise RuntimeError("Database not initialized")
        return self.engine

    def _require_session(self) -> Session:
        if self.session is None:
            raise RuntimeError("Database not initialized")
        return self.session

    # =========================================================================
    # Schema Operations
    # =========================================================================

    def create_tables(self, with_uploads: bool = False) -> None:
        """Create the forum tables that do not exist yet.

        Args:
            with_uploads: Also create the attachment subsystem tables
        """
        engine = self._require_engine()
        models = CORE_MODELS + (UPLOAD_MODELS if with_uploads else ())
        SQLModel.metadata.create_all(engine, tables=[m.__table__ for m in models])  # type: ignore[attr-defined]
        logger.debug(f"✅ Created tables: {[m.__tablename__ for m in models]}")

    def drop_tables(self) -> None:
        """Drop every forum table managed by this package."""
        engine = self._require_engine()
        if self.session is not None:
            self.session.close()
        models = CORE_MODELS + UPLOAD_MODELS
        SQLModel.metadata.drop_all(engine, tables=[m.__table__ for m in models])  # type: ignore[attr-defined]
        logger.warning("🗑️ Dropped all forum tables")

    def has_table(self, name: str) -> bool:
        """Check whether a table exists in the target database.

        Args:
            name: Table name (e.g. ``fof_upload_files``)

        Returns:
            True if the table exists
        """
        return inspect(self._require_engine()).has_table(name)

    def has_upload_tables(self) -> bool:
        """Check whether the attachment subsystem is installed."""
        return all(self.has_table(m.__tablename__) for m in UPLOAD_MODELS)  # type: ignore[misc]

    # =========================================================================
    # Session Operations
    # =========================================================================

    def repo(self, model: type[T]) -> Repository[T]:
        """Repository for one table, bound to this manager's session.

        Example:
            >>> users = db.repo(UserRow)
            >>> users.get(1)
        """
        if self._repositories is None:
            raise RuntimeError("Database not initialized")
        return self._repositories.for_entity(model)

    def rollback(self) -> None:
        """Discard the pending transaction after a failed write."""
        self._require_session().rollback()

    def get_entity_counts(self) -> dict[str, int]:
        """Row counts of every forum table present in the database.

        Returns:
            Mapping of table name to row count
        """
        counts: dict[str, Any] = {}
        for model in CORE_MODELS + UPLOAD_MODELS:
            name = model.__tablename__  # type: ignore[attr-defined]
            if self.has_table(name):
                counts[name] = self.repo(model).count()
        return counts

    def close(self) -> None:
        """Close database connection and cleanup resources."""
        if self.session is not None:
            self.session.close()
            self.session = None
            self._repositories = None

        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

        logger.debug("Database connection closed")


# =============================================================================
# Export Public API
# =============================================================================

__all__ = ["DatabaseManager"]
