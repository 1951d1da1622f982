"""Legacy MyBB database reader.

This module reads the legacy forum schema with parameterized SQLAlchemy
``text`` queries and validates every row into the Pydantic legacy models.

Features:
- Connection retry with exponential backoff (tenacity)
- Configurable table prefix
- Stable ordering of every result set
- Invalid rows logged and skipped instead of aborting the read

Example:
    >>> from mybb2flarum.source import SourceReader
    >>>
    >>> with SourceReader("mysql+pymysql://root@localhost/mybb", prefix="mybb_") as reader:
    ...     for forum in reader.fetch_forums():
    ...         print(forum.fid, forum.name)
"""

import logging
from collections import Counter
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from mybb2flarum.config import redact_url, settings
from mybb2flarum.exceptions import QueryError, SourceUnavailable
from mybb2flarum.logging import logger
from mybb2flarum.models import (
    LegacyAttachment,
    LegacyForum,
    LegacyGroup,
    LegacyPost,
    LegacyThread,
    LegacyUser,
)

M = TypeVar("M", bound=BaseModel)

# Legacy tables the migration reads, in dependency order
SOURCE_TABLES = ("usergroups", "users", "forums", "threads", "posts", "attachments")


class SourceReader:
    """Reader for the legacy forum database.

    Args:
        url: SQLAlchemy URL (defaults to settings.source_url)
        prefix: Table prefix (defaults to settings.mybb_prefix)
        retries: Connection attempts (defaults to settings.connect_retries)

    Attributes:
        rejected: Per-table count of rows that failed validation
    """

    def __init__(
        self,
        url: str | None = None,
        prefix: str | None = None,
        retries: int | None = None,
    ):
        self.url = url or settings.source_url
        self.prefix = settings.mybb_prefix if prefix is None else prefix
        self.retries = retries or settings.connect_retries
        self.rejected: Counter[str] = Counter()
        self._engine: Engine | None = None

    def __enter__(self) -> "SourceReader":
        self.connect()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # =========================================================================
    # Connection Management
    # =========================================================================

    def connect(self) -> None:
        """Open the legacy database connection.

        Retries with exponential backoff before giving up.

        Raises:
            SourceUnavailable: When no connection could be established
        """
        if self._engine is not None:
            return

        # Create logging bridge for tenacity
        logging_logger = logging.getLogger(__name__)

        try:
            engine = create_engine(self.url, echo=False, pool_pre_ping=True)
        except (SQLAlchemyError, ImportError) as e:
            raise SourceUnavailable(f"Invalid source database URL {redact_url(self.url)}: {e}") from e

        retrying = Retrying(
            reraise=True,
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(SQLAlchemyError),
            before_sleep=before_sleep_log(logging_logger, logging.WARNING),
        )

        try:
            for attempt in retrying:
                with attempt:
                    with engine.connect() as conn:
                        conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            engine.dispose()
            raise SourceUnavailable(
                f"Cannot connect to {redact_url(self.url)} after {self.retries} attempt(s): {e}"
            ) from e

        self._engine = engine
        logger.info(f"🔌 Connected to legacy database {redact_url(self.url)}")

    def close(self) -> None:
        """Dispose the connection pool."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def ping(self) -> bool:
        """Check that the connection is still usable."""
        try:
            self._execute("SELECT 1", {}, table="ping")
        except QueryError:
            return False
        return True

    def table(self, name: str) -> str:
        """Prefixed table name, e.g. ``mybb_users``."""
        return f"{self.prefix}{name}"

    # =========================================================================
    # Query Helpers
    # =========================================================================

    def _execute(self, sql: str, params: dict[str, Any], table: str) -> list[dict[str, Any]]:
        if self._engine is None:
            raise RuntimeError("Source not connected")

        try:
            with self._engine.connect() as conn:
                result = conn.execute(text(sql), params)
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise QueryError(table, str(e)) from e

    def _fetch(
        self,
        model: type[M],
        table: str,
        where: str = "",
        order_by: str = "",
        params: dict[str, Any] | None = None,
    ) -> list[M]:
        columns = ", ".join(model.model_fields)
        sql = f"SELECT {columns} FROM {self.table(table)}"
        if where:
            sql += f" WHERE {where}"
        if order_by:
            sql += f" ORDER BY {order_by}"

        rows = self._execute(sql, params or {}, table=self.table(table))

        validated: list[M] = []
        for row in rows:
            try:
                validated.append(model.model_validate(row))
            except ValidationError as e:
                self.rejected[table] += 1
                logger.warning(f"⚠️ Skipping invalid {table} row {row}: {e}")

        return validated

    # =========================================================================
    # Fetch Operations
    # =========================================================================

    def fetch_groups(self) -> list[LegacyGroup]:
        """Custom user groups (``type = 2``) ordered by gid."""
        return self._fetch(LegacyGroup, "usergroups", where="type = 2", order_by="gid")

    def fetch_users(self) -> list[LegacyUser]:
        """Every user except the installing administrator, ordered by uid."""
        return self._fetch(LegacyUser, "users", where="uid > 1", order_by="uid")

    def fetch_forums(self) -> list[LegacyForum]:
        """Forums and categories ordered by fid."""
        return self._fetch(LegacyForum, "forums", order_by="fid")

    def fetch_threads(self, include_soft_deleted: bool = False) -> list[LegacyThread]:
        """Threads ordered by tid.

        Args:
            include_soft_deleted: Also return threads with ``visible = -1``
        """
        where = "" if include_soft_deleted else "visible != -1"
        return self._fetch(LegacyThread, "threads", where=where, order_by="tid")

    def fetch_posts(self, thread_id: int, include_soft_deleted: bool = False) -> list[LegacyPost]:
        """Posts of one thread ordered by pid.

        Args:
            thread_id: Legacy thread id
            include_soft_deleted: Also return posts with ``visible = -1``
        """
        where = "tid = :tid"
        if not include_soft_deleted:
            where += " AND visible != -1"
        return self._fetch(
            LegacyPost, "posts", where=where, order_by="pid", params={"tid": thread_id}
        )

    def fetch_attachments(self, post_id: int) -> list[LegacyAttachment]:
        """Attachments of one post ordered by aid."""
        return self._fetch(
            LegacyAttachment,
            "attachments",
            where="pid = :pid",
            order_by="aid",
            params={"pid": post_id},
        )

    def count_rows(self, table: str) -> int:
        """Number of rows in an unprefixed legacy table.

        Raises:
            ValueError: If the table is not one the migration reads
        """
        if table not in SOURCE_TABLES:
            raise ValueError(f"Unknown legacy table: {table}")
        rows = self._execute(f"SELECT COUNT(*) AS n FROM {self.table(table)}", {}, table=self.table(table))
        return int(rows[0]["n"])

    def summary(self) -> dict[str, int]:
        """Row counts of every legacy table the migration reads."""
        return {table: self.count_rows(table) for table in SOURCE_TABLES}


__all__ = ["SOURCE_TABLES", "SourceReader"]
