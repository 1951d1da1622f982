"""Migration pipeline orchestration for mybb2flarum.

This module orchestrates the ETL run:
1. Extract: Read legacy rows through the source reader
2. Transform: Validate with Pydantic models and derive target fields
3. Load: Write SQLModel rows to the target store

Phases always run in dependency order::

    GROUPS -> USERS -> CATEGORIES -> DISCUSSIONS -> DONE

Every phase first deletes the target rows it owns (keeping protected
system rows), so a run replaces the previous one. A phase that is turned
off keeps the existing target rows and seeds the identifier mapper with
them, so later phases can still reference them.

Features:
- Row-level failures are rolled back, logged and counted without aborting
- Cooperative cancellation between phases and between discussions
- Progress tracking with tqdm, metrics and one trace span per phase
"""

import random
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from sqlmodel import col
from tqdm import tqdm  # type: ignore[import-untyped]

from mybb2flarum.aggregates import AggregateEngine
from mybb2flarum.assets import (
    AttachmentMigrator,
    AvatarMigrator,
    LocalFileStorage,
    probe_upload_subsystem,
)
from mybb2flarum.config import MigrationOptions, settings
from mybb2flarum.database import DatabaseManager
from mybb2flarum.exceptions import MigrationCancelled, MigrationError
from mybb2flarum.interfaces import IFileStorage, ISourceReader, IUploadSubsystem
from mybb2flarum.logging import clear_run_context, logger, set_run_context
from mybb2flarum.mapper import EntityKind, IdentifierMapper
from mybb2flarum.metrics import (
    entities_migrated_total,
    entities_skipped_total,
    last_successful_run_timestamp,
    migration_phase_active,
    migration_runs_total,
    phase_duration_seconds,
)
from mybb2flarum.models import (
    DiscussionRow,
    DiscussionTagLink,
    FilePostLink,
    FileRow,
    GroupRow,
    GroupUserLink,
    LegacyThread,
    PostRow,
    TagRow,
    UserRow,
)
from mybb2flarum.resolver import TagResolver
from mybb2flarum.source import SourceReader
from mybb2flarum.telemetry import create_span_context, get_tracer, record_exception_in_span
from mybb2flarum.transformers import (
    DiscussionTransformer,
    GroupTransformer,
    PostTransformer,
    TagTransformer,
    UserTransformer,
)
from mybb2flarum.utils import utc_now

R = TypeVar("R")

COUNT_KINDS = ("groups", "users", "categories", "discussions", "posts", "attachments")


class PipelineState(StrEnum):
    """Lifecycle of one migration run."""

    IDLE = "idle"
    GROUPS = "groups"
    USERS = "users"
    CATEGORIES = "categories"
    DISCUSSIONS = "discussions"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancellationToken:
    """Thread-safe cancellation flag, safe to set from a signal handler."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise MigrationCancelled when cancellation was requested."""
        if self._event.is_set():
            raise MigrationCancelled("Migration cancelled")


@dataclass
class MigrationContext:
    """Everything one run needs, passed explicitly to every component.

    Attributes:
        source: Legacy database reader
        store: Target data store
        options: Run flags
        mapper: Legacy id -> target id map
        storage: Target file storage
        uploads: Upload subsystem, None when missing or not requested
        legacy_path: Root of the legacy install, None when no files are copied
        rng: Color generator
        now: Run clock used for hidden timestamps
        reserved_group_max_id: Groups with id <= this are never assigned
        protected_group_max_id: Groups with id <= this survive the group phase
        protected_user_max_id: Users with id <= this survive the user phase
        counts: Migrated entities per kind
        skipped: Skipped rows per kind
        errors: Non-fatal problems worth reporting
        users_to_refresh: Authors whose counters need recomputing
        token: Cancellation token
    """

    source: ISourceReader
    store: DatabaseManager
    options: MigrationOptions
    mapper: IdentifierMapper
    storage: IFileStorage
    uploads: Optional[IUploadSubsystem] = None
    legacy_path: Optional[Path] = None
    rng: random.Random = field(default_factory=random.Random)
    now: datetime = field(default_factory=utc_now)
    reserved_group_max_id: int = 7
    protected_group_max_id: int = 4
    protected_user_max_id: int = 1
    counts: Counter[str] = field(default_factory=Counter)
    skipped: Counter[str] = field(default_factory=Counter)
    errors: list[str] = field(default_factory=list)
    users_to_refresh: set[int] = field(default_factory=set)
    token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def resolver(self) -> TagResolver:
        return TagResolver(self.store)

    @property
    def aggregates(self) -> AggregateEngine:
        return AggregateEngine(self.store)

    def count(self, kind: str, amount: int = 1) -> None:
        self.counts[kind] += amount
        entities_migrated_total.labels(kind=kind).inc(amount)


class MigrationResult(BaseModel):
    """Summary of a finished run."""

    state: PipelineState
    counts: dict[str, int] = Field(default_factory=dict)
    skipped: dict[str, int] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    started_at: datetime
    finished_at: datetime

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.DONE


class MigrationPipeline:
    """Runs a full MyBB to Flarum migration.

    Example:
        >>> pipeline = MigrationPipeline(options=MigrationOptions(migrate_avatars=True))
        >>> pipeline.initialize()
        >>> result = pipeline.run()
        >>> print(result.state, result.counts)
        >>> pipeline.close()
    """

    def __init__(
        self,
        source: Optional[ISourceReader] = None,
        db: Optional[DatabaseManager] = None,
        options: Optional[MigrationOptions] = None,
        storage: Optional[IFileStorage] = None,
        legacy_path: Optional[Path] = None,
        color_seed: Optional[int] = None,
        show_progress: bool = True,
    ):
        """Initialize migration pipeline.

        Args:
            source: Legacy reader (creates one from settings if None)
            db: Target database manager (creates new if None)
            options: Run flags (built from settings if None)
            storage: Target file storage (public_dir + forum_url if None)
            legacy_path: Legacy install root (settings.mybb_path if None)
            color_seed: Seed for group and tag colors (settings.color_seed if None)
            show_progress: Show a progress bar over discussions
        """
        self.source = source or SourceReader()
        self.db     = db or DatabaseManager()
        self.options = options or MigrationOptions.from_settings(settings)
        self.storage = storage or LocalFileStorage(
            settings.public_dir or settings.data_dir / "public",
            settings.forum_url,
        )
        self.legacy_path = legacy_path or settings.mybb_path
        self.color_seed  = color_seed if color_seed is not None else settings.color_seed
        self.show_progress = show_progress

        self.state = PipelineState.IDLE
        self.token = CancellationToken()

    def initialize(self) -> None:
        """Open the target store and the legacy connection.

        Raises:
            SourceUnavailable: When the legacy database cannot be reached
        """
        if self.db.engine is None:
            self.db.initialize()
        self.source.connect()
        logger.info("✅ Pipeline initialized")

    def close(self) -> None:
        """Close pipeline resources."""
        self.source.close()
        self.db.close()
        logger.info("✅ Pipeline closed")

    def cancel(self) -> None:
        """Request cancellation at the next phase or discussion boundary."""
        logger.warning("⏹️ Cancellation requested")
        self.token.cancel()

    # =========================================================================
    # Run
    # =========================================================================

    def run(self) -> MigrationResult:
        """Run every enabled phase in order.

        Returns:
            Result with the final state and per-kind counts
        """
        started_at = utc_now()
        ctx = self._build_context()
        run_id = uuid.uuid4().hex[:12]
        set_run_context(run_id=run_id)

        logger.info(f"🚀 Starting migration run {run_id} with {self.options.model_dump()}")

        phases: list[tuple[PipelineState, bool, EntityKind, Callable[[MigrationContext], None]]] = [
            (PipelineState.GROUPS, self.options.migrate_groups, EntityKind.GROUP, self._migrate_groups),
            (PipelineState.USERS, self.options.migrate_users, EntityKind.USER, self._migrate_users),
            (PipelineState.CATEGORIES, self.options.migrate_categories, EntityKind.TAG, self._migrate_categories),
            (PipelineState.DISCUSSIONS, self.options.migrate_discussions, EntityKind.DISCUSSION, self._migrate_discussions),
        ]

        tracer = get_tracer(__name__)

        try:
            self.initialize()
            self._probe_capabilities(ctx)

            for state, enabled, kind, phase in phases:
                ctx.token.raise_if_cancelled()
                self.state = state

                if not enabled:
                    seeded = self._seed_existing(ctx, kind)
                    logger.info(f"⏭️ Skipping {state.value} phase, reusing {seeded} existing rows")
                    continue

                set_run_context(phase=state.value)
                with create_span_context(tracer, f"migration.{state.value}", {"run_id": run_id}) as span:
                    migration_phase_active.labels(phase=state.value).set(1)
                    start = time.perf_counter()
                    try:
                        phase(ctx)
                    except MigrationError as e:
                        record_exception_in_span(span, e)
                        raise
                    finally:
                        phase_duration_seconds.labels(phase=state.value).observe(time.perf_counter() - start)
                        migration_phase_active.labels(phase=state.value).set(0)

            self.state = PipelineState.DONE
            last_successful_run_timestamp.set_to_current_time()

        except MigrationCancelled:
            self.state = PipelineState.CANCELLED
            logger.warning("⏹️ Migration cancelled")

        except (MigrationError, OperationalError) as e:
            failed_phase = self.state.value
            self.state = PipelineState.FAILED
            ctx.errors.append(f"{failed_phase}: {e}")
            logger.error(f"❌ Migration failed during {failed_phase}: {e}")
            if self.db.session is not None:
                self.db.rollback()

        except DBAPIError as e:
            if not e.connection_invalidated:
                raise
            failed_phase = self.state.value
            self.state = PipelineState.FAILED
            ctx.errors.append(f"{failed_phase}: lost target connection: {e}")
            logger.error(f"❌ Lost target connection during {failed_phase}: {e}")

        finally:
            migration_runs_total.labels(status=self.state.value).inc()
            clear_run_context()

        result = MigrationResult(
            state=self.state,
            counts={kind: ctx.counts[kind] for kind in COUNT_KINDS},
            skipped=dict(ctx.skipped),
            errors=ctx.errors,
            started_at=started_at,
            finished_at=utc_now(),
        )
        logger.info(f"✅ Migration finished ({result.state.value}): {result.counts}")
        return result

    def _build_context(self) -> MigrationContext:
        ctx = MigrationContext(
            source=self.source,
            store=self.db,
            options=self.options,
            mapper=IdentifierMapper(),
            storage=self.storage,
            legacy_path=self.legacy_path,
            rng=random.Random(self.color_seed),
            now=utc_now(),
            reserved_group_max_id=settings.reserved_group_max_id,
            protected_group_max_id=settings.protected_group_max_id,
            protected_user_max_id=settings.protected_user_max_id,
            token=self.token,
        )
        return ctx

    def _probe_capabilities(self, ctx: MigrationContext) -> None:
        if self.options.migrate_attachments:
            if self.legacy_path is None:
                logger.warning("⚠️ Attachments requested but no legacy path configured")
            else:
                ctx.uploads = probe_upload_subsystem(self.db, self.storage)
                if ctx.uploads is None:
                    logger.warning("⚠️ Attachments requested but the upload subsystem is not installed")

    # =========================================================================
    # Row Guard
    # =========================================================================

    def _guarded(self, ctx: MigrationContext, kind: str, label: str, func: Callable[..., R], *args: Any) -> R | None:
        """Run one row-level write, skipping the row on failure.

        Lost connections propagate and end the run.
        """
        try:
            return func(*args)
        except OperationalError:
            raise
        except DBAPIError as e:
            if e.connection_invalidated:
                raise
            self._skip(ctx, kind, label, e)
        except (SQLAlchemyError, ValidationError, ValueError) as e:
            self._skip(ctx, kind, label, e)
        return None

    def _skip(self, ctx: MigrationContext, kind: str, label: str, error: Exception) -> None:
        self.db.rollback()
        ctx.skipped[kind] += 1
        entities_skipped_total.labels(kind=kind).inc()
        logger.warning(f"⚠️ Skipping {label}: {error}")

    def _seed_existing(self, ctx: MigrationContext, kind: EntityKind) -> int:
        model: Any = {
            EntityKind.GROUP: GroupRow,
            EntityKind.USER: UserRow,
            EntityKind.TAG: TagRow,
            EntityKind.DISCUSSION: DiscussionRow,
        }[kind]
        return ctx.mapper.seed(kind, self.db.repo(model).ids())

    # =========================================================================
    # Phases
    # =========================================================================

    def _migrate_groups(self, ctx: MigrationContext) -> None:
        logger.info("🚀 Migrating groups")
        protected = ctx.protected_group_max_id

        self.db.repo(GroupUserLink).delete_where(col(GroupUserLink.group_id) > protected)
        removed = self.db.repo(GroupRow).delete_where(col(GroupRow.id) > protected)
        logger.debug(f"Removed {removed} existing groups")
        self._seed_existing(ctx, EntityKind.GROUP)

        transformer = GroupTransformer(ctx)
        for group in ctx.source.fetch_groups():
            if self._guarded(ctx, "groups", f"group {group.gid}", transformer.transform, group):
                ctx.count("groups")

        logger.info(f"✅ Groups migrated: {ctx.counts['groups']}")

    def _migrate_users(self, ctx: MigrationContext) -> None:
        logger.info("🚀 Migrating users")
        protected = ctx.protected_user_max_id

        self.db.repo(GroupUserLink).delete_where(col(GroupUserLink.user_id) > protected)
        removed = self.db.repo(UserRow).delete_where(col(UserRow.id) > protected)
        logger.debug(f"Removed {removed} existing users")
        self._seed_existing(ctx, EntityKind.USER)

        avatars = None
        if ctx.options.migrate_avatars:
            if ctx.legacy_path is None:
                logger.warning("⚠️ Avatars requested but no legacy path configured")
            else:
                avatars = AvatarMigrator(ctx.storage, ctx.legacy_path)

        transformer = UserTransformer(ctx, avatars=avatars)
        for user in ctx.source.fetch_users():
            if self._guarded(ctx, "users", f"user {user.uid}", transformer.transform, user):
                ctx.count("users")

        logger.info(f"✅ Users migrated: {ctx.counts['users']}")

    def _migrate_categories(self, ctx: MigrationContext) -> None:
        logger.info("🚀 Migrating categories")

        self.db.repo(DiscussionTagLink).delete_where()
        removed = self.db.repo(TagRow).delete_where()
        logger.debug(f"Removed {removed} existing tags")

        transformer = TagTransformer(ctx)
        for forum in ctx.source.fetch_forums():
            if self._guarded(ctx, "categories", f"forum {forum.fid}", transformer.transform, forum):
                ctx.count("categories")

        linked = transformer.link_parents()
        logger.info(f"✅ Categories migrated: {ctx.counts['categories']} ({linked} nested)")

    def _clear_discussions(self) -> None:
        if self.db.has_upload_tables():
            self.db.repo(FilePostLink).delete_where()
            self.db.repo(FileRow).delete_where()
        self.db.repo(DiscussionTagLink).delete_where()
        self.db.repo(PostRow).delete_where()
        removed = self.db.repo(DiscussionRow).delete_where()
        logger.debug(f"Removed {removed} existing discussions")

    def _migrate_discussions(self, ctx: MigrationContext) -> None:
        logger.info("🚀 Migrating discussions")
        self._clear_discussions()

        attachments = None
        if ctx.uploads is not None and ctx.legacy_path is not None:
            attachments = AttachmentMigrator(ctx.storage, ctx.uploads, ctx.store, ctx.legacy_path)

        discussions = DiscussionTransformer(ctx)
        posts = PostTransformer(ctx, attachments=attachments)

        threads = ctx.source.fetch_threads(include_soft_deleted=ctx.options.migrate_soft_deleted_threads)

        with tqdm(threads, desc="Migrating discussions", unit=" threads", disable=not self.show_progress) as pbar:
            for thread in pbar:
                if ctx.token.cancelled:
                    break

                set_run_context(entity=f"thread:{thread.tid}")
                self._migrate_thread(ctx, thread, discussions, posts)

                pbar.set_postfix(posts=ctx.counts["posts"], attachments=ctx.counts["attachments"])

        # Authors of everything written so far, cancelled or not
        for user_id in sorted(ctx.users_to_refresh):
            self._guarded(ctx, "users", f"counters of user {user_id}", ctx.aggregates.refresh_user, user_id)

        ctx.token.raise_if_cancelled()
        logger.info(
            f"✅ Discussions migrated: {ctx.counts['discussions']} "
            f"({ctx.counts['posts']} posts, {ctx.counts['attachments']} attachments)"
        )

    def _migrate_thread(
        self,
        ctx: MigrationContext,
        thread: LegacyThread,
        discussions: DiscussionTransformer,
        posts: PostTransformer,
    ) -> None:
        """Migrate one thread with all of its posts, then refresh its counters."""
        discussion = self._guarded(ctx, "discussions", f"thread {thread.tid}", discussions.transform, thread)
        if discussion is None or discussion.id is None:
            return
        ctx.count("discussions")

        legacy_posts = ctx.source.fetch_posts(
            thread.tid,
            include_soft_deleted=ctx.options.migrate_soft_deleted_posts,
        )

        for number, legacy_post in enumerate(legacy_posts, start=1):
            post = self._guarded(
                ctx, "posts", f"post {legacy_post.pid}", posts.transform, legacy_post, discussion.id, number
            )
            if post is None:
                continue
            ctx.count("posts")

            if posts.attachments is None:
                continue

            for attachment in ctx.source.fetch_attachments(legacy_post.pid):
                file = self._guarded(
                    ctx, "attachments", f"attachment {attachment.aid}", posts.transform_attachment, attachment, post
                )
                if file is not None:
                    ctx.count("attachments")

        self._guarded(
            ctx, "discussions", f"counters of thread {thread.tid}", ctx.aggregates.refresh_discussion, discussion.id
        )


__all__ = [
    "COUNT_KINDS",
    "CancellationToken",
    "MigrationContext",
    "MigrationPipeline",
    "MigrationResult",
    "PipelineState",
]
