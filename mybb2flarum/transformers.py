"""Entity transformers: one legacy row in, one target entity out.

Each transformer builds the target row, fills in the derived fields
(colors, slugs, hidden timestamps, resolved owners), writes it through the
target store and records the new id in the identifier mapper. Phase loops,
row-level error handling and counters live in the pipeline.

Example:
    >>> transformer = TagTransformer(ctx)
    >>> for forum in ctx.source.fetch_forums():
    ...     transformer.transform(forum)
    >>> transformer.link_parents()
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlmodel import col

from mybb2flarum.assets import AttachmentMigrator, AvatarMigrator
from mybb2flarum.exceptions import MalformedReference, TagCycleDetected
from mybb2flarum.interfaces import IDataStore
from mybb2flarum.logging import logger
from mybb2flarum.mapper import EntityKind
from mybb2flarum.models import (
    DiscussionRow,
    FileRow,
    GroupRow,
    GroupUserLink,
    LegacyAttachment,
    LegacyForum,
    LegacyGroup,
    LegacyPost,
    LegacyThread,
    LegacyUser,
    PostRow,
    TagRow,
    UserRow,
)
from mybb2flarum.utils import parse_id, random_color, slugify, split_id_list, suffix_slug

if TYPE_CHECKING:
    from mybb2flarum.pipeline import MigrationContext


def unique_slug(store: IDataStore, model: Any, text: str, fallback: int) -> str:
    """Slug for ``text`` that does not collide with existing slugs of ``model``.

    Existing slugs starting with the candidate are counted and the count is
    appended, so a second "General" becomes ``general-1``. If that suffix is
    already taken (a forum literally named "General 1") the suffix is
    incremented until the slug is free. Text without any slug-able
    characters falls back to the entity id.

    Args:
        store: Target data store
        model: SQLModel table with a ``slug`` column
        text: Name or title to derive the slug from
        fallback: Entity id used when the text gives an empty slug

    Example:
        >>> unique_slug(db, TagRow, "General", 10)
        'general'
    """
    candidate = slugify(text) or str(fallback)
    repo = store.repo(model)
    existing = repo.count(col(model.slug).startswith(candidate))
    slug = suffix_slug(candidate, existing)
    while repo.count(col(model.slug) == slug) > 0:
        existing += 1
        slug = suffix_slug(candidate, existing)
    return slug


# =============================================================================
# Groups and Users
# =============================================================================


class GroupTransformer:
    """Legacy user group -> target group with the same id."""

    def __init__(self, ctx: MigrationContext):
        self.ctx = ctx

    def transform(self, group: LegacyGroup) -> GroupRow:
        row = GroupRow.from_legacy(group, color=random_color(self.ctx.rng))
        created = self.ctx.store.repo(GroupRow).create(row)
        self.ctx.mapper.record(EntityKind.GROUP, group.gid, int(created.id or group.gid))
        return created


class UserTransformer:
    """Legacy user -> activated target user, with avatar and groups.

    Args:
        ctx: Run context
        avatars: Avatar migrator, None when avatars are not migrated
    """

    def __init__(self, ctx: MigrationContext, avatars: AvatarMigrator | None = None):
        self.ctx = ctx
        self.avatars = avatars

    def transform(self, user: LegacyUser) -> UserRow:
        row = UserRow.from_legacy(user)
        if self.avatars is not None:
            row.avatar_url = self.avatars.migrate(user)

        created = self.ctx.store.repo(UserRow).create(row)
        user_id = int(created.id or user.uid)
        self.ctx.mapper.record(EntityKind.USER, user.uid, user_id)

        if self.ctx.options.migrate_with_user_groups:
            self.assign_groups(user_id, self.group_ids(user))

        return created

    def group_ids(self, user: LegacyUser) -> list[int]:
        """Target groups of a user: primary plus additional groups.

        Reserved built-in groups and groups that were not migrated are
        dropped. A malformed entry in the additional group list only skips
        that entry.
        """
        reserved = self.ctx.reserved_group_max_id
        candidates = [str(user.usergroup), *split_id_list(user.additionalgroups)]

        group_ids: list[int] = []
        for raw in candidates:
            try:
                gid = parse_id(raw)
            except MalformedReference as e:
                logger.warning(f"⚠️ User {user.uid}: {e}")
                self.ctx.errors.append(f"user {user.uid}: {e}")
                continue

            if gid <= reserved:
                continue

            target = self.ctx.mapper.lookup(EntityKind.GROUP, gid)
            if target is None or target in group_ids:
                continue
            group_ids.append(target)

        return group_ids

    def assign_groups(self, user_id: int, group_ids: list[int]) -> None:
        links = self.ctx.store.repo(GroupUserLink)
        for group_id in group_ids:
            if not links.exists((user_id, group_id)):
                links.create(GroupUserLink(user_id=user_id, group_id=group_id))


# =============================================================================
# Tags
# =============================================================================


class TagTransformer:
    """Legacy forum -> target tag.

    Tags are created without parents; :meth:`link_parents` connects them
    once every tag exists, so forum order does not matter.
    """

    def __init__(self, ctx: MigrationContext):
        self.ctx = ctx
        self.parents: list[tuple[int, int]] = []

    def transform(self, forum: LegacyForum) -> TagRow | None:
        """Create the tag, or return None for link-only forums."""
        if forum.is_link:
            logger.debug(f"Skipping link forum {forum.fid} ({forum.linkto})")
            return None

        slug = unique_slug(self.ctx.store, TagRow, forum.name, forum.fid)
        row = TagRow.from_legacy(forum, slug=slug, color=random_color(self.ctx.rng))
        created = self.ctx.store.repo(TagRow).create(row)
        self.ctx.mapper.record(EntityKind.TAG, forum.fid, int(created.id or forum.fid))

        if forum.pid:
            self.parents.append((forum.fid, forum.pid))

        return created

    def link_parents(self) -> int:
        """Attach every created tag to its parent tag.

        Returns:
            Number of tags linked to a parent
        """
        pairs: list[tuple[int, int]] = []
        for fid, pid in self.parents:
            tag_id = self.ctx.mapper.lookup(EntityKind.TAG, fid)
            parent_id = self.ctx.mapper.lookup(EntityKind.TAG, pid)
            if tag_id is None:
                continue
            if parent_id is None:
                logger.warning(f"⚠️ Parent forum {pid} of forum {fid} was not migrated")
                continue
            pairs.append((tag_id, parent_id))

        return self.ctx.resolver.link_parents(pairs)


# =============================================================================
# Discussions, Posts and Attachments
# =============================================================================


class DiscussionTransformer:
    """Legacy thread -> target discussion, tagged with its forum's ancestry."""

    def __init__(self, ctx: MigrationContext):
        self.ctx = ctx

    def transform(self, thread: LegacyThread) -> DiscussionRow:
        user_id = self.ctx.mapper.lookup(EntityKind.USER, thread.uid) if thread.uid else None
        hidden_at = self.ctx.now if thread.is_soft_deleted else None
        slug = unique_slug(self.ctx.store, DiscussionRow, thread.subject, thread.tid)

        row = DiscussionRow.from_legacy(thread, slug=slug, user_id=user_id, hidden_at=hidden_at)
        created = self.ctx.store.repo(DiscussionRow).create(row)
        discussion_id = int(created.id or thread.tid)
        self.ctx.mapper.record(EntityKind.DISCUSSION, thread.tid, discussion_id)

        if user_id is not None:
            self.ctx.users_to_refresh.add(user_id)

        self.attach_tags(discussion_id, thread)
        return created

    def attach_tags(self, discussion_id: int, thread: LegacyThread) -> list[int]:
        """Link the discussion to its forum's tag and every ancestor.

        A cycle in the tag hierarchy is logged and leaves the discussion
        untagged.
        """
        tag_id = self.ctx.mapper.lookup(EntityKind.TAG, thread.fid)
        if tag_id is None:
            logger.debug(f"Thread {thread.tid}: forum {thread.fid} has no tag")
            return []

        try:
            return self.ctx.resolver.attach_discussion(discussion_id, tag_id)
        except TagCycleDetected as e:
            logger.warning(f"⚠️ Thread {thread.tid} left untagged: {e}")
            self.ctx.errors.append(f"thread {thread.tid}: {e}")
            return []


class PostTransformer:
    """Legacy post -> target comment post, plus its attachments.

    Args:
        ctx: Run context
        attachments: Attachment migrator, None when attachments are not migrated
    """

    def __init__(self, ctx: MigrationContext, attachments: AttachmentMigrator | None = None):
        self.ctx = ctx
        self.attachments = attachments

    def transform(self, post: LegacyPost, discussion_id: int, number: int) -> PostRow:
        """Create the post.

        Args:
            post: Legacy post
            discussion_id: Target discussion id
            number: 1-based position within the discussion
        """
        user_id = self.ctx.mapper.lookup(EntityKind.USER, post.uid) if post.uid else None
        hidden_at = self.ctx.now if post.is_soft_deleted else None

        row = PostRow.from_legacy(
            post,
            discussion_id=discussion_id,
            number=number,
            user_id=user_id,
            hidden_at=hidden_at,
        )
        created = self.ctx.store.repo(PostRow).create(row)
        self.ctx.mapper.record(EntityKind.POST, post.pid, int(created.id or 0))

        if user_id is not None:
            self.ctx.users_to_refresh.add(user_id)

        return created

    def transform_attachment(self, attachment: LegacyAttachment, post: PostRow) -> FileRow | None:
        """Migrate one attachment of an already created post.

        Returns:
            The registered file, or None when attachments are off or the copy failed
        """
        if self.attachments is None:
            return None
        actor_id = self.ctx.mapper.lookup(EntityKind.USER, attachment.uid) if attachment.uid else None
        return self.attachments.migrate(attachment, post, actor_id)


__all__ = [
    "DiscussionTransformer",
    "GroupTransformer",
    "PostTransformer",
    "TagTransformer",
    "UserTransformer",
    "unique_slug",
]
