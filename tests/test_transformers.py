"""Unit tests for entity transformers."""

import random

import pytest

from mybb2flarum.config import MigrationOptions
from mybb2flarum.mapper import EntityKind, IdentifierMapper
from mybb2flarum.models import (
    DiscussionRow,
    DiscussionTagLink,
    GroupRow,
    GroupUserLink,
    LegacyForum,
    LegacyGroup,
    LegacyPost,
    LegacyThread,
    LegacyUser,
    TagRow,
    UserRow,
)
from mybb2flarum.pipeline import MigrationContext
from mybb2flarum.transformers import (
    DiscussionTransformer,
    GroupTransformer,
    PostTransformer,
    TagTransformer,
    UserTransformer,
    unique_slug,
)


@pytest.fixture
def make_ctx(source, target_db, storage, legacy_path):
    def _make(**flags) -> MigrationContext:
        return MigrationContext(
            source=source,
            store=target_db,
            options=MigrationOptions(**flags),
            mapper=IdentifierMapper(),
            storage=storage,
            legacy_path=legacy_path,
            rng=random.Random(42),
        )

    return _make


@pytest.fixture
def ctx(make_ctx):
    return make_ctx()


class TestGroupTransformer:
    def test_transform(self, ctx, target_db):
        created = GroupTransformer(ctx).transform(LegacyGroup(gid=8, title="Moderators"))

        assert created.id == 8
        assert created.color.startswith("#")
        assert target_db.repo(GroupRow).get(8).name_plural == "Moderators"
        assert ctx.mapper.lookup(EntityKind.GROUP, 8) == 8

    def test_colors_follow_seed(self, make_ctx):
        created = GroupTransformer(make_ctx()).transform(LegacyGroup(gid=8, title="A"))
        assert created.color == f"#{random.Random(42).randint(0, 0xFFFFFF):06x}"


class TestUserTransformer:
    def _seed_groups(self, ctx):
        transformer = GroupTransformer(ctx)
        for gid in (8, 9, 10):
            transformer.transform(LegacyGroup(gid=gid, title=f"G{gid}"))

    def test_group_ids(self, make_ctx):
        """Test reserved groups, malformed ids and duplicates are dropped."""
        ctx = make_ctx(migrate_with_user_groups=True)
        self._seed_groups(ctx)
        user = LegacyUser(uid=2, username="alice", usergroup=2, additionalgroups="8,9,x,9")

        assert UserTransformer(ctx).group_ids(user) == [8, 9]
        assert len(ctx.errors) == 1
        assert "user 2" in ctx.errors[0]

    def test_group_ids_unmigrated_group(self, make_ctx):
        ctx = make_ctx(migrate_with_user_groups=True)
        user = LegacyUser(uid=2, username="alice", usergroup=12)

        assert UserTransformer(ctx).group_ids(user) == []

    def test_transform_with_groups(self, make_ctx, target_db):
        ctx = make_ctx(migrate_with_user_groups=True)
        self._seed_groups(ctx)
        user = LegacyUser(uid=4, username="carol", email="carol@example.com", usergroup=10, additionalgroups="4,10")

        created = UserTransformer(ctx).transform(user)

        links = target_db.repo(GroupUserLink).find_by(user_id=4)
        assert created.id == 4
        assert created.is_email_confirmed
        assert [link.group_id for link in links] == [10]
        assert ctx.mapper.lookup(EntityKind.USER, 4) == 4

    def test_transform_without_groups(self, ctx, target_db):
        self._seed_groups(ctx)
        UserTransformer(ctx).transform(LegacyUser(uid=3, username="bob", email="bob@example.com", usergroup=9))

        assert target_db.repo(GroupUserLink).count() == 0
        assert target_db.repo(UserRow).get(3).username == "bob"


class TestTagTransformer:
    def test_duplicate_names_get_suffix(self, ctx):
        transformer = TagTransformer(ctx)

        first = transformer.transform(LegacyForum(fid=10, name="General"))
        second = transformer.transform(LegacyForum(fid=11, name="General", pid=10))
        third = transformer.transform(LegacyForum(fid=12, name="General"))

        assert (first.slug, second.slug, third.slug) == ("general", "general-1", "general-2")

    def test_link_forum_skipped(self, ctx, target_db):
        result = TagTransformer(ctx).transform(LegacyForum(fid=12, name="Our Website", linkto="https://example.com"))

        assert result is None
        assert target_db.repo(TagRow).count() == 0
        assert not ctx.mapper.contains(EntityKind.TAG, 12)

    def test_link_parents_after_creation(self, ctx, target_db):
        """Test children listed before their parent still get linked."""
        transformer = TagTransformer(ctx)
        transformer.transform(LegacyForum(fid=11, name="Child", pid=10))
        transformer.transform(LegacyForum(fid=10, name="Parent", pid=1))

        linked = transformer.link_parents()

        assert linked == 1
        assert target_db.repo(TagRow).get(11).parent_id == 10
        assert target_db.repo(TagRow).get(10).parent_id is None

    def test_suffix_already_taken(self, ctx, target_db):
        """Test a literal "General 1" does not block a later "General"."""
        transformer = TagTransformer(ctx)

        first = transformer.transform(LegacyForum(fid=20, name="General 1"))
        second = transformer.transform(LegacyForum(fid=21, name="General"))

        assert (first.slug, second.slug) == ("general-1", "general-2")
        assert target_db.repo(TagRow).ids() == [20, 21]
        assert ctx.mapper.lookup(EntityKind.TAG, 21) == 21

    def test_unique_slug_fallback(self, ctx):
        assert unique_slug(ctx.store, TagRow, "日本語", 42) == "42"


class TestDiscussionTransformer:
    @pytest.fixture
    def tagged_ctx(self, ctx):
        transformer = TagTransformer(ctx)
        transformer.transform(LegacyForum(fid=1, name="Community"))
        transformer.transform(LegacyForum(fid=10, name="General", pid=1))
        transformer.link_parents()
        ctx.mapper.record(EntityKind.USER, 2, 2)
        ctx.store.repo(UserRow).create(UserRow(id=2, username="alice", email="alice@example.com"))
        return ctx

    def test_transform(self, tagged_ctx, target_db):
        thread = LegacyThread(tid=1, fid=10, subject="Hello", uid=2, closed="1")

        created = DiscussionTransformer(tagged_ctx).transform(thread)

        tags = target_db.repo(DiscussionTagLink).find_by(discussion_id=1)
        assert created.slug == "hello"
        assert created.user_id == 2
        assert created.is_locked
        assert created.hidden_at is None
        assert sorted(link.tag_id for link in tags) == [1, 10]
        assert 2 in tagged_ctx.users_to_refresh

    def test_slugs_stay_unique(self, tagged_ctx, target_db):
        transformer = DiscussionTransformer(tagged_ctx)

        transformer.transform(LegacyThread(tid=50, fid=10, subject="Hello 1", uid=2))
        transformer.transform(LegacyThread(tid=51, fid=10, subject="Hello", uid=2))
        transformer.transform(LegacyThread(tid=52, fid=10, subject="Hello", uid=2))

        slugs = [target_db.repo(DiscussionRow).get(tid).slug for tid in (50, 51, 52)]
        assert slugs == ["hello-1", "hello-2", "hello-3"]

    def test_soft_deleted_hidden(self, tagged_ctx):
        thread = LegacyThread(tid=3, fid=10, subject="Removed", uid=2, visible=-1)

        created = DiscussionTransformer(tagged_ctx).transform(thread)

        assert created.hidden_at is not None

    def test_unknown_user_and_forum(self, tagged_ctx, target_db):
        thread = LegacyThread(tid=5, fid=99, subject="Orphan", uid=77)

        created = DiscussionTransformer(tagged_ctx).transform(thread)

        assert created.user_id is None
        assert target_db.repo(DiscussionTagLink).count() == 0

    def test_cycle_leaves_untagged(self, tagged_ctx, target_db):
        tags = target_db.repo(TagRow)
        root = tags.get(1)
        root.parent_id = 10
        tags.update(root)

        DiscussionTransformer(tagged_ctx).transform(LegacyThread(tid=1, fid=10, subject="Hello", uid=2))

        assert target_db.repo(DiscussionRow).get(1) is not None
        assert target_db.repo(DiscussionTagLink).count() == 0
        assert any("thread 1" in error for error in tagged_ctx.errors)


class TestPostTransformer:
    def test_transform(self, ctx, target_db):
        target_db.repo(DiscussionRow).create(DiscussionRow(id=1, title="Hello", slug="hello"))
        ctx.mapper.record(EntityKind.USER, 2, 2)
        transformer = PostTransformer(ctx)

        visible = transformer.transform(LegacyPost(pid=1, tid=1, uid=2, message="Hi"), 1, 1)
        hidden = transformer.transform(LegacyPost(pid=2, tid=1, uid=0, visible=-1), 1, 2)

        assert visible.user_id == 2
        assert visible.content == "Hi"
        assert visible.hidden_at is None
        assert hidden.user_id is None
        assert hidden.hidden_at is not None
        assert ctx.mapper.lookup(EntityKind.POST, 1) == visible.id
        assert ctx.users_to_refresh == {2}

    def test_attachments_disabled(self, ctx, target_db):
        assert PostTransformer(ctx).transform_attachment(object(), object()) is None  # type: ignore[arg-type]
