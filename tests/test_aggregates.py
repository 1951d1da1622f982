"""Unit tests for aggregate recomputation."""

from datetime import datetime, timezone

import pytest

from mybb2flarum.aggregates import AggregateEngine
from mybb2flarum.models import DiscussionRow, PostRow, UserRow

HIDDEN = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def discussion(target_db):
    """Discussion with posts by users 2, 3 (hidden), 2 and a guest."""
    users = target_db.repo(UserRow)
    users.create(UserRow(id=2, username="alice", email="alice@example.com"))
    users.create(UserRow(id=3, username="bob", email="bob@example.com"))

    target_db.repo(DiscussionRow).create(DiscussionRow(id=1, title="Hello", slug="hello", user_id=2))
    posts = target_db.repo(PostRow)
    for number, user_id, hidden_at in [(1, 2, None), (2, 3, HIDDEN), (3, 2, None), (4, None, None)]:
        posts.create(
            PostRow(
                discussion_id=1,
                number=number,
                user_id=user_id,
                created_at=datetime(2022, 4, 15, 5, number),
                content=f"post {number}",
                hidden_at=hidden_at,
            )
        )
    return target_db.repo(DiscussionRow).get(1)


class TestRefreshDiscussion:
    def test_counts_visible_posts(self, target_db, discussion):
        refreshed = AggregateEngine(target_db).refresh_discussion(1)

        assert refreshed.comment_count == 3
        assert refreshed.participant_count == 1
        assert refreshed.last_post_number == 4
        assert refreshed.last_posted_user_id is None

    def test_first_and_last_post(self, target_db, discussion):
        refreshed = AggregateEngine(target_db).refresh_discussion(1)
        posts = {p.number: p for p in target_db.repo(PostRow).find_by(discussion_id=1)}

        assert refreshed.first_post_id == posts[1].id
        assert refreshed.last_post_id == posts[4].id
        assert refreshed.last_posted_at == posts[4].created_at

    def test_hidden_last_post_ignored(self, target_db, discussion):
        """Test a hidden trailing post does not become the last post."""
        posts = target_db.repo(PostRow)
        last = posts.find_by(discussion_id=1, number=4)[0]
        last.hidden_at = HIDDEN
        posts.update(last)

        refreshed = AggregateEngine(target_db).refresh_discussion(1)

        assert refreshed.last_post_number == 3
        assert refreshed.last_posted_user_id == 2
        assert refreshed.comment_count == 2

    def test_all_hidden(self, target_db, discussion):
        posts = target_db.repo(PostRow)
        for post in posts.find_by(discussion_id=1):
            post.hidden_at = HIDDEN
            posts.update(post)

        refreshed = AggregateEngine(target_db).refresh_discussion(1)
        first = posts.find_by(discussion_id=1, number=1)[0]

        assert refreshed.comment_count == 0
        assert refreshed.participant_count == 0
        assert refreshed.first_post_id == first.id
        assert refreshed.last_post_id is None

    def test_unknown_discussion(self, target_db):
        assert AggregateEngine(target_db).refresh_discussion(404) is None


class TestRefreshUser:
    def test_refresh_user(self, target_db, discussion):
        engine = AggregateEngine(target_db)

        alice = engine.refresh_user(2)
        bob = engine.refresh_user(3)

        assert alice.comment_count == 2
        assert alice.discussion_count == 1
        assert bob.comment_count == 0
        assert bob.discussion_count == 0

    def test_refresh_users_ignores_unknown(self, target_db, discussion):
        assert AggregateEngine(target_db).refresh_users([2, 3, 3, 404]) == 2
