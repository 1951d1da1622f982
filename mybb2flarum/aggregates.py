"""Aggregate recomputation for denormalized forum counters.

Discussions and users carry counters and pointers (comment counts, first
and last post, participant count) that the target forum normally keeps up
to date as content is written. Bulk inserts bypass that, so the counters
are derived again from the detail rows once they are in place.

Hidden (soft-deleted) posts never count as comments, participants or last
posts.
"""

from collections.abc import Iterable

from sqlmodel import col

from mybb2flarum.interfaces import IDataStore
from mybb2flarum.models import DiscussionRow, PostRow, UserRow


class AggregateEngine:
    """Recomputes discussion and user aggregates from stored posts.

    Args:
        store: Target data store

    Example:
        >>> engine = AggregateEngine(db)
        >>> discussion = engine.refresh_discussion(1)
        >>> discussion.comment_count
        2
    """

    def __init__(self, store: IDataStore):
        self.store = store

    def refresh_discussion(self, discussion_id: int) -> DiscussionRow | None:
        """Recompute the counters and post pointers of one discussion.

        - first post: lowest-number visible post, or the lowest-number post
          when every post is hidden
        - comment_count: visible posts
        - participant_count: distinct known authors of visible posts
        - last post: highest-number visible post

        Args:
            discussion_id: Target discussion id

        Returns:
            The updated discussion, or None if it does not exist
        """
        discussions = self.store.repo(DiscussionRow)
        discussion = discussions.get(discussion_id)
        if discussion is None:
            return None

        posts = self.store.repo(PostRow).find_where(
            col(PostRow.discussion_id) == discussion_id,
            order_by=col(PostRow.number),
        )
        visible = [p for p in posts if p.hidden_at is None]

        first = visible[0] if visible else (posts[0] if posts else None)
        discussion.first_post_id = first.id if first else None

        discussion.comment_count = len(visible)
        discussion.participant_count = len({p.user_id for p in visible if p.user_id is not None})

        last = visible[-1] if visible else None
        discussion.last_post_id = last.id if last else None
        discussion.last_posted_at = last.created_at if last else None
        discussion.last_posted_user_id = last.user_id if last else None
        discussion.last_post_number = last.number if last else None

        return discussions.update(discussion)

    def refresh_user(self, user_id: int) -> UserRow | None:
        """Recompute the comment and discussion counters of one user.

        Returns:
            The updated user, or None for unknown ids
        """
        users = self.store.repo(UserRow)
        user = users.get(user_id)
        if user is None:
            return None

        user.comment_count = self.store.repo(PostRow).count(
            col(PostRow.user_id) == user_id,
            col(PostRow.hidden_at).is_(None),
        )
        user.discussion_count = self.store.repo(DiscussionRow).count(
            col(DiscussionRow.user_id) == user_id,
            col(DiscussionRow.hidden_at).is_(None),
        )

        return users.update(user)

    def refresh_users(self, user_ids: Iterable[int]) -> int:
        """Refresh several users, ignoring unknown ids.

        Returns:
            Number of users updated
        """
        return sum(1 for user_id in sorted(set(user_ids)) if self.refresh_user(user_id) is not None)


__all__ = ["AggregateEngine"]
