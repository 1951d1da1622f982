"""Tag hierarchy resolution.

Legacy forums nest arbitrarily deep. A migrated discussion is attached to
its forum's tag and to every ancestor of that tag, so that it shows up when
browsing any level of the hierarchy.

Parent links and ancestry are always read from the target store, which
makes the walk work for tags created by an earlier run as well.

Example:
    >>> resolver = TagResolver(db)
    >>> resolver.link_parents([(11, 10), (12, 11)])
    2
    >>> resolver.ancestry(12)
    [12, 11, 10]
"""

from collections.abc import Iterable

from mybb2flarum.exceptions import TagCycleDetected
from mybb2flarum.interfaces import IDataStore
from mybb2flarum.logging import logger
from mybb2flarum.models import DiscussionTagLink, TagRow


class TagResolver:
    """Walks and links the tag hierarchy stored in the target.

    Args:
        store: Target data store
    """

    def __init__(self, store: IDataStore):
        self.store = store

    def ancestry(self, tag_id: int) -> list[int]:
        """Tag ids from a leaf up to its root, leaf first.

        The walk stops at a tag without parent or at a parent that does not
        exist. A missing leaf gives an empty chain.

        Args:
            tag_id: Leaf tag id

        Returns:
            ``[leaf, parent, ..., root]``

        Raises:
            TagCycleDetected: When the walk visits more tags than the store holds
        """
        tags = self.store.repo(TagRow)
        bound = tags.count()

        chain: list[int] = []
        current = tags.get(tag_id)
        while current is not None:
            node_id = int(current.id or 0)
            if node_id in chain or len(chain) >= bound:
                raise TagCycleDetected(tag_id, chain + [node_id])
            chain.append(node_id)

            if not current.parent_id:
                break
            current = tags.get(current.parent_id)

        return chain

    def attach_discussion(self, discussion_id: int, tag_id: int) -> list[int]:
        """Link a discussion to a tag and all of its ancestors.

        The chain is resolved before anything is written, so a cycle leaves
        the discussion without tags rather than partially tagged.

        Args:
            discussion_id: Target discussion id
            tag_id: Leaf tag id

        Returns:
            Tag ids the discussion is now linked to

        Raises:
            TagCycleDetected: When the tag hierarchy contains a cycle
        """
        chain = self.ancestry(tag_id)

        links = self.store.repo(DiscussionTagLink)
        existing = {link.tag_id for link in links.find_by(discussion_id=discussion_id)}
        for ancestor_id in chain:
            if ancestor_id not in existing:
                links.create(DiscussionTagLink(discussion_id=discussion_id, tag_id=ancestor_id))

        return chain

    def link_parents(self, pairs: Iterable[tuple[int, int]]) -> int:
        """Set ``parent_id`` on already created tags.

        Args:
            pairs: ``(tag_id, parent_id)`` tuples; parent 0 means top-level

        Returns:
            Number of tags that received a parent
        """
        tags = self.store.repo(TagRow)
        linked = 0

        for tag_id, parent_id in pairs:
            if not parent_id:
                continue

            tag = tags.get(tag_id)
            if tag is None:
                continue

            if not tags.exists(parent_id):
                logger.warning(f"⚠️ Parent tag {parent_id} of tag {tag_id} was not migrated")
                continue

            tag.parent_id = parent_id
            tags.update(tag)
            linked += 1

        return linked


__all__ = ["TagResolver"]
