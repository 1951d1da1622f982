"""Identifier mapping between legacy and target entities.

Legacy ids are preserved 1:1, so most lookups are identity lookups, but
every cross-reference goes through the mapper so an entity that was never
migrated resolves to ``None`` instead of a dangling id.

Example:
    >>> from mybb2flarum.mapper import EntityKind, IdentifierMapper
    >>> mapper = IdentifierMapper()
    >>> mapper.record(EntityKind.USER, 12, 12)
    >>> mapper.lookup(EntityKind.USER, 12)
    12
    >>> mapper.lookup(EntityKind.USER, 99) is None
    True
"""

from collections.abc import Iterable
from enum import StrEnum


class EntityKind(StrEnum):
    """Kinds of entities carried between the two schemas."""

    GROUP = "group"
    USER = "user"
    TAG = "tag"
    DISCUSSION = "discussion"
    POST = "post"


class IdentifierMapper:
    """In-memory ``(kind, source_id) -> dest_id`` map for one run."""

    def __init__(self) -> None:
        self._maps: dict[EntityKind, dict[int, int]] = {kind: {} for kind in EntityKind}

    def record(self, kind: EntityKind, source_id: int, dest_id: int) -> None:
        """Remember where a legacy entity ended up."""
        self._maps[kind][source_id] = dest_id

    def lookup(self, kind: EntityKind, source_id: int | None) -> int | None:
        """Target id of a legacy entity, or None when it was not migrated."""
        if source_id is None:
            return None
        return self._maps[kind].get(source_id)

    def contains(self, kind: EntityKind, source_id: int) -> bool:
        return source_id in self._maps[kind]

    def seed(self, kind: EntityKind, ids: Iterable[int]) -> int:
        """Register entities that already exist in the target under the same id.

        Used for protected system rows and for phases disabled in this run.

        Returns:
            Number of ids added
        """
        added = 0
        for entity_id in ids:
            if entity_id not in self._maps[kind]:
                self._maps[kind][entity_id] = entity_id
                added += 1
        return added

    def count(self, kind: EntityKind) -> int:
        return len(self._maps[kind])

    def clear(self, kind: EntityKind | None = None) -> None:
        """Forget one kind, or everything when no kind is given."""
        kinds = [kind] if kind is not None else list(EntityKind)
        for k in kinds:
            self._maps[k].clear()


__all__ = ["EntityKind", "IdentifierMapper"]
