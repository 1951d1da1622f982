"""
Exception classes for the MyBB to Flarum migration.
"""

from __future__ import annotations


class MigrationError(Exception):
    """Base exception for migration errors."""


class SourceUnavailable(MigrationError):
    """Raised when the legacy database connection cannot be established."""


class QueryError(MigrationError):
    """Raised when a query against the legacy database fails."""

    def __init__(self, table: str, message: str) -> None:
        super().__init__(f"Query on {table} failed: {message}")
        self.table = table


class AssetCopyFailed(MigrationError):
    """Raised when an avatar or attachment file cannot be copied."""

    def __init__(self, source: object, message: str) -> None:
        super().__init__(f"Could not copy {source}: {message}")
        self.source = source


class TagCycleDetected(MigrationError):
    """Raised when a tag ancestry walk exceeds the number of known tags."""

    def __init__(self, tag_id: int, visited: list[int]) -> None:
        chain = " -> ".join(str(v) for v in visited)
        super().__init__(f"Tag parent cycle starting at tag {tag_id}: {chain}")
        self.tag_id = tag_id
        self.visited = visited


class MalformedReference(MigrationError):
    """Raised when a legacy cross-reference (e.g. a group id) cannot be parsed."""


class MigrationCancelled(MigrationError):
    """Raised at a phase or discussion boundary after cancellation was requested."""
