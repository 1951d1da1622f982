"""Protocol interfaces for dependency injection.

This module defines Protocol interfaces that decouple the migration engine
from the concrete legacy database, target store and file storage. Using
@runtime_checkable Protocol allows for structural subtyping without
requiring inheritance.

Key benefits:
- Easy testing with mock implementations
- Supports alternative implementations (e.g., object storage for files)
- Clear contracts for all major components

Example:
    >>> from mybb2flarum.interfaces import IFileStorage
    >>> class MemoryStorage:
    ...     def copy_in(self, source, relative_path):
    ...         return relative_path
    ...     def url(self, relative_path):
    ...         return f"memory://{relative_path}"
    ...     def exists(self, relative_path):
    ...         return False
    >>> isinstance(MemoryStorage(), IFileStorage)
    True
"""

from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from mybb2flarum.models import (
    FileRow,
    LegacyAttachment,
    LegacyForum,
    LegacyGroup,
    LegacyPost,
    LegacyThread,
    LegacyUser,
    PostRow,
)
from mybb2flarum.repository import Repository, T


@runtime_checkable
class ISourceReader(Protocol):
    """Legacy forum database reader.

    Implementations return validated legacy rows in a stable order and raise
    ``QueryError`` when the underlying query fails.
    """

    def connect(self) -> None:
        """Open the connection.

        Raises:
            SourceUnavailable: When the database cannot be reached
        """
        ...

    def close(self) -> None: ...

    def fetch_groups(self) -> list[LegacyGroup]: ...

    def fetch_users(self) -> list[LegacyUser]: ...

    def fetch_forums(self) -> list[LegacyForum]: ...

    def fetch_threads(self, include_soft_deleted: bool = False) -> list[LegacyThread]: ...

    def fetch_posts(self, thread_id: int, include_soft_deleted: bool = False) -> list[LegacyPost]:
        """Posts of one thread ordered by pid ascending."""
        ...

    def fetch_attachments(self, post_id: int) -> list[LegacyAttachment]: ...


@runtime_checkable
class IFileStorage(Protocol):
    """Target file storage.

    Paths are relative to the storage root, e.g. ``assets/avatars/a.png``.
    """

    def copy_in(self, source: Path, relative_path: str) -> str:
        """Copy a local file into storage.

        Args:
            source: Path of the file to copy
            relative_path: Destination relative to the storage root

        Returns:
            The relative path written

        Raises:
            AssetCopyFailed: When the file cannot be copied
        """
        ...

    def url(self, relative_path: str) -> str:
        """Public URL of a stored file."""
        ...

    def exists(self, relative_path: str) -> bool: ...


@runtime_checkable
class IUploadSubsystem(Protocol):
    """Attachment subsystem of the target forum.

    Only present when the target has the upload extension installed.
    """

    def register(self, attachment: LegacyAttachment, path: str, actor_id: int | None) -> FileRow:
        """Create the file record for a copied attachment."""
        ...

    def link(self, file: FileRow, post: PostRow) -> None:
        """Associate a registered file with the post it belongs to."""
        ...

    def render_preview(self, file: FileRow) -> str:
        """Markup embedding the file in post content."""
        ...


@runtime_checkable
class IDataStore(Protocol):
    """Generic target data store.

    ``DatabaseManager`` is the SQLModel implementation.
    """

    def repo(self, model: type[T]) -> Repository[T]: ...

    def rollback(self) -> None: ...

    def has_table(self, name: str) -> bool: ...

    def get_entity_counts(self) -> dict[str, Any]: ...


__all__ = [
    "IDataStore",
    "IFileStorage",
    "ISourceReader",
    "IUploadSubsystem",
]
