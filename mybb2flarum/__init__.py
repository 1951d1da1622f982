"""mybb2flarum - Migrate a MyBB forum into a Flarum database.

This package provides a dependency-ordered, re-runnable migration of groups,
users, forums, threads, posts and attachments from the MyBB schema into the
Flarum schema, preserving ids, timestamps and the forum hierarchy.

Example:
    >>> from mybb2flarum import MigrationOptions, MigrationPipeline
    >>>
    >>> pipeline = MigrationPipeline(options=MigrationOptions(migrate_avatars=True))
    >>> result = pipeline.run()
    >>> print(result.state, result.counts)
    >>> pipeline.close()
"""

__version__ = "0.1.0"

from mybb2flarum.config import MigrationOptions, settings
from mybb2flarum.database import DatabaseManager
from mybb2flarum.models import (
    DiscussionRow,
    GroupRow,
    LegacyForum,
    LegacyPost,
    LegacyThread,
    LegacyUser,
    PostRow,
    TagRow,
    UserRow,
)
from mybb2flarum.pipeline import MigrationPipeline, MigrationResult, PipelineState
from mybb2flarum.source import SourceReader

__all__ = [
    # Main components
    "MigrationPipeline",
    "MigrationResult",
    "PipelineState",
    "SourceReader",
    "DatabaseManager",
    # Configuration
    "settings",
    "MigrationOptions",
    # Pydantic models
    "LegacyUser",
    "LegacyForum",
    "LegacyThread",
    "LegacyPost",
    # SQLModel tables
    "GroupRow",
    "UserRow",
    "TagRow",
    "DiscussionRow",
    "PostRow",
]
