"""Data models for mybb2flarum.

This module defines both Pydantic validation models (for legacy MyBB rows)
and SQLModel ORM models (for the Flarum target tables).

Models are organized into three sections:
1. Pydantic models for legacy source rows
2. SQLModel tables for the target forum
3. Link tables for many-to-many relationships
"""

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from mybb2flarum.utils import parse_datetime, sanitize_filename

# =============================================================================
# Section 1: Pydantic Models for Legacy Rows
# =============================================================================


class LegacyGroup(BaseModel):
    """Custom MyBB user group (``usergroups.type = 2``).

    Attributes:
        gid: Group id
        title: Display title
    """

    model_config = ConfigDict(extra="ignore")

    gid: int
    title: str


class LegacyUser(BaseModel):
    """MyBB user account.

    Attributes:
        uid: User id
        username: Login name
        email: Email address, lower-cased
        postnum: Legacy post counter
        threadnum: Legacy thread counter
        regdate: Registration time (UTC)
        lastvisit: Last visit time (UTC)
        usergroup: Primary group id
        additionalgroups: Comma separated secondary group ids
        avatar: Avatar path relative to the legacy install, may carry a query string
        password: Legacy password hash
    """

    model_config = ConfigDict(extra="ignore")

    uid: int
    username: str
    email: str = ""
    postnum: int = 0
    threadnum: int = 0
    regdate: Optional[datetime] = None
    lastvisit: Optional[datetime] = None
    usergroup: int = 0
    additionalgroups: Optional[str] = None
    avatar: Optional[str] = None
    password: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _lower_email(cls, v: Optional[str]) -> str:
        return (v or "").strip().lower()

    @field_validator("regdate", "lastvisit", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("postnum", "threadnum", "usergroup", mode="before")
    @classmethod
    def _coerce_counter(cls, v: Any) -> int:
        return int(v or 0)


class LegacyForum(BaseModel):
    """MyBB forum or category.

    Attributes:
        fid: Forum id
        name: Forum name
        description: Forum description
        linkto: Redirect target; non-empty for link-only forums
        disporder: 1-based display order
        pid: Parent forum id, 0 for top-level
    """

    model_config = ConfigDict(extra="ignore")

    fid: int
    name: str
    description: Optional[str] = None
    linkto: Optional[str] = None
    disporder: int = 1
    pid: int = 0

    @field_validator("disporder", "pid", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> int:
        return int(v or 0)

    @property
    def is_link(self) -> bool:
        """Link-only forums only redirect and hold no content."""
        return bool(self.linkto and self.linkto.strip())


class LegacyThread(BaseModel):
    """MyBB thread.

    Attributes:
        tid: Thread id
        fid: Forum id
        subject: Thread title
        dateline: Creation time (UTC)
        uid: Starter user id, 0 for guests
        firstpost: Legacy first post id
        lastpost: Time of the last post (UTC)
        lastposteruid: Last poster user id
        closed: "1" when locked, "moved|<tid>" for redirects
        sticky: 1 when pinned
        visible: 1 visible, 0 unapproved, -1 soft-deleted
    """

    model_config = ConfigDict(extra="ignore")

    tid: int
    fid: int
    subject: str
    dateline: Optional[datetime] = None
    uid: int = 0
    firstpost: int = 0
    lastpost: Optional[datetime] = None
    lastposteruid: int = 0
    closed: str = ""
    sticky: int = 0
    visible: int = 1

    @field_validator("dateline", "lastpost", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("closed", mode="before")
    @classmethod
    def _coerce_closed(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @field_validator("uid", "firstpost", "lastposteruid", "sticky", "visible", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> int:
        return int(v or 0)

    @property
    def is_locked(self) -> bool:
        return self.closed == "1"

    @property
    def is_soft_deleted(self) -> bool:
        return self.visible == -1


class LegacyPost(BaseModel):
    """MyBB post.

    Attributes:
        pid: Post id
        tid: Thread id
        dateline: Creation time (UTC)
        uid: Author user id, 0 for guests
        message: Raw message body
        visible: 1 visible, 0 unapproved, -1 soft-deleted
    """

    model_config = ConfigDict(extra="ignore")

    pid: int
    tid: int
    dateline: Optional[datetime] = None
    uid: int = 0
    message: str = ""
    visible: int = 1

    @field_validator("dateline", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Optional[datetime]:
        return parse_datetime(v)

    @field_validator("message", mode="before")
    @classmethod
    def _coerce_message(cls, v: Optional[str]) -> str:
        return v or ""

    @field_validator("uid", "visible", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> int:
        return int(v or 0)

    @property
    def is_soft_deleted(self) -> bool:
        return self.visible == -1


class LegacyAttachment(BaseModel):
    """MyBB post attachment.

    Attributes:
        aid: Attachment id
        pid: Owning post id
        uid: Uploader user id
        attachname: Stored file name under ``uploads/``
        filename: Original file name
        filetype: MIME type
        filesize: Size in bytes
    """

    model_config = ConfigDict(extra="ignore")

    aid: int
    pid: int
    uid: int = 0
    attachname: str
    filename: str
    filetype: str = "application/octet-stream"
    filesize: int = 0

    @field_validator("filesize", "uid", mode="before")
    @classmethod
    def _coerce_int(cls, v: Any) -> int:
        return int(v or 0)

    @property
    def safe_filename(self) -> str:
        """File name usable as a storage path component."""
        return sanitize_filename(self.filename)

    @property
    def is_image(self) -> bool:
        return self.filetype.lower().startswith("image/")


# =============================================================================
# Section 2: SQLModel Tables for the Target Forum
# =============================================================================


class GroupRow(SQLModel, table=True):
    """Flarum user group.

    Attributes:
        id: Group id, preserved from the legacy gid
        name_singular: Singular display name
        name_plural: Plural display name
        color: ``#RRGGBB`` badge color
        icon: Optional icon class
        is_hidden: Hidden from user profiles
    """

    __tablename__ = "groups"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    name_singular: str
    name_plural: str
    color: Optional[str] = None
    icon: Optional[str] = None
    is_hidden: bool = False

    @classmethod
    def from_legacy(cls, group: LegacyGroup, color: str) -> "GroupRow":
        """Create GroupRow from a legacy group."""
        return cls(
            id=group.gid,
            name_singular=group.title,
            name_plural=group.title,
            color=color,
        )


class UserRow(SQLModel, table=True):
    """Flarum user.

    Attributes:
        id: User id, preserved from the legacy uid
        username: Unique user name
        email: Unique lower-cased email
        is_email_confirmed: Migrated users are activated
        password: Empty; the legacy hash lives in migratetoflarum_old_password
        joined_at: Registration time
        last_seen_at: Last visit time
        discussion_count: Started discussions
        comment_count: Written posts
        avatar_url: Avatar file name under assets/avatars
        migratetoflarum_old_password: JSON blob for lazy re-verification
    """

    __tablename__ = "users"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(unique=True, index=True)
    email: str = Field(unique=True, index=True)
    is_email_confirmed: bool = False
    password: str = ""
    joined_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    discussion_count: int = 0
    comment_count: int = 0
    avatar_url: Optional[str] = None
    migratetoflarum_old_password: Optional[str] = None

    @classmethod
    def from_legacy(cls, user: LegacyUser) -> "UserRow":
        """Create an activated UserRow from a legacy user."""
        old_password = None
        if user.password:
            old_password = json.dumps({"type": "bcrypt", "password": user.password})

        return cls(
            id=user.uid,
            username=user.username,
            email=user.email,
            is_email_confirmed=True,
            password="",
            joined_at=user.regdate,
            last_seen_at=user.lastvisit,
            discussion_count=user.threadnum,
            comment_count=user.postnum,
            migratetoflarum_old_password=old_password,
        )


class TagRow(SQLModel, table=True):
    """Flarum tag (migrated from a legacy forum).

    Attributes:
        id: Tag id, preserved from the legacy fid
        name: Tag name
        slug: Unique slug
        description: Description
        color: ``#RRGGBB`` color
        position: 0-based display position
        parent_id: Parent tag, None for top-level tags
    """

    __tablename__ = "tags"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    slug: str = Field(unique=True, index=True)
    description: Optional[str] = Field(default=None, sa_column=Column(Text))
    color: Optional[str] = None
    position: Optional[int] = None
    parent_id: Optional[int] = Field(default=None, foreign_key="tags.id", index=True)
    is_hidden: bool = False

    @classmethod
    def from_legacy(cls, forum: LegacyForum, slug: str, color: str) -> "TagRow":
        """Create TagRow from a legacy forum; the parent is linked later."""
        return cls(
            id=forum.fid,
            name=forum.name,
            slug=slug,
            description=forum.description,
            color=color,
            position=forum.disporder - 1,
        )


class DiscussionRow(SQLModel, table=True):
    """Flarum discussion (migrated from a legacy thread).

    Attributes:
        id: Discussion id, preserved from the legacy tid
        title: Title
        slug: Unique slug
        user_id: Starter, None when the legacy user was not migrated
        created_at: Creation time
        is_locked: Replies disabled
        is_sticky: Pinned
        hidden_at: Set when the legacy thread was soft-deleted
        comment_count: Visible posts
        participant_count: Distinct authors of visible posts
        first_post_id: First visible post
        last_post_id: Last visible post
        last_posted_at: Time of the last visible post
        last_posted_user_id: Author of the last visible post
        last_post_number: Number of the last visible post
    """

    __tablename__ = "discussions"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True)
    user_id: Optional[int] = Field(default=None, index=True)
    created_at: Optional[datetime] = None
    is_approved: bool = True
    is_locked: bool = False
    is_sticky: bool = False
    hidden_at: Optional[datetime] = None
    comment_count: int = 0
    participant_count: int = 0
    first_post_id: Optional[int] = None
    last_post_id: Optional[int] = None
    last_posted_at: Optional[datetime] = None
    last_posted_user_id: Optional[int] = None
    last_post_number: Optional[int] = None

    @classmethod
    def from_legacy(
        cls,
        thread: LegacyThread,
        slug: str,
        user_id: Optional[int],
        hidden_at: Optional[datetime],
    ) -> "DiscussionRow":
        """Create DiscussionRow from a legacy thread."""
        return cls(
            id=thread.tid,
            title=thread.subject,
            slug=slug,
            user_id=user_id,
            created_at=thread.dateline,
            is_approved=True,
            is_locked=thread.is_locked,
            is_sticky=bool(thread.sticky),
            hidden_at=hidden_at,
        )


class PostRow(SQLModel, table=True):
    """Flarum comment post.

    Attributes:
        id: Auto-increment post id
        discussion_id: Owning discussion
        number: 1-based position within the discussion
        created_at: Creation time
        user_id: Author, None for guests or unmigrated users
        type: Always "comment"
        content: Post body, carried verbatim
        hidden_at: Set when the legacy post was soft-deleted
    """

    __tablename__ = "posts"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("discussion_id", "number"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    discussion_id: int = Field(foreign_key="discussions.id", index=True)
    number: int
    created_at: Optional[datetime] = None
    user_id: Optional[int] = Field(default=None, index=True)
    type: str = "comment"
    content: str = Field(default="", sa_column=Column(Text))
    is_approved: bool = True
    hidden_at: Optional[datetime] = None

    @classmethod
    def from_legacy(
        cls,
        post: LegacyPost,
        discussion_id: int,
        number: int,
        user_id: Optional[int],
        hidden_at: Optional[datetime],
    ) -> "PostRow":
        """Create PostRow from a legacy post."""
        return cls(
            discussion_id=discussion_id,
            number=number,
            created_at=post.dateline,
            user_id=user_id,
            type="comment",
            content=post.message,
            is_approved=True,
            hidden_at=hidden_at,
        )


class FileRow(SQLModel, table=True):
    """Uploaded file registered with the attachment subsystem.

    Attributes:
        id: Auto-increment file id
        actor_id: Uploading user
        base_name: Sanitized file name
        path: Path relative to the files directory
        url: Public URL
        type: MIME type
        size: Size in bytes
        upload_method: Storage adapter, always "local"
        uuid: Public identifier
        tag: Presentation template ("image-preview" or "file")
        created_at: Registration time
    """

    __tablename__ = "fof_upload_files"  # type: ignore[assignment]

    id: Optional[int] = Field(default=None, primary_key=True)
    actor_id: Optional[int] = Field(default=None, index=True)
    base_name: str
    path: str
    url: str
    type: str
    size: int = 0
    upload_method: str = "local"
    uuid: str = Field(unique=True, index=True)
    tag: str = "file"
    created_at: Optional[datetime] = None


# =============================================================================
# Section 3: Link Tables for Many-to-Many Relationships
# =============================================================================


class GroupUserLink(SQLModel, table=True):
    """Link table between users and groups.

    Attributes:
        user_id: FK to users.id (part of composite PK)
        group_id: FK to groups.id (part of composite PK)
    """

    __tablename__ = "group_user"  # type: ignore[assignment]

    user_id: int = Field(primary_key=True, foreign_key="users.id")
    group_id: int = Field(primary_key=True, foreign_key="groups.id")


class DiscussionTagLink(SQLModel, table=True):
    """Link table between discussions and tags.

    Attributes:
        discussion_id: FK to discussions.id (part of composite PK)
        tag_id: FK to tags.id (part of composite PK)
    """

    __tablename__ = "discussion_tag"  # type: ignore[assignment]

    discussion_id: int = Field(primary_key=True, foreign_key="discussions.id")
    tag_id: int = Field(primary_key=True, foreign_key="tags.id")


class FilePostLink(SQLModel, table=True):
    """Link table between uploaded files and posts.

    Attributes:
        file_id: FK to fof_upload_files.id (part of composite PK)
        post_id: FK to posts.id (part of composite PK)
    """

    __tablename__ = "fof_upload_file_posts"  # type: ignore[assignment]

    file_id: int = Field(primary_key=True, foreign_key="fof_upload_files.id")
    post_id: int = Field(primary_key=True, foreign_key="posts.id")


CORE_MODELS: tuple[type[SQLModel], ...] = (
    GroupRow,
    UserRow,
    GroupUserLink,
    TagRow,
    DiscussionRow,
    DiscussionTagLink,
    PostRow,
)
"""Tables every target forum has."""

UPLOAD_MODELS: tuple[type[SQLModel], ...] = (FileRow, FilePostLink)
"""Tables present only when the attachment subsystem is installed."""
