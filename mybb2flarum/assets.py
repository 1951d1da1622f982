"""File asset migration: avatars and post attachments.

Files are copied from the legacy install into the target's public
directory. A file that cannot be copied never blocks the user or post it
belongs to; the failure is logged, counted and the entity is migrated
without it.

Attachments additionally need the target's upload subsystem (the
``fof_upload_files`` tables). It is probed once per run and injected as an
optional capability.

Layout under the target public directory::

    assets/avatars/<basename>
    assets/files/old/<pid><sanitized filename>
"""

import shutil
import uuid
from pathlib import Path, PurePosixPath

from mybb2flarum.exceptions import AssetCopyFailed
from mybb2flarum.interfaces import IDataStore, IFileStorage, IUploadSubsystem
from mybb2flarum.logging import logger
from mybb2flarum.metrics import asset_copy_failures_total
from mybb2flarum.models import FileRow, FilePostLink, LegacyAttachment, LegacyUser, PostRow, UPLOAD_MODELS
from mybb2flarum.utils import human_size, utc_now

AVATAR_DIR = "assets/avatars"
FILES_DIR = "assets/files"
LEGACY_FILES_SUBDIR = "old"


# =============================================================================
# File Storage
# =============================================================================


class LocalFileStorage:
    """File storage rooted at the target forum's public directory.

    Args:
        root: Public directory (assets live under ``root/assets``)
        base_url: Public URL the directory is served from

    Example:
        >>> storage = LocalFileStorage(Path("public"), "https://forum.example")
        >>> storage.url("assets/avatars/a.png")
        'https://forum.example/assets/avatars/a.png'
    """

    def __init__(self, root: Path, base_url: str):
        self.root = root
        self.base_url = base_url.rstrip("/")

    def copy_in(self, source: Path, relative_path: str) -> str:
        """Copy a file into storage, creating parent directories.

        Raises:
            AssetCopyFailed: When the source is missing or the copy fails
        """
        if not source.is_file():
            raise AssetCopyFailed(source, "file not found")

        destination = self.root / relative_path
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, destination)
        except OSError as e:
            raise AssetCopyFailed(source, str(e)) from e

        return relative_path

    def url(self, relative_path: str) -> str:
        return f"{self.base_url}/{relative_path.lstrip('/')}"

    def exists(self, relative_path: str) -> bool:
        return (self.root / relative_path).is_file()


# =============================================================================
# Avatars
# =============================================================================


class AvatarMigrator:
    """Copies legacy avatars into the target avatar directory.

    Args:
        storage: Target file storage
        legacy_path: Root directory of the legacy install
    """

    def __init__(self, storage: IFileStorage, legacy_path: Path):
        self.storage = storage
        self.legacy_path = legacy_path

    def migrate(self, user: LegacyUser) -> str | None:
        """Copy a user's avatar.

        Returns:
            Avatar file name to store on the user, or None when there is
            nothing to link
        """
        if not user.avatar:
            return None

        relative = user.avatar.split("?", 1)[0].strip()
        if not relative:
            return None

        if relative.startswith(("http://", "https://")):
            logger.debug(f"Skipping remote avatar of user {user.uid}: {relative}")
            return None

        basename = PurePosixPath(relative).name
        source = self.legacy_path / relative.lstrip("/")

        try:
            self.storage.copy_in(source, f"{AVATAR_DIR}/{basename}")
        except AssetCopyFailed as e:
            asset_copy_failures_total.labels(asset="avatar").inc()
            logger.warning(f"⚠️ Avatar of user {user.uid} not migrated: {e}")
            return None

        return basename


# =============================================================================
# Upload Subsystem
# =============================================================================


def render_preview(file: FileRow) -> str:
    """Markup the upload extension renders as an inline file.

    Images render as ``[upl-image-preview url=...]``, anything else as an
    ``[upl-file]`` download box.
    """
    if file.tag == "image-preview":
        return f"[upl-image-preview url={file.url}]"
    return f"[upl-file uuid={file.uuid} size={human_size(file.size)}]{file.base_name}[/upl-file]"


class UploadSubsystem:
    """Target attachment subsystem backed by the ``fof_upload_*`` tables.

    Args:
        store: Target data store
        storage: Target file storage, used to build public URLs
    """

    def __init__(self, store: IDataStore, storage: IFileStorage):
        self.store = store
        self.storage = storage

    def register(self, attachment: LegacyAttachment, path: str, actor_id: int | None) -> FileRow:
        """Create the file record of an already copied attachment.

        Args:
            attachment: Legacy attachment
            path: Path relative to ``assets/files``
            actor_id: Uploader, None when unknown
        """
        file = FileRow(
            actor_id=actor_id,
            base_name=attachment.safe_filename,
            path=path,
            url=self.storage.url(f"{FILES_DIR}/{path}"),
            type=attachment.filetype,
            size=attachment.filesize,
            upload_method="local",
            uuid=str(uuid.uuid4()),
            tag="image-preview" if attachment.is_image else "file",
            created_at=utc_now(),
        )
        return self.store.repo(FileRow).create(file)

    def link(self, file: FileRow, post: PostRow) -> None:
        links = self.store.repo(FilePostLink)
        if file.id is None or post.id is None or links.exists((file.id, post.id)):
            return
        links.create(FilePostLink(file_id=file.id, post_id=post.id))

    def render_preview(self, file: FileRow) -> str:
        return render_preview(file)


def probe_upload_subsystem(store: IDataStore, storage: IFileStorage) -> UploadSubsystem | None:
    """Upload subsystem of the target, or None when it is not installed."""
    for model in UPLOAD_MODELS:
        table = model.__tablename__  # type: ignore[attr-defined]
        if not store.has_table(table):
            logger.info(f"ℹ️ Upload subsystem not installed (missing table {table})")
            return None
    return UploadSubsystem(store, storage)


# =============================================================================
# Attachments
# =============================================================================


class AttachmentMigrator:
    """Copies legacy attachments and embeds them in their posts.

    Args:
        storage: Target file storage
        uploads: Upload subsystem of the target
        store: Target data store
        legacy_path: Root directory of the legacy install
    """

    def __init__(
        self,
        storage: IFileStorage,
        uploads: IUploadSubsystem,
        store: IDataStore,
        legacy_path: Path,
    ):
        self.storage = storage
        self.uploads = uploads
        self.store = store
        self.legacy_path = legacy_path

    def migrate(self, attachment: LegacyAttachment, post: PostRow, actor_id: int | None) -> FileRow | None:
        """Copy one attachment, register it and append its preview to the post.

        Returns:
            The registered file, or None when the copy failed
        """
        name = f"{attachment.pid}{attachment.safe_filename}"
        path = f"{LEGACY_FILES_SUBDIR}/{name}"
        source = self.legacy_path / "uploads" / attachment.attachname

        try:
            self.storage.copy_in(source, f"{FILES_DIR}/{path}")
        except AssetCopyFailed as e:
            asset_copy_failures_total.labels(asset="attachment").inc()
            logger.warning(f"⚠️ Attachment {attachment.aid} of post {attachment.pid} not migrated: {e}")
            return None

        file = self.uploads.register(attachment, path, actor_id)

        post.content = f"{post.content} {self.uploads.render_preview(file)}"
        self.store.repo(PostRow).update(post)

        self.uploads.link(file, post)
        return file


__all__ = [
    "AVATAR_DIR",
    "FILES_DIR",
    "AttachmentMigrator",
    "AvatarMigrator",
    "LocalFileStorage",
    "UploadSubsystem",
    "probe_upload_subsystem",
    "render_preview",
]
