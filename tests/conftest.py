"""Pytest configuration and shared fixtures for mybb2flarum tests."""

import os
import sys
import tempfile

# Settings are read at import time, so the profile must be set first
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATA_DIR"] = tempfile.mkdtemp(prefix="mybb2flarum-tests-")

from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from loguru import logger
from sqlalchemy import create_engine, text

from mybb2flarum.assets import LocalFileStorage
from mybb2flarum.config import MigrationOptions
from mybb2flarum.database import DatabaseManager
from mybb2flarum.models import GroupRow, UserRow
from mybb2flarum.pipeline import MigrationPipeline
from mybb2flarum.source import SourceReader

FORUM_URL = "https://forum.test"


# =============================================================================
# Test Configuration
# =============================================================================


@pytest.fixture(scope="function", autouse=True)
def reset_loguru():
    """Reset loguru handlers before each test to prevent I/O errors."""
    logger.remove()
    logger.add(
        sys.stderr,
        level="ERROR",
        format="{time} {level} {message}",
        catch=True,
        enqueue=True,
    )
    yield
    logger.remove()


# =============================================================================
# Legacy (MyBB) Database
# =============================================================================

LEGACY_SCHEMA = [
    """CREATE TABLE mybb_usergroups (
        gid INTEGER PRIMARY KEY, type INTEGER NOT NULL DEFAULT 2, title TEXT NOT NULL
    )""",
    """CREATE TABLE mybb_users (
        uid INTEGER PRIMARY KEY, username TEXT NOT NULL, email TEXT NOT NULL DEFAULT '',
        postnum INTEGER DEFAULT 0, threadnum INTEGER DEFAULT 0,
        regdate INTEGER DEFAULT 0, lastvisit INTEGER DEFAULT 0,
        usergroup INTEGER DEFAULT 2, additionalgroups TEXT DEFAULT '',
        avatar TEXT DEFAULT '', password TEXT DEFAULT ''
    )""",
    """CREATE TABLE mybb_forums (
        fid INTEGER PRIMARY KEY, name TEXT NOT NULL, description TEXT DEFAULT '',
        linkto TEXT DEFAULT '', disporder INTEGER DEFAULT 1, pid INTEGER DEFAULT 0
    )""",
    """CREATE TABLE mybb_threads (
        tid INTEGER PRIMARY KEY, fid INTEGER NOT NULL, subject TEXT NOT NULL,
        dateline INTEGER DEFAULT 0, uid INTEGER DEFAULT 0, firstpost INTEGER DEFAULT 0,
        lastpost INTEGER DEFAULT 0, lastposteruid INTEGER DEFAULT 0,
        closed TEXT DEFAULT '', sticky INTEGER DEFAULT 0, visible INTEGER DEFAULT 1
    )""",
    """CREATE TABLE mybb_posts (
        pid INTEGER PRIMARY KEY, tid INTEGER NOT NULL, dateline INTEGER DEFAULT 0,
        uid INTEGER DEFAULT 0, message TEXT DEFAULT '', visible INTEGER DEFAULT 1
    )""",
    """CREATE TABLE mybb_attachments (
        aid INTEGER PRIMARY KEY, pid INTEGER NOT NULL, uid INTEGER DEFAULT 0,
        attachname TEXT NOT NULL, filename TEXT NOT NULL,
        filetype TEXT DEFAULT 'application/octet-stream', filesize INTEGER DEFAULT 0
    )""",
]

LEGACY_ROWS: dict[str, list[dict[str, Any]]] = {
    "mybb_usergroups": [
        {"gid": 1, "type": 1, "title": "Guests"},
        {"gid": 2, "type": 1, "title": "Registered"},
        {"gid": 4, "type": 1, "title": "Administrators"},
        {"gid": 8, "type": 2, "title": "Moderators Team"},
        {"gid": 9, "type": 2, "title": "VIP"},
        {"gid": 10, "type": 2, "title": "Beta Testers"},
    ],
    "mybb_users": [
        {"uid": 1, "username": "admin", "email": "admin@example.com", "usergroup": 4},
        {
            "uid": 2,
            "username": "alice",
            "email": "Alice@Example.COM",
            "postnum": 40,
            "threadnum": 4,
            "regdate": 1600000000,
            "lastvisit": 1700000000,
            "usergroup": 2,
            "additionalgroups": "8,9,x",
            "avatar": "./uploads/avatars/avatar_2.png?dateline=1700000000",
            "password": "5f4dcc3b5aa765d61d8327deb882cf99",
        },
        {
            "uid": 3,
            "username": "bob",
            "email": "bob@example.com",
            "regdate": 1600000100,
            "usergroup": 9,
            "avatar": "https://www.gravatar.com/avatar/abc?s=100",
        },
        {
            "uid": 4,
            "username": "carol",
            "email": "carol@example.com",
            "regdate": 1600000200,
            "usergroup": 10,
            "additionalgroups": "4,10",
            "avatar": "./uploads/avatars/missing.png",
        },
    ],
    "mybb_forums": [
        {"fid": 1, "name": "Community", "disporder": 1, "pid": 0},
        {"fid": 10, "name": "General", "description": "Talk about anything", "disporder": 1, "pid": 1},
        {"fid": 11, "name": "General", "disporder": 2, "pid": 10},
        {"fid": 12, "name": "Our Website", "linkto": "https://example.com", "disporder": 3, "pid": 1},
        {"fid": 13, "name": "Announcements", "disporder": 2, "pid": 0},
    ],
    "mybb_threads": [
        {
            "tid": 1,
            "fid": 10,
            "subject": "Hello",
            "dateline": 1650000000,
            "uid": 2,
            "closed": "1",
            "sticky": 1,
            "visible": 1,
        },
        {
            "tid": 2,
            "fid": 11,
            "subject": "Nested thread",
            "dateline": 1650000500,
            "uid": 3,
            "closed": "moved|5",
            "visible": 1,
        },
        {
            "tid": 3,
            "fid": 13,
            "subject": "Removed thread",
            "dateline": 1650001000,
            "uid": 2,
            "visible": -1,
        },
    ],
    "mybb_posts": [
        {"pid": 1, "tid": 1, "dateline": 1650000000, "uid": 2, "message": "First!", "visible": 1},
        {"pid": 2, "tid": 1, "dateline": 1650000100, "uid": 3, "message": "Spam", "visible": -1},
        {"pid": 3, "tid": 1, "dateline": 1650000200, "uid": 4, "message": "Welcome", "visible": 1},
        {"pid": 4, "tid": 2, "dateline": 1650000500, "uid": 3, "message": "Deep down", "visible": 1},
        {"pid": 5, "tid": 2, "dateline": 1650000600, "uid": 0, "message": "Guest reply", "visible": 1},
        {"pid": 6, "tid": 3, "dateline": 1650001000, "uid": 2, "message": "Gone", "visible": 1},
    ],
    "mybb_attachments": [
        {
            "aid": 1,
            "pid": 1,
            "uid": 2,
            "attachname": "post_2_abc.attach",
            "filename": "Résumé (final).pdf",
            "filetype": "application/pdf",
            "filesize": 2048,
        },
        {
            "aid": 2,
            "pid": 3,
            "uid": 4,
            "attachname": "post_4_img.attach",
            "filename": "photo 1.png",
            "filetype": "image/png",
            "filesize": 100,
        },
        {
            "aid": 3,
            "pid": 4,
            "uid": 3,
            "attachname": "missing.attach",
            "filename": "lost.zip",
            "filetype": "application/zip",
            "filesize": 10,
        },
    ],
}


def insert_legacy_rows(url: str, table: str, rows: list[dict[str, Any]]) -> None:
    """Insert rows into a legacy table."""
    engine = create_engine(url)
    with engine.begin() as conn:
        for row in rows:
            columns = ", ".join(row)
            params = ", ".join(f":{key}" for key in row)
            conn.execute(text(f"INSERT INTO {table} ({columns}) VALUES ({params})"), row)
    engine.dispose()


@pytest.fixture
def legacy_url(tmp_path: Path) -> str:
    """SQLite database with the MyBB schema and seed rows."""
    url = f"sqlite:///{tmp_path / 'mybb.db'}"
    engine = create_engine(url)
    with engine.begin() as conn:
        for statement in LEGACY_SCHEMA:
            conn.execute(text(statement))
    engine.dispose()

    for table, rows in LEGACY_ROWS.items():
        insert_legacy_rows(url, table, rows)

    return url


@pytest.fixture
def add_legacy_rows(legacy_url: str) -> Callable[[str, list[dict[str, Any]]], None]:
    """Insert extra rows into the legacy fixture database."""

    def _add(table: str, rows: list[dict[str, Any]]) -> None:
        insert_legacy_rows(legacy_url, table, rows)

    return _add


@pytest.fixture
def legacy_path(tmp_path: Path) -> Path:
    """Legacy install directory with avatar and attachment files."""
    root = tmp_path / "mybb"
    (root / "uploads" / "avatars").mkdir(parents=True)
    (root / "uploads" / "avatars" / "avatar_2.png").write_bytes(b"\x89PNG avatar")
    (root / "uploads" / "post_2_abc.attach").write_bytes(b"%PDF-1.4 resume")
    (root / "uploads" / "post_4_img.attach").write_bytes(b"\x89PNG photo")
    return root


@pytest.fixture
def source(legacy_url: str) -> Generator[SourceReader, None, None]:
    """Connected reader for the legacy fixture database."""
    reader = SourceReader(legacy_url, prefix="mybb_", retries=1)
    reader.connect()
    yield reader
    reader.close()


# =============================================================================
# Target (Flarum) Database
# =============================================================================


@pytest.fixture
def target_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'flarum.db'}"


@pytest.fixture
def target_db(target_url: str) -> Generator[DatabaseManager, None, None]:
    """Target database with core and upload tables plus the default install rows."""
    db = DatabaseManager(target_url)
    db.initialize(with_uploads=True)

    groups = db.repo(GroupRow)
    for gid, name in [(1, "Admin"), (2, "Guest"), (3, "Member"), (4, "Mod")]:
        groups.create(GroupRow(id=gid, name_singular=name, name_plural=f"{name}s"))
    db.repo(UserRow).create(
        UserRow(id=1, username="root", email="root@forum.test", is_email_confirmed=True)
    )

    yield db

    db.close()


@pytest.fixture
def public_dir(tmp_path: Path) -> Path:
    path = tmp_path / "public"
    path.mkdir()
    return path


@pytest.fixture
def storage(public_dir: Path) -> LocalFileStorage:
    return LocalFileStorage(public_dir, FORUM_URL)


@pytest.fixture
def make_pipeline(
    legacy_url: str,
    legacy_path: Path,
    target_db: DatabaseManager,
    storage: LocalFileStorage,
) -> Callable[..., MigrationPipeline]:
    """Factory for pipelines wired to the fixture databases."""

    def _make(**flags: bool) -> MigrationPipeline:
        return MigrationPipeline(
            source=SourceReader(legacy_url, prefix="mybb_", retries=1),
            db=target_db,
            options=MigrationOptions(**flags),
            storage=storage,
            legacy_path=legacy_path,
            color_seed=42,
            show_progress=False,
        )

    return _make
