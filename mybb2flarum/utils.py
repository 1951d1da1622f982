"""Utility functions for mybb2flarum.

This module provides common helper functions for timestamp handling, slugs,
file names, colors and parsing of legacy list fields.
"""

import random
import re
import unicodedata
from datetime import UTC, datetime

from dateutil import parser as dateutil_parser  # type: ignore[import-untyped]

from mybb2flarum.exceptions import MalformedReference


def parse_datetime(value: str | int | float | datetime | None) -> datetime | None:
    """Parse a legacy timestamp into a timezone-aware UTC datetime.

    MyBB stores timestamps as unix epoch seconds; string values are parsed as
    ISO8601. Zero and empty values mean "never".

    Args:
        value: Epoch seconds, ISO8601 string, datetime object, or None

    Returns:
        Timezone-aware datetime in UTC, or None

    Example:
        >>> parse_datetime(0) is None
        True
        >>> parse_datetime(1700000000).year
        2023
    """
    if value is None or value == "" or value == 0:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)

    if value.strip().lstrip("-").isdigit():
        return parse_datetime(int(value))

    dt = dateutil_parser.isoparse(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)

    return dt.astimezone(UTC)


def utc_now() -> datetime:
    """Get current UTC timestamp as timezone-aware datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO8601 string with 'Z' suffix.

    Example:
        >>> format_iso(datetime(2024, 1, 15, 10, 30, tzinfo=UTC))
        '2024-01-15T10:30:00Z'
    """
    if dt is None:
        return None
    return dt.isoformat().replace("+00:00", "Z")


def strip_accents(value: str) -> str:
    """Remove diacritics, keeping the base characters.

    Example:
        >>> strip_accents("Příliš žluťoučký")
        'Prilis zlutoucky'
    """
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def slugify(value: str) -> str:
    """Build a URL-safe slug.

    Example:
        >>> slugify("  Héllo, World! ")
        'hello-world'
    """
    ascii_value = strip_accents(value).encode("ascii", "ignore").decode("ascii")
    lowered = ascii_value.strip().lower()
    lowered = re.sub(r"[^a-z0-9]+", "-", lowered)
    return lowered.strip("-")


def suffix_slug(slug: str, existing: int) -> str:
    """Append ``-<existing>`` when other slugs already start with ``slug``.

    Example:
        >>> suffix_slug("general", 0)
        'general'
        >>> suffix_slug("general", 1)
        'general-1'
    """
    return f"{slug}-{existing}" if existing > 0 else slug


def sanitize_filename(filename: str) -> str:
    """Make an attachment file name safe to use as a path component.

    Accents and parentheses are stripped and spaces become underscores.

    Example:
        >>> sanitize_filename("Résumé (final) v2.pdf")
        'Resume_final_v2.pdf'
    """
    cleaned = strip_accents(filename)
    cleaned = cleaned.replace("(", "").replace(")", "").replace(" ", "_")
    return cleaned.replace("/", "_").replace("\\", "_")


def random_color(rng: random.Random) -> str:
    """Generate a ``#RRGGBB`` color from the given generator.

    Example:
        >>> len(random_color(random.Random(1)))
        7
    """
    return f"#{rng.randint(0, 0xFFFFFF):06x}"


def parse_id(value: str | int) -> int:
    """Parse one legacy id.

    Raises:
        MalformedReference: If the value is not a non-negative integer
    """
    text = str(value).strip()
    if not text.isdigit():
        raise MalformedReference(f"Not a valid id: {value!r}")
    return int(text)


def split_id_list(value: str | None) -> list[str]:
    """Split a comma separated legacy id list, dropping empty entries.

    Example:
        >>> split_id_list("8, 9,,x")
        ['8', '9', 'x']
    """
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def human_size(size: int) -> str:
    """Format a byte count for display.

    Example:
        >>> human_size(2048)
        '2.0 KB'
    """
    amount = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if amount < 1024 or unit == "GB":
            return f"{int(amount)} B" if unit == "B" else f"{amount:.1f} {unit}"
        amount /= 1024
    return f"{amount:.1f} GB"
