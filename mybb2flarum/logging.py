"""Logging setup using Loguru.

This module configures structured logging with:
- JSON output for production environments
- Context variables identifying the migration run and its current phase
- Custom serialization without Loguru's verbose defaults
- File rotation and compression

Example:
    >>> from mybb2flarum.logging import logger, set_run_context
    >>> set_run_context(run_id="3f2a", phase="users")
    >>> logger.info("Migrating users", total=120)
    >>> # JSON output includes run_id and phase automatically
"""

import json
import sys
import traceback
from contextvars import ContextVar
from pathlib import Path
from typing import Any

from loguru import logger as loguru_logger

from mybb2flarum.config import settings

# =============================================================================
# Context Variables for Run Tracking
# =============================================================================

run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)
phase_var: ContextVar[str | None] = ContextVar("phase", default=None)
entity_var: ContextVar[str | None] = ContextVar("entity", default=None)


# =============================================================================
# Custom JSON Serialization
# =============================================================================


def serialize(record: dict[str, Any]) -> str:
    """Custom JSON serializer for production logs.

    Includes context variables (run_id, phase, entity) when set.

    Args:
        record: Loguru log record dictionary

    Returns:
        JSON string with selected fields and context
    """
    subset = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["module"],
        "function": record["function"],
        "line": record["line"],
    }

    if run_id := run_id_var.get():
        subset["run_id"] = run_id
    if phase := phase_var.get():
        subset["phase"] = phase
    if entity := entity_var.get():
        subset["entity"] = entity

    subset.update(record["extra"])

    if exc := record["exception"]:
        subset["exception"] = {
            "type": exc.type.__name__ if exc.type else None,
            "value": str(exc.value),
            "traceback": traceback.format_exception(
                exc.type, exc.value, exc.traceback
            ),
        }

    return json.dumps(subset, default=str)


def patching(record: dict[str, Any]) -> None:
    """Patch log records with serialized JSON."""
    record["serialized"] = serialize(record)


def custom_formatter(record: dict[str, Any]) -> str:
    """Formatter emitting the pre-serialized JSON line."""
    return "{serialized}\n"


# =============================================================================
# Logger Configuration
# =============================================================================


def setup_logging(
    level: str = "INFO",
    json_logs: bool = False,
    log_file: Path | None = None,
    colorize: bool = True,
) -> Any:
    """Configure Loguru.

    Removes the default handler, adds a stdout handler (JSON or
    human-readable) and optionally a rotating, compressed file handler.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Output JSON format (True for production)
        log_file: Optional file path for log output
        colorize: Enable colored output for human-readable logs

    Returns:
        Configured Loguru logger instance
    """
    loguru_logger.remove()

    patched_logger = loguru_logger.patch(patching)

    if json_logs:
        patched_logger.add(
            sys.stdout,
            level=level,
            format=custom_formatter,
            serialize=False,
        )
    else:
        format_str = (
            "<green>{time:HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )

        patched_logger.add(
            sys.stdout,
            level=level,
            format=format_str,
            colorize=colorize,
        )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)

        patched_logger.add(
            log_file,
            level=level,
            format=custom_formatter if json_logs else "{time} | {level} | {message}",
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            enqueue=True,
        )

    return patched_logger


# =============================================================================
# Initialize Global Logger
# =============================================================================

logger = setup_logging(
    level=settings.log_level,
    json_logs=settings.log_json,
    log_file=settings.data_dir / "mybb2flarum.log" if settings.log_to_file else None,
    colorize=not settings.log_json,
)


# =============================================================================
# Utility Functions
# =============================================================================


def set_run_context(
    run_id: str | None = None,
    phase: str | None = None,
    entity: str | None = None,
) -> None:
    """Set context variables included in every subsequent log record.

    Args:
        run_id: Identifier of the migration run
        phase: Current migration phase (e.g., "users", "discussions")
        entity: Entity being processed (e.g., "thread:12")
    """
    if run_id is not None:
        run_id_var.set(run_id)
    if phase is not None:
        phase_var.set(phase)
    if entity is not None:
        entity_var.set(entity)


def clear_run_context() -> None:
    """Clear all run context variables."""
    run_id_var.set(None)
    phase_var.set(None)
    entity_var.set(None)


def get_run_context() -> dict[str, str | None]:
    """Get current context variable values.

    Example:
        >>> set_run_context(run_id="abc123")
        >>> get_run_context()["run_id"]
        'abc123'
    """
    return {
        "run_id": run_id_var.get(),
        "phase": phase_var.get(),
        "entity": entity_var.get(),
    }


__all__ = [
    "logger",
    "run_id_var",
    "phase_var",
    "entity_var",
    "set_run_context",
    "clear_run_context",
    "get_run_context",
    "setup_logging",
]
