"""Prometheus metrics collection and export.

This module provides Prometheus instrumentation for migration runs.

Metric Types:
    Counters (always increase):
        - entities_migrated_total: Entities written to the target by kind
        - entities_skipped_total: Rows skipped after a row-level failure by kind
        - asset_copy_failures_total: Avatar and attachment files that could not be copied
        - migration_runs_total: Finished runs by final state

    Gauges (can go up or down):
        - migration_phase_active: 1 while a phase is running
        - last_successful_run_timestamp: Unix time of the last run that reached DONE

    Histograms (track distributions):
        - phase_duration_seconds: Wall time of each phase

Usage:
    ```python
    from mybb2flarum.metrics import entities_migrated_total

    entities_migrated_total.labels(kind="users").inc()
    ```

    Metrics of a batch run are written as a text file for the node exporter
    textfile collector:

    ```python
    from mybb2flarum.metrics import write_metrics_file

    write_metrics_file(Path("/var/lib/node_exporter/mybb2flarum.prom"))
    ```

References:
    - Prometheus Python Client: https://github.com/prometheus/client_python
    - Metric Types: https://prometheus.io/docs/tutorials/understanding_metric_types/
"""

from __future__ import annotations

from pathlib import Path

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from mybb2flarum.logging import logger

# Custom registry for explicit metric control
# This avoids default process/platform metrics unless explicitly added
registry = CollectorRegistry()

# Phases range from sub-second (groups) to hours (discussions)
PHASE_DURATION_BUCKETS = (
    0.1,
    0.5,
    1.0,
    5.0,
    30.0,
    60.0,
    300.0,
    900.0,
    3600.0,
    14400.0,
)


# ========== COUNTER METRICS (always increase) ==========

entities_migrated_total = Counter(
    "entities_migrated_total",
    "Total number of entities written to the target forum",
    labelnames=["kind"],
    registry=registry,
)
"""Counter for migrated entities.

Labels:
    kind: Entity kind (groups, users, categories, discussions, posts, attachments)
"""

entities_skipped_total = Counter(
    "entities_skipped_total",
    "Total number of legacy rows skipped after a row-level failure",
    labelnames=["kind"],
    registry=registry,
)

asset_copy_failures_total = Counter(
    "asset_copy_failures_total",
    "Total number of asset files that could not be copied",
    labelnames=["asset"],
    registry=registry,
)
"""Counter for failed file copies.

Labels:
    asset: "avatar" or "attachment"
"""

migration_runs_total = Counter(
    "migration_runs_total",
    "Total number of migration runs",
    labelnames=["status"],
    registry=registry,
)
"""Counter for finished runs.

Labels:
    status: Final pipeline state (done, failed, cancelled)
"""


# ========== GAUGE METRICS (can go up or down) ==========

migration_phase_active = Gauge(
    "migration_phase_active",
    "Whether a migration phase is currently running",
    labelnames=["phase"],
    registry=registry,
)

last_successful_run_timestamp = Gauge(
    "last_successful_run_timestamp",
    "Unix timestamp of the last migration run that completed",
    registry=registry,
)


# ========== HISTOGRAM METRICS (track distributions) ==========

phase_duration_seconds = Histogram(
    "phase_duration_seconds",
    "Wall time of a migration phase",
    labelnames=["phase"],
    buckets=PHASE_DURATION_BUCKETS,
    registry=registry,
)
"""Histogram for phase durations.

Example:
    ```python
    with phase_duration_seconds.labels(phase="users").time():
        migrate_users()
    ```
"""


# ========== HELPER FUNCTIONS ==========


def generate_metrics_output() -> bytes:
    """Generate Prometheus metrics output in text format.

    Returns:
        Metrics output as bytes

    Note:
        This uses the custom registry, so only explicitly registered metrics are included.
    """
    return generate_latest(registry)


def write_metrics_file(path: Path) -> None:
    """Write the current metrics in exposition format.

    Args:
        path: Destination file, parent directories are created
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(generate_metrics_output())
    logger.debug(f"Metrics written to {path}")


def sample_value(name: str, labels: dict[str, str] | None = None) -> float:
    """Current value of one sample in the registry, 0.0 when absent.

    Example:
        >>> sample_value("entities_migrated_total", {"kind": "users"})
        0.0
    """
    value = registry.get_sample_value(name, labels or {})
    return value if value is not None else 0.0


# Export public API
__all__ = [
    # Registry
    "registry",
    # Counters
    "entities_migrated_total",
    "entities_skipped_total",
    "asset_copy_failures_total",
    "migration_runs_total",
    # Gauges
    "migration_phase_active",
    "last_successful_run_timestamp",
    # Histograms
    "phase_duration_seconds",
    # Helpers
    "generate_metrics_output",
    "write_metrics_file",
    "sample_value",
    "PHASE_DURATION_BUCKETS",
]
