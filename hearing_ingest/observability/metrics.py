"""Run metrics collection and reporting.

Provides the RunMetrics dataclass, the StageTimer context manager for
measuring pipeline stage durations, and log_run_metrics() for emitting a
single structured JSON line per run to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class RunMetrics:
    """Everything measured for one orchestrator run."""

    run_id: str
    region: str
    source: str
    executor: str
    status: str
    items_discovered: int
    items_processed: int
    items_failed: int
    items_skipped: int
    stuck_items_reset: int
    queue_size: int
    wall_time_seconds: float
    stage_durations: dict[str, float] = field(default_factory=dict)
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of a run phase.

    Usage:
        timer = StageTimer("discovery")
        with timer:
            do_work()
        print(timer.duration_seconds)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)


def log_run_metrics(metrics: RunMetrics) -> None:
    """Emit run metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated RunMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "run_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry))
