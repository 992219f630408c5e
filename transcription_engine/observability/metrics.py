"""Transcription metrics collection and reporting.

Provides AttemptMetrics for per-attempt observability data, StageTimer for
measuring provider call durations, and log_attempt_metrics() /
log_scheduler_run() for emitting metrics as structured JSON to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass
class AttemptMetrics:
    """Metrics collected for a single provider invocation."""

    recording_id: str
    provider: str
    attempt_number: int
    outcome: str
    completion_mode: str
    duration_ms: int
    audio_duration_seconds: float | None = None
    job_id: str | None = None
    retry_count: int = 0
    error_code: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of a stage.

    Captures start_time and end_time as UTC datetimes and the elapsed time
    from a monotonic clock.

    Usage:
        timer = StageTimer("transcribe")
        with timer:
            await engine.transcribe(...)
        print(timer.duration_ms)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self.failed = False
        self._mono_start: float = 0.0

    @property
    def duration_ms(self) -> int:
        return int(round(self.duration_seconds * 1000))

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)
        self.failed = exc_type is not None


def log_attempt_metrics(metrics: AttemptMetrics) -> None:
    """Emit attempt metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated AttemptMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "transcription_attempt",
        **asdict(metrics),
    }
    print(json.dumps(entry))


def log_scheduler_run(summary: dict[str, Any]) -> None:
    """Emit a retry sweep summary as a single structured JSON line."""
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "retry_sweep",
        **summary,
    }
    print(json.dumps(entry, default=str))
