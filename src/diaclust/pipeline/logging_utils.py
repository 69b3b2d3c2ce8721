from __future__ import annotations

import logging
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import numpy as np


def make_json_safe(obj: Any) -> Any:
    """Recursively convert values into JSON-serialisable types."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, dict):
        return {str(key): make_json_safe(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [make_json_safe(value) for value in obj]
    return obj


@dataclass
class RunStats:
    run_id: str
    owner: str
    stage_timings_ms: dict[str, float] = field(default_factory=dict)
    stage_counts: dict[str, dict[str, int]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    config_snapshot: dict[str, Any] = field(default_factory=dict)

    def mark(self, stage: str, elapsed_ms: float, counts: dict[str, int] | None = None) -> None:
        self.stage_timings_ms[stage] = self.stage_timings_ms.get(stage, 0.0) + float(elapsed_ms)
        if counts:
            slot = self.stage_counts.setdefault(stage, {})
            for key, value in counts.items():
                slot[key] = slot.get(key, 0) + int(value)

    def to_dict(self) -> dict[str, Any]:
        return make_json_safe(
            {
                "run_id": self.run_id,
                "owner": self.owner,
                "stage_timings_ms": self.stage_timings_ms,
                "stage_counts": self.stage_counts,
                "warnings": self.warnings,
                "errors": self.errors,
                "failures": self.failures,
                "config_snapshot": self.config_snapshot,
            }
        )


def _fmt_hms_ms(milliseconds: float) -> str:
    """Return a human readable string with millisecond precision."""

    safe_ms = max(0.0, float(milliseconds))
    seconds = safe_ms / 1000.0
    base_seconds = int(seconds)
    fractional_ms = int(round((seconds - base_seconds) * 1000))

    if fractional_ms == 1000:
        base_seconds += 1
        fractional_ms = 0

    hours, remainder = divmod(base_seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    if minutes:
        return f"{minutes:02d}:{secs:02d}.{fractional_ms:03d}"
    return f"00:{secs:02d}.{fractional_ms:03d}"


class StageGuard(AbstractContextManager["StageGuard"]):
    """Time one pipeline stage, log its outcome and record it in ``RunStats``.

    Exceptions are recorded and always propagate; deciding whether a failure
    is recoverable belongs to the caller.
    """

    def __init__(self, log: logging.Logger, stats: RunStats, stage: str, **context: Any):
        self.log = log
        self.stats = stats
        self.stage = stage
        self.context = context
        self.start: float | None = None

    def __enter__(self) -> StageGuard:
        self.start = time.perf_counter()
        self.log.debug("[%s] start", self.stage)
        return self

    def done(self, **counts: int) -> None:
        if counts:
            self.stats.mark(self.stage, 0.0, counts)

    def __exit__(self, exc_type, exc, tb):  # type: ignore[override]
        if self.start is None:
            self.start = time.perf_counter()
        elapsed_ms = max(0.0, (time.perf_counter() - self.start) * 1000.0)
        self.stats.mark(self.stage, elapsed_ms)
        dur_txt = _fmt_hms_ms(elapsed_ms)
        if exc is None:
            self.log.info("[%s] ok in %s", self.stage, dur_txt)
            return False
        message = f"{self.stage}: {type(exc).__name__}: {exc}"
        self.log.error("[%s] %s: %s (%s)", self.stage, type(exc).__name__, exc, dur_txt)
        self.stats.errors.append(message)
        self.stats.failures.append(
            make_json_safe(
                {
                    "stage": self.stage,
                    "error": f"{type(exc).__name__}: {exc}",
                    "elapsed_ms": elapsed_ms,
                    **self.context,
                }
            )
        )
        return False


__all__ = ["RunStats", "StageGuard", "make_json_safe"]
