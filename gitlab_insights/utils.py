"""
Utility functions for GitLab Insights.

Common helpers for time, JSON files and progress reporting.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlsplit


def now_utc() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Get current time as ISO8601 string in UTC."""
    return now_utc().isoformat()


def parse_iso(timestamp: str | None) -> datetime | None:
    """Parse a GitLab ISO8601 timestamp; None for missing or malformed values."""
    if not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def days_since(timestamp: str | None, now: datetime | None = None) -> int | None:
    """Whole days elapsed since a GitLab timestamp."""
    parsed = parse_iso(timestamp)
    if parsed is None:
        return None
    return max(0, ((now or now_utc()) - parsed).days)


def lookback_cutoff(days: int, now: datetime | None = None) -> str:
    """ISO8601 timestamp ``days`` before now, for ``*_after`` query params."""
    return ((now or now_utc()) - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")


def sanitize_host(instance_url: str) -> str:
    """
    Reduce an instance URL to a filesystem-safe host identifier.

    ``https://GitLab.Example.com:8443/`` becomes ``gitlab-example-com-8443``.
    """
    netloc = urlsplit(instance_url).netloc or instance_url
    netloc = netloc.rsplit("@", 1)[-1].lower()
    return re.sub(r"[^a-z0-9]+", "-", netloc).strip("-") or "gitlab"


def write_json(path: Path, data: Any, indent: int = 2) -> None:
    """
    Write data to a JSON file, replacing it in one step.

    The content goes to a sibling temp file first and is then moved over
    the target, so readers never see a half-written file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False, default=str)
    os.replace(tmp_path, path)


def read_json(path: Path) -> Any:
    """Read JSON file."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def safe_ratio(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning ``default`` when the denominator is zero."""
    if not denominator:
        return default
    return numerator / denominator


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


@dataclass
class ProgressUpdate:
    """Progress published after each stage transition."""
    step: int
    total: int
    stage: str
    status: str

    @property
    def percent(self) -> float:
        return round(100.0 * self.step / self.total, 1) if self.total else 100.0


class ProgressTracker:
    """Track and publish pipeline progress."""

    def __init__(self, total_steps: int = 0, callback: Callable[[ProgressUpdate], None] | None = None):
        self.total_steps = total_steps
        self.completed_steps = 0
        self.callback = callback
        self.logger = logging.getLogger("gitlab_insights.progress")

    def stage_finished(self, stage: str, status: str) -> ProgressUpdate:
        """Mark a stage as terminal and publish the update."""
        self.completed_steps += 1
        update = ProgressUpdate(self.completed_steps, self.total_steps, stage, status)
        self.logger.info(
            f"[{update.step}/{update.total}] {update.percent:.0f}% {stage}: {status}",
            extra={"stage": stage},
        )
        if self.callback is not None:
            self.callback(update)
        return update

    def project_progress(self, stage: str, done: int, total: int) -> None:
        """Log per-project progress inside a stage every 10 projects."""
        if done % 10 == 0 or done == total:
            self.logger.info(f"  {stage}: {done}/{total} projects", extra={"stage": stage})

    def summary(self) -> str:
        return f"Completed {self.completed_steps}/{self.total_steps} stages"
