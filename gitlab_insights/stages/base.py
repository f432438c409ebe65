"""
Shared plumbing for pipeline stages.

A stage is a named function from a StageContext to a list of report
records. Project-level stages go through ``run_per_project`` so one
project's failure becomes a default record instead of failing the stage.
"""

from __future__ import annotations

import base64
import binascii
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Type, TypeVar
from urllib.parse import quote

from ..ci_parser import CIProfile, parse_ci_content
from ..config import InsightsConfig
from ..gitlab_client import GitLabClient
from ..reports import ProjectRecord, ProjectReport, ReportRecord
from ..scoring import ScoringPolicy
from ..utils import ProgressTracker, lookback_cutoff, now_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R", bound=ProjectRecord)


@dataclass(frozen=True)
class Stage:
    """Definition of one pipeline stage."""
    name: str
    title: str
    compute: Callable[["StageContext"], List[ReportRecord]]
    record_type: Type[ReportRecord]
    requires_security: bool = False
    extended: bool = False


@dataclass
class StageContext:
    """Everything a stage computation may use."""
    client: GitLabClient
    config: InsightsConfig
    policy: ScoringPolicy
    projects: List[ProjectReport] = field(default_factory=list)
    results: Dict[str, List[ReportRecord]] = field(default_factory=dict)
    progress: Optional[ProgressTracker] = None
    now: datetime = field(default_factory=now_utc)
    _cache: Dict[tuple, Any] = field(default_factory=dict, repr=False)
    _lock: Lock = field(default_factory=Lock, repr=False)

    @property
    def cutoff(self) -> str:
        """Start of the lookback window as an ISO8601 timestamp."""
        return lookback_cutoff(self.config.lookback_days, self.now)

    @property
    def page_budget(self) -> int:
        """Page ceiling for per-project list calls."""
        return min(self.config.max_pages, 10)

    def output(self, stage: str) -> List[Any]:
        """Records produced by an earlier stage; empty if it was skipped or absent."""
        return self.results.get(stage) or []

    def by_project(self, stage: str) -> Dict[int, Any]:
        """Earlier stage output indexed by project id."""
        return {
            record.project_id: record
            for record in self.output(stage)
            if isinstance(record, ProjectRecord)
        }

    def _cached(self, key: tuple, loader: Callable[[], T]) -> T:
        with self._lock:
            if key in self._cache:
                return self._cache[key]
        value = loader()
        with self._lock:
            self._cache[key] = value
        return value

    def root_files(self, project: ProjectReport) -> List[str]:
        """Names of files and directories at the repository root."""
        def load() -> List[str]:
            if not project.default_branch:
                return []
            ref = quote(project.default_branch, safe="")
            entries = self.client.request(
                f"/projects/{project.project_id}/repository/tree?ref={ref}&per_page=100"
            )
            return [entry.get("name", "") for entry in entries if isinstance(entry, dict)]
        return self._cached(("tree", project.project_id), load)

    def ci_profile(self, project: ProjectReport) -> CIProfile:
        """Parsed .gitlab-ci.yml of the default branch."""
        def load() -> CIProfile:
            if not project.default_branch:
                return CIProfile()
            ref = quote(project.default_branch, safe="")
            data = self.client.get_one(
                f"/projects/{project.project_id}/repository/files/.gitlab-ci.yml?ref={ref}"
            )
            return parse_ci_content(decode_file_content(data))
        return self._cached(("ci", project.project_id), load)

    def merged_merge_requests(self, project: ProjectReport) -> List[Dict[str, Any]]:
        """Merge requests merged (or updated while merged) inside the window."""
        def load() -> List[Dict[str, Any]]:
            if not project.merge_requests_enabled:
                return []
            return self.client.request(
                f"/projects/{project.project_id}/merge_requests"
                f"?state=merged&updated_after={self.cutoff}&scope=all",
                all_pages=True,
                per_page=self.config.per_page,
                max_pages=self.page_budget,
            )
        return self._cached(("merged_mrs", project.project_id), load)


def decode_file_content(data: Optional[Dict[str, Any]]) -> str:
    """Decode the ``content`` of a repository files API response."""
    if not data:
        return ""
    content = data.get("content") or ""
    if data.get("encoding") == "base64":
        try:
            return base64.b64decode(content).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            return ""
    return content


def run_isolated(
    ctx: StageContext,
    stage: str,
    items: Sequence[Any],
    compute: Callable[[Any], T],
    default: Callable[[Any], T],
    describe: Callable[[Any], str] = str,
) -> List[T]:
    """
    Apply ``compute`` to each item, replacing failures with ``default(item)``.

    Output order always matches input order. With ``max_workers > 1`` the
    items are processed on a thread pool; all API calls still share the
    client's rate limiter.
    """
    def safe(item: Any) -> T:
        try:
            return compute(item)
        except Exception as e:
            logger.warning(
                f"{stage}: failed for {describe(item)}: {e}; using defaults",
                extra={"stage": stage},
            )
            return default(item)

    total = len(items)
    if ctx.config.max_workers > 1 and total > 1:
        with ThreadPoolExecutor(max_workers=ctx.config.max_workers) as executor:
            return _collect(ctx, stage, executor.map(safe, items), total)
    return _collect(ctx, stage, map(safe, items), total)


def _collect(ctx: StageContext, stage: str, results: Iterable[T], total: int) -> List[T]:
    """Gather results in input order, reporting progress as each one arrives."""
    collected = []
    for done, result in enumerate(results, 1):
        collected.append(result)
        if ctx.progress is not None:
            ctx.progress.project_progress(stage, done, total)
    return collected


def run_per_project(
    ctx: StageContext,
    stage: str,
    record_type: Type[R],
    compute: Callable[[ProjectReport], R],
) -> List[R]:
    """Compute one record per project, in project order."""
    return run_isolated(
        ctx,
        stage,
        ctx.projects,
        compute,
        default=record_type.default_for,
        describe=lambda project: project.project_name,
    )
