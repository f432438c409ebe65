"""Lifecycle: project age, recency and release history."""

from __future__ import annotations

from typing import List

from ..reports import LifecycleReport, ProjectReport
from ..scoring import classify_lifecycle
from ..utils import days_since
from .base import StageContext, run_per_project

STAGE = "lifecycle"


def classify_project(ctx: StageContext, project: ProjectReport) -> LifecycleReport:
    age = days_since(project.created_at, ctx.now) or 0
    idle = days_since(project.last_activity_at, ctx.now)
    if idle is None:
        idle = age

    releases_endpoint = f"/projects/{project.project_id}/releases"
    latest = ctx.client.request(f"{releases_endpoint}?order_by=released_at&sort=desc&per_page=1")
    releases_count = ctx.client.count(releases_endpoint) if latest else 0
    latest_release_at = ""
    if latest and isinstance(latest[0], dict):
        latest_release_at = latest[0].get("released_at") or latest[0].get("created_at") or ""

    return LifecycleReport(
        project_id=project.project_id,
        project_name=project.project_name,
        age_days=age,
        days_since_activity=idle,
        releases_count=releases_count,
        latest_release_at=latest_release_at,
        lifecycle_stage=classify_lifecycle(project.archived, age, idle, ctx.policy),
    )


def compute_lifecycle(ctx: StageContext) -> List[LifecycleReport]:
    return run_per_project(ctx, STAGE, LifecycleReport, lambda project: classify_project(ctx, project))
