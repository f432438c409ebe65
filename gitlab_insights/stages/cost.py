"""Cost: CI minutes in the window and storage, priced by the scoring policy."""

from __future__ import annotations

from typing import List

from ..reports import CostReport, ProjectReport
from ..scoring import estimate_monthly_cost
from ..utils import parse_iso
from .base import StageContext, run_per_project

STAGE = "cost"


def estimate_project(ctx: StageContext, project: ProjectReport) -> CostReport:
    ci_jobs = 0
    ci_seconds = 0.0
    if project.jobs_enabled and project.pipelines_total:
        cutoff = parse_iso(ctx.cutoff)
        jobs = ctx.client.request(
            f"/projects/{project.project_id}/jobs",
            all_pages=True,
            per_page=ctx.config.per_page,
            max_pages=ctx.page_budget,
        )
        for job in jobs:
            if not isinstance(job, dict):
                continue
            created = parse_iso(job.get("created_at"))
            if created is None or created < cutoff:
                continue
            ci_jobs += 1
            duration = job.get("duration")
            if duration is None:
                ci_seconds += ctx.policy.default_job_minutes * 60
            else:
                ci_seconds += float(duration)

    ci_minutes = round(ci_seconds / 60, 1)
    compute_cost, storage_cost, total = estimate_monthly_cost(
        ci_minutes=ci_minutes,
        storage_mb=project.storage_size_mb,
        lookback_days=ctx.config.lookback_days,
        policy=ctx.policy,
    )
    return CostReport(
        project_id=project.project_id,
        project_name=project.project_name,
        storage_mb=project.storage_size_mb,
        artifacts_mb=project.job_artifacts_size_mb,
        ci_jobs=ci_jobs,
        ci_minutes=ci_minutes,
        compute_cost=compute_cost,
        storage_cost=storage_cost,
        estimated_monthly_cost=total,
    )


def compute_cost(ctx: StageContext) -> List[CostReport]:
    return run_per_project(ctx, STAGE, CostReport, lambda project: estimate_project(ctx, project))
