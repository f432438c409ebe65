"""Project collection: list projects and enrich them with activity counts."""

from __future__ import annotations

import logging
from typing import List
from urllib.parse import quote

from ..reports import ProjectReport
from ..scoring import calculate_health_score, grade_for
from ..utils import days_since, safe_ratio
from .base import StageContext, run_per_project

logger = logging.getLogger(__name__)

STAGE = "projects"


def list_projects(ctx: StageContext) -> List[ProjectReport]:
    """Fetch the project list for the configured scope."""
    if ctx.config.group:
        group = quote(ctx.config.group, safe="")
        endpoint = (
            f"/groups/{group}/projects?include_subgroups=true&statistics=true"
            f"&order_by=last_activity_at&sort=desc"
        )
    else:
        endpoint = "/projects?statistics=true&order_by=last_activity_at&sort=desc"

    raw_projects = ctx.client.request(
        endpoint,
        all_pages=True,
        per_page=ctx.config.per_page,
        max_pages=ctx.config.max_pages,
    )
    projects = [ProjectReport.from_api(raw) for raw in raw_projects if isinstance(raw, dict) and raw.get("id")]
    if ctx.config.max_projects and len(projects) > ctx.config.max_projects:
        logger.info(f"Limiting analysis to {ctx.config.max_projects} of {len(projects)} projects")
        projects = projects[: ctx.config.max_projects]
    logger.info(f"Found {len(projects)} projects")
    return projects


def enrich_project(ctx: StageContext, project: ProjectReport) -> ProjectReport:
    """Add window activity counts and the health score to one project."""
    client = ctx.client
    pid = project.project_id
    cutoff = ctx.cutoff

    if project.default_branch:
        project.commits_count = client.count(f"/projects/{pid}/repository/commits?since={cutoff}")
        project.contributors_count = len(
            client.request(
                f"/projects/{pid}/repository/contributors",
                all_pages=True,
                per_page=ctx.config.per_page,
                max_pages=ctx.page_budget,
            )
        )
    else:
        project.commits_count = 0

    if project.merge_requests_enabled:
        project.merge_requests_opened = client.count(
            f"/projects/{pid}/merge_requests?created_after={cutoff}&scope=all"
        )
        project.merge_requests_merged = client.count(
            f"/projects/{pid}/merge_requests?state=merged&updated_after={cutoff}&scope=all"
        )

    if project.jobs_enabled:
        project.pipelines_total = client.count(f"/projects/{pid}/pipelines?updated_after={cutoff}")
        if project.pipelines_total:
            project.pipelines_succeeded = client.count(
                f"/projects/{pid}/pipelines?updated_after={cutoff}&status=success"
            )
    project.pipeline_success_rate = round(safe_ratio(project.pipelines_succeeded, project.pipelines_total), 3)

    project.health_score = calculate_health_score(
        commits=project.commits_count,
        pipeline_success_rate=project.pipeline_success_rate,
        pipelines_total=project.pipelines_total,
        merge_requests_merged=project.merge_requests_merged,
        contributors=project.contributors_count,
        has_description=bool(project.description),
        days_since_activity=days_since(project.last_activity_at, ctx.now),
        archived=project.archived,
        policy=ctx.policy,
    )
    project.health_grade = grade_for(project.health_score)
    return project


def collect_projects(ctx: StageContext) -> List[ProjectReport]:
    ctx.projects = list_projects(ctx)
    return run_per_project(ctx, STAGE, ProjectReport, lambda project: enrich_project(ctx, project))
