"""Adoption: which GitLab features each project actually uses."""

from __future__ import annotations

from typing import List

from ..reports import AdoptionReport, ProjectReport
from ..scoring import calculate_adoption_score
from .base import StageContext, run_per_project

STAGE = "adoption"


def _non_empty(ctx: StageContext, endpoint: str) -> bool:
    return bool(ctx.client.request(f"{endpoint}?per_page=1"))


def measure_project(ctx: StageContext, project: ProjectReport) -> AdoptionReport:
    pid = project.project_id
    business = ctx.by_project("business_alignment").get(pid)
    recent_issues = business.issues_in_window if business is not None else 0

    usage = {
        "uses_issues": project.issues_enabled and (project.open_issues_count > 0 or recent_issues > 0),
        "uses_merge_requests": project.merge_requests_opened > 0 or project.merge_requests_merged > 0,
        "uses_ci": project.pipelines_total > 0,
        "uses_wiki": project.wiki_enabled and _non_empty(ctx, f"/projects/{pid}/wikis"),
        "uses_container_registry": project.container_registry_enabled
        and _non_empty(ctx, f"/projects/{pid}/registry/repositories"),
        "uses_packages": project.packages_enabled and _non_empty(ctx, f"/projects/{pid}/packages"),
        "uses_environments": _non_empty(ctx, f"/projects/{pid}/environments"),
    }
    score, level = calculate_adoption_score(usage, ctx.policy)

    return AdoptionReport(
        project_id=pid,
        project_name=project.project_name,
        features_used=sum(1 for used in usage.values() if used),
        adoption_score=score,
        adoption_level=level,
        **usage,
    )


def compute_adoption(ctx: StageContext) -> List[AdoptionReport]:
    return run_per_project(ctx, STAGE, AdoptionReport, lambda project: measure_project(ctx, project))
