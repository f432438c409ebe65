"""
Adoption barriers: what is holding each project back.

Derived entirely from earlier stage outputs; no API calls are made.
Barriers are listed in priority order, so the first one is the primary
barrier.
"""

from __future__ import annotations

from typing import List

from ..reports import AdoptionBarrierReport, ProjectReport
from ..scoring import barrier_severity
from .base import StageContext, run_per_project

STAGE = "adoption_barriers"


def find_barriers(ctx: StageContext, project: ProjectReport) -> AdoptionBarrierReport:
    pid = project.project_id
    policy = ctx.policy
    adoption = ctx.by_project("adoption").get(pid)
    maturity = ctx.by_project("devops_maturity").get(pid)
    security = ctx.by_project("security_scans").get(pid)
    quality = ctx.by_project("code_quality").get(pid)
    lifecycle = ctx.by_project("lifecycle").get(pid)

    barriers = []
    if security is not None and security.critical + security.high > 0:
        barriers.append("unresolved critical or high vulnerabilities")
    if project.pipelines_total == 0 and (maturity is None or not maturity.has_ci):
        barriers.append("no CI/CD pipelines")
    elif project.pipelines_total and project.pipeline_success_rate < policy.low_pipeline_success:
        barriers.append("unreliable pipelines")
    if maturity is not None and maturity.maturity_level <= policy.low_maturity_level:
        barriers.append("low DevOps maturity")
    if adoption is not None and adoption.adoption_score < policy.low_adoption_threshold:
        barriers.append("low feature adoption")
    if quality is not None and quality.merged_mrs and quality.review_rate < policy.low_review_rate:
        barriers.append("merge requests merged without review")
    if lifecycle is not None and lifecycle.lifecycle_stage == "dormant":
        barriers.append("dormant project")
    if project.contributors_count == 1:
        barriers.append("single contributor")

    return AdoptionBarrierReport(
        project_id=pid,
        project_name=project.project_name,
        barriers=barriers,
        barrier_count=len(barriers),
        primary_barrier=barriers[0] if barriers else "",
        severity=barrier_severity(len(barriers)),
        affected_users=project.contributors_count,
    )


def compute_barriers(ctx: StageContext) -> List[AdoptionBarrierReport]:
    return run_per_project(ctx, STAGE, AdoptionBarrierReport, lambda project: find_barriers(ctx, project))
