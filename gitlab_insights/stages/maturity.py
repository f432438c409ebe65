"""DevOps maturity: CI, testing, scanning and delivery practices."""

from __future__ import annotations

from typing import List

from ..reports import DevOpsMaturityReport, ProjectReport
from ..scoring import calculate_maturity
from .base import StageContext, run_per_project

STAGE = "devops_maturity"


def assess_maturity(ctx: StageContext, project: ProjectReport) -> DevOpsMaturityReport:
    ci = ctx.ci_profile(project)

    security = ctx.by_project("security_scans").get(project.project_id)
    if security is not None:
        has_scanning = security.scanners_enabled > 0
    else:
        has_scanning = bool(ci.security_scanners)

    deployments = 0
    if project.jobs_enabled:
        deployments = ctx.client.count(
            f"/projects/{project.project_id}/deployments?updated_after={ctx.cutoff}&order_by=updated_at"
        )

    has_ci = ci.present or project.pipelines_total > 0
    score, level, label = calculate_maturity(
        has_ci=has_ci,
        has_automated_tests=ci.has_test_jobs,
        has_security_scanning=has_scanning,
        has_deployments=deployments > 0 or ci.has_deploy_jobs,
        deployments_in_window=deployments,
        pipeline_success_rate=project.pipeline_success_rate,
        lookback_days=ctx.config.lookback_days,
    )
    return DevOpsMaturityReport(
        project_id=project.project_id,
        project_name=project.project_name,
        has_ci=has_ci,
        has_automated_tests=ci.has_test_jobs,
        has_security_scanning=has_scanning,
        has_deployments=deployments > 0 or ci.has_deploy_jobs,
        deployments_in_window=deployments,
        pipeline_success_rate=project.pipeline_success_rate,
        maturity_score=score,
        maturity_level=level,
        maturity_label=label,
    )


def compute_maturity(ctx: StageContext) -> List[DevOpsMaturityReport]:
    return run_per_project(ctx, STAGE, DevOpsMaturityReport, lambda project: assess_maturity(ctx, project))
