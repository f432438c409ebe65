"""Business alignment: planning metadata around a project's issues."""

from __future__ import annotations

from typing import List

from ..reports import BusinessAlignmentReport, ProjectReport
from ..scoring import calculate_alignment_score
from ..utils import safe_ratio
from .base import StageContext, run_per_project

STAGE = "business_alignment"


def align_project(ctx: StageContext, project: ProjectReport) -> BusinessAlignmentReport:
    milestones = 0
    issues: list = []
    if project.issues_enabled:
        milestones = ctx.client.count(f"/projects/{project.project_id}/milestones?state=active")
        issues = [
            issue for issue in ctx.client.request(
                f"/projects/{project.project_id}/issues?created_after={ctx.cutoff}&scope=all",
                all_pages=True,
                per_page=ctx.config.per_page,
                max_pages=ctx.page_budget,
            )
            if isinstance(issue, dict)
        ]

    labeled = sum(1 for issue in issues if issue.get("labels"))
    planned = sum(1 for issue in issues if issue.get("milestone"))

    report = BusinessAlignmentReport(
        project_id=project.project_id,
        project_name=project.project_name,
        has_description=bool(project.description.strip()),
        topics_count=len(project.topics),
        active_milestones=milestones,
        issues_in_window=len(issues),
        labeled_issue_ratio=round(safe_ratio(labeled, len(issues)), 3),
        milestone_issue_ratio=round(safe_ratio(planned, len(issues)), 3),
    )
    report.alignment_score = calculate_alignment_score(
        has_description=report.has_description,
        topics_count=report.topics_count,
        active_milestones=report.active_milestones,
        labeled_issue_ratio=report.labeled_issue_ratio,
        milestone_issue_ratio=report.milestone_issue_ratio,
    )
    return report


def compute_business(ctx: StageContext) -> List[BusinessAlignmentReport]:
    return run_per_project(ctx, STAGE, BusinessAlignmentReport, lambda project: align_project(ctx, project))
