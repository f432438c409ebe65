"""Code quality: repository hygiene files, review coverage and merge time."""

from __future__ import annotations

from typing import Any, Dict, List

from ..reports import CodeQualityReport, ProjectReport
from ..scoring import calculate_quality_score
from ..utils import parse_iso, safe_ratio
from .base import StageContext, run_per_project

STAGE = "code_quality"


def _has_file(names: List[str], *prefixes: str) -> bool:
    lowered = [name.lower() for name in names]
    return any(name.startswith(prefix) for name in lowered for prefix in prefixes)


def is_reviewed(mr: Dict[str, Any]) -> bool:
    """An MR counts as reviewed if it had discussion or a reviewer other than its author."""
    if (mr.get("user_notes_count") or 0) > 0:
        return True
    author_id = (mr.get("author") or {}).get("id")
    reviewers = mr.get("reviewers") or []
    return any(r.get("id") != author_id for r in reviewers if isinstance(r, dict))


def merge_hours(mr: Dict[str, Any]) -> float | None:
    created = parse_iso(mr.get("created_at"))
    merged = parse_iso(mr.get("merged_at"))
    if created is None or merged is None or merged < created:
        return None
    return (merged - created).total_seconds() / 3600


def assess_project(ctx: StageContext, project: ProjectReport) -> CodeQualityReport:
    files = ctx.root_files(project)
    has_ci = ".gitlab-ci.yml" in files or ctx.ci_profile(project).present

    merged = [mr for mr in ctx.merged_merge_requests(project) if isinstance(mr, dict)]
    reviewed = sum(1 for mr in merged if is_reviewed(mr))
    hours = [h for h in (merge_hours(mr) for mr in merged) if h is not None]
    review_rate = round(safe_ratio(reviewed, len(merged)), 3)

    report = CodeQualityReport(
        project_id=project.project_id,
        project_name=project.project_name,
        has_readme=_has_file(files, "readme"),
        has_license=_has_file(files, "license", "licence", "copying"),
        has_contributing=_has_file(files, "contributing"),
        has_changelog=_has_file(files, "changelog", "changes", "history"),
        has_ci=has_ci,
        merged_mrs=len(merged),
        reviewed_mrs=reviewed,
        review_rate=review_rate,
        avg_merge_hours=round(safe_ratio(sum(hours), len(hours)), 1),
        pipeline_success_rate=project.pipeline_success_rate,
    )
    report.quality_score = calculate_quality_score(
        has_readme=report.has_readme,
        has_license=report.has_license,
        has_contributing=report.has_contributing,
        has_ci=report.has_ci,
        review_rate=report.review_rate,
        pipeline_success_rate=report.pipeline_success_rate,
    )
    return report


def compute_quality(ctx: StageContext) -> List[CodeQualityReport]:
    return run_per_project(ctx, STAGE, CodeQualityReport, lambda project: assess_project(ctx, project))
