"""Collaboration: who writes, who reviews and how much they discuss."""

from __future__ import annotations

from typing import List

from ..reports import CollaborationReport, ProjectReport
from ..scoring import calculate_collaboration_score
from ..utils import safe_ratio
from .base import StageContext, run_per_project

STAGE = "collaboration"


def analyze_project(ctx: StageContext, project: ProjectReport, active_users: int) -> CollaborationReport:
    merged = [mr for mr in ctx.merged_merge_requests(project) if isinstance(mr, dict)]

    authors = set()
    reviewers = set()
    comments = 0
    for mr in merged:
        author_id = (mr.get("author") or {}).get("id")
        if author_id is not None:
            authors.add(author_id)
        for person in (mr.get("reviewers") or []) + (mr.get("assignees") or []):
            if isinstance(person, dict) and person.get("id") not in (None, author_id):
                reviewers.add(person["id"])
        comments += mr.get("user_notes_count") or 0

    report = CollaborationReport(
        project_id=project.project_id,
        project_name=project.project_name,
        contributors_count=project.contributors_count,
        mr_authors=len(authors),
        mr_reviewers=len(reviewers),
        avg_comments_per_mr=round(safe_ratio(comments, len(merged)), 2),
        team_participation=round(min(1.0, safe_ratio(len(authors), active_users)), 3),
    )
    report.collaboration_score = calculate_collaboration_score(
        mr_authors=report.mr_authors,
        mr_reviewers=report.mr_reviewers,
        avg_comments_per_mr=report.avg_comments_per_mr,
        contributors=report.contributors_count,
    )
    return report


def compute_collaboration(ctx: StageContext) -> List[CollaborationReport]:
    active_users = sum(1 for user in ctx.output("team") if getattr(user, "active", False))
    return run_per_project(
        ctx,
        STAGE,
        CollaborationReport,
        lambda project: analyze_project(ctx, project, active_users),
    )
