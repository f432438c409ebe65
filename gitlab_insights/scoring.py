"""Scoring - heuristic scores computed from fetched project data.

All weights and constants live in ScoringPolicy so they can be tuned per
organisation from a YAML file without touching the stage code.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .utils import clamp, safe_ratio


@dataclass
class ScoringPolicy:
    """Tunable weights and constants for every heuristic score."""

    # Health score weights (sum to 100)
    health_activity_weight: float = 30.0
    health_pipeline_weight: float = 25.0
    health_collaboration_weight: float = 20.0
    health_documentation_weight: float = 10.0
    health_freshness_weight: float = 15.0
    # Days without activity after which freshness is zero
    stale_after_days: int = 180
    # Commits in the lookback window that count as "fully active"
    active_commit_target: int = 100

    # Security severity penalties
    security_critical_penalty: float = 25.0
    security_high_penalty: float = 10.0
    security_medium_penalty: float = 3.0
    security_low_penalty: float = 0.5
    security_scanner_bonus: float = 5.0

    # Adoption weights per feature
    adoption_weights: dict[str, float] = field(default_factory=lambda: {
        "uses_issues": 15.0,
        "uses_merge_requests": 25.0,
        "uses_ci": 25.0,
        "uses_wiki": 5.0,
        "uses_container_registry": 10.0,
        "uses_packages": 10.0,
        "uses_environments": 10.0,
    })

    # Cost constants
    cost_per_ci_minute: float = 0.008
    cost_per_gb_month: float = 0.25
    default_job_minutes: float = 5.0

    # Lifecycle thresholds (days)
    new_project_days: int = 90
    maintenance_after_days: int = 60
    dormant_after_days: int = 180

    # Barrier thresholds
    low_adoption_threshold: float = 40.0
    low_maturity_level: int = 2
    low_review_rate: float = 0.5
    low_pipeline_success: float = 0.7

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScoringPolicy":
        """Build a policy from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown scoring policy keys: {', '.join(sorted(unknown))}")
        policy = cls()
        for key, value in data.items():
            if key == "adoption_weights":
                merged = dict(policy.adoption_weights)
                merged.update(value or {})
                value = merged
            setattr(policy, key, value)
        return policy


def load_policy(path: str | Path | None) -> ScoringPolicy:
    """
    Load a scoring policy from a YAML file.

    Args:
        path: YAML file with policy overrides, or None for defaults

    Returns:
        ScoringPolicy with overrides applied
    """
    if not path:
        return ScoringPolicy()
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Scoring policy {path} must be a mapping")
    return ScoringPolicy.from_dict(data)


def grade_for(score: float) -> str:
    """Letter grade for a 0-100 score."""
    if score >= 90:
        return "A"
    if score >= 75:
        return "B"
    if score >= 60:
        return "C"
    if score >= 40:
        return "D"
    return "F"


def calculate_health_score(
    commits: int,
    pipeline_success_rate: float,
    pipelines_total: int,
    merge_requests_merged: int,
    contributors: int,
    has_description: bool,
    days_since_activity: int | None,
    archived: bool,
    policy: ScoringPolicy,
) -> float:
    """
    Calculate a 0-100 project health score.

    Breakdown (default weights):
    - Activity: commits in window relative to target (0-30)
    - Pipelines: success rate, zero when no pipelines ran (0-25)
    - Collaboration: merged MRs and contributor count (0-20)
    - Documentation: project description present (0-10)
    - Freshness: decays linearly to zero at ``stale_after_days`` (0-15)

    Archived projects are capped at 20.
    """
    activity = min(1.0, safe_ratio(commits, policy.active_commit_target))
    pipelines = pipeline_success_rate if pipelines_total else 0.0
    collaboration = min(1.0, 0.5 * min(1.0, merge_requests_merged / 10) + 0.5 * min(1.0, contributors / 5))
    documentation = 1.0 if has_description else 0.0
    if days_since_activity is None:
        freshness = 0.0
    else:
        freshness = max(0.0, 1.0 - safe_ratio(days_since_activity, policy.stale_after_days, 1.0))

    score = (
        activity * policy.health_activity_weight
        + pipelines * policy.health_pipeline_weight
        + collaboration * policy.health_collaboration_weight
        + documentation * policy.health_documentation_weight
        + freshness * policy.health_freshness_weight
    )
    if archived:
        score = min(score, 20.0)
    return round(clamp(score), 1)


def calculate_security_score(
    counts: dict[str, int],
    scanners_enabled: int,
    policy: ScoringPolicy,
) -> tuple[float, str]:
    """
    Calculate a 0-100 security score and risk level.

    Starts at 100, subtracts a penalty per vulnerability by severity and
    adds a bonus per enabled scanner.
    """
    penalty = (
        counts.get("critical", 0) * policy.security_critical_penalty
        + counts.get("high", 0) * policy.security_high_penalty
        + counts.get("medium", 0) * policy.security_medium_penalty
        + counts.get("low", 0) * policy.security_low_penalty
    )
    score = clamp(100.0 - penalty + scanners_enabled * policy.security_scanner_bonus)

    if counts.get("critical", 0) > 0:
        risk = "critical"
    elif counts.get("high", 0) > 0:
        risk = "high"
    elif counts.get("medium", 0) > 0 or scanners_enabled == 0:
        risk = "medium"
    else:
        risk = "low"
    return round(score, 1), risk


def calculate_quality_score(
    has_readme: bool,
    has_license: bool,
    has_contributing: bool,
    has_ci: bool,
    review_rate: float,
    pipeline_success_rate: float,
) -> float:
    """
    Calculate a 0-100 code quality score.

    - README 15, LICENSE 10, CONTRIBUTING 5, CI config 20
    - MR review rate up to 25
    - Pipeline success rate up to 25
    """
    score = 0.0
    score += 15 if has_readme else 0
    score += 10 if has_license else 0
    score += 5 if has_contributing else 0
    score += 20 if has_ci else 0
    score += 25 * review_rate
    score += 25 * pipeline_success_rate
    return round(clamp(score), 1)


def estimate_monthly_cost(
    ci_minutes: float,
    storage_mb: float,
    lookback_days: int,
    policy: ScoringPolicy,
) -> tuple[float, float, float]:
    """
    Estimate monthly cost from CI minutes in the window and current storage.

    Returns:
        Tuple of (compute_cost, storage_cost, total) per 30 days
    """
    monthly_minutes = ci_minutes * safe_ratio(30, lookback_days, 1.0)
    compute = monthly_minutes * policy.cost_per_ci_minute
    storage = (storage_mb / 1024) * policy.cost_per_gb_month
    return round(compute, 2), round(storage, 2), round(compute + storage, 2)


def classify_lifecycle(
    archived: bool,
    age_days: int,
    days_since_activity: int,
    policy: ScoringPolicy,
) -> str:
    """Place a project in its lifecycle: new, active, maintenance, dormant or archived."""
    if archived:
        return "archived"
    if days_since_activity >= policy.dormant_after_days:
        return "dormant"
    if age_days <= policy.new_project_days:
        return "new"
    if days_since_activity >= policy.maintenance_after_days:
        return "maintenance"
    return "active"


def calculate_alignment_score(
    has_description: bool,
    topics_count: int,
    active_milestones: int,
    labeled_issue_ratio: float,
    milestone_issue_ratio: float,
) -> float:
    """
    Calculate a 0-100 business alignment score.

    - Description 15, topics up to 15, active milestones up to 20
    - Share of issues with labels up to 25, with milestones up to 25
    """
    score = 0.0
    score += 15 if has_description else 0
    score += min(15.0, topics_count * 5.0)
    score += min(20.0, active_milestones * 10.0)
    score += 25 * labeled_issue_ratio
    score += 25 * milestone_issue_ratio
    return round(clamp(score), 1)


def calculate_adoption_score(usage: dict[str, bool], policy: ScoringPolicy) -> tuple[float, str]:
    """Weighted share of GitLab features in use, and its level."""
    total = sum(policy.adoption_weights.values())
    used = sum(weight for name, weight in policy.adoption_weights.items() if usage.get(name))
    score = round(clamp(100.0 * safe_ratio(used, total)), 1)
    if score >= 75:
        level = "high"
    elif score >= policy.low_adoption_threshold:
        level = "medium"
    elif score > 0:
        level = "low"
    else:
        level = "none"
    return score, level


def calculate_collaboration_score(
    mr_authors: int,
    mr_reviewers: int,
    avg_comments_per_mr: float,
    contributors: int,
) -> float:
    """
    Calculate a 0-100 collaboration score.

    - Distinct MR authors up to 30 (5 authors = full)
    - Distinct reviewers up to 30 (3 reviewers = full)
    - Average discussion per MR up to 25 (5 comments = full)
    - Contributors up to 15 (5 contributors = full)
    """
    score = (
        30 * min(1.0, mr_authors / 5)
        + 30 * min(1.0, mr_reviewers / 3)
        + 25 * min(1.0, avg_comments_per_mr / 5)
        + 15 * min(1.0, contributors / 5)
    )
    return round(clamp(score), 1)


MATURITY_LABELS = {
    1: "Initial",
    2: "Managed",
    3: "Defined",
    4: "Measured",
    5: "Optimizing",
}


def calculate_maturity(
    has_ci: bool,
    has_automated_tests: bool,
    has_security_scanning: bool,
    has_deployments: bool,
    deployments_in_window: int,
    pipeline_success_rate: float,
    lookback_days: int,
) -> tuple[float, int, str]:
    """
    Calculate a DevOps maturity score and level.

    Score (0-100): CI 20, automated tests 20, security scanning 20,
    deployments 15, weekly-or-better deploy cadence 10, pipeline
    success rate up to 15. Level is 1 + one step per 20 points, capped at 5.
    """
    weeks = max(1.0, lookback_days / 7)
    cadence = min(1.0, deployments_in_window / weeks)
    score = (
        (20 if has_ci else 0)
        + (20 if has_automated_tests else 0)
        + (20 if has_security_scanning else 0)
        + (15 if has_deployments else 0)
        + 10 * cadence
        + 15 * pipeline_success_rate
    )
    score = round(clamp(score), 1)
    level = min(5, 1 + int(score // 20))
    return score, level, MATURITY_LABELS[level]


def barrier_severity(barrier_count: int) -> str:
    if barrier_count == 0:
        return "none"
    if barrier_count <= 1:
        return "low"
    if barrier_count <= 3:
        return "medium"
    return "high"
