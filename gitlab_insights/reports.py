"""
Report record types produced by the pipeline stages.

Every field has a default so a record can always be produced, even for a
project whose data could not be fetched. Project-level stages emit
exactly one record per project, in project order.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Type, TypeVar

R = TypeVar("R", bound="ReportRecord")


@dataclass
class ReportRecord:
    """Base class for all report records."""

    @classmethod
    def fieldnames(cls) -> List[str]:
        """Column order used for CSV exports."""
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls: Type[R], data: Dict[str, Any]) -> R:
        """Rebuild a record from its checkpointed dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ProjectRecord(ReportRecord):
    """A record keyed by project."""
    project_id: int = 0
    project_name: str = ""

    @classmethod
    def default_for(cls: Type[R], project: "ProjectReport") -> R:
        """Minimal record used when a project's data could not be computed."""
        return cls(project_id=project.project_id, project_name=project.project_name)


@dataclass
class ProjectReport(ProjectRecord):
    """Core facts and health for one project."""
    name: str = ""
    web_url: str = ""
    namespace: str = ""
    description: str = ""
    visibility: str = "private"
    default_branch: str = ""
    archived: bool = False
    created_at: str = ""
    last_activity_at: str = ""
    topics: List[str] = field(default_factory=list)
    star_count: int = 0
    forks_count: int = 0
    open_issues_count: int = 0
    issues_enabled: bool = False
    merge_requests_enabled: bool = False
    wiki_enabled: bool = False
    jobs_enabled: bool = False
    container_registry_enabled: bool = False
    packages_enabled: bool = False
    snippets_enabled: bool = False
    repository_size_mb: float = 0.0
    storage_size_mb: float = 0.0
    job_artifacts_size_mb: float = 0.0
    commits_count: int = 0
    contributors_count: int = 0
    merge_requests_opened: int = 0
    merge_requests_merged: int = 0
    pipelines_total: int = 0
    pipelines_succeeded: int = 0
    pipeline_success_rate: float = 0.0
    health_score: float = 0.0
    health_grade: str = "F"

    @classmethod
    def default_for(cls, project: "ProjectReport") -> "ProjectReport":
        return cls(
            project_id=project.project_id,
            project_name=project.project_name,
            name=project.name,
            web_url=project.web_url,
            namespace=project.namespace,
            description=project.description,
            visibility=project.visibility,
            default_branch=project.default_branch,
            archived=project.archived,
            created_at=project.created_at,
            last_activity_at=project.last_activity_at,
            topics=list(project.topics),
        )

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "ProjectReport":
        """Build the basic project facts from a /projects list item."""
        statistics = raw.get("statistics") or {}
        namespace = raw.get("namespace") or {}
        return cls(
            project_id=int(raw.get("id") or 0),
            project_name=raw.get("path_with_namespace") or raw.get("name") or "",
            name=raw.get("name") or "",
            web_url=raw.get("web_url") or "",
            namespace=namespace.get("full_path") or "",
            description=raw.get("description") or "",
            visibility=raw.get("visibility") or "private",
            default_branch=raw.get("default_branch") or "",
            archived=bool(raw.get("archived", False)),
            created_at=raw.get("created_at") or "",
            last_activity_at=raw.get("last_activity_at") or "",
            topics=list(raw.get("topics") or raw.get("tag_list") or []),
            star_count=int(raw.get("star_count") or 0),
            forks_count=int(raw.get("forks_count") or 0),
            open_issues_count=int(raw.get("open_issues_count") or 0),
            issues_enabled=_feature_enabled(raw, "issues"),
            merge_requests_enabled=_feature_enabled(raw, "merge_requests"),
            wiki_enabled=_feature_enabled(raw, "wiki"),
            jobs_enabled=_feature_enabled(raw, "builds", legacy="jobs_enabled"),
            container_registry_enabled=_feature_enabled(raw, "container_registry"),
            packages_enabled=bool(raw.get("packages_enabled", False)),
            snippets_enabled=_feature_enabled(raw, "snippets"),
            repository_size_mb=_to_mb(statistics.get("repository_size")),
            storage_size_mb=_to_mb(statistics.get("storage_size")),
            job_artifacts_size_mb=_to_mb(statistics.get("job_artifacts_size")),
            commits_count=int(statistics.get("commit_count") or 0),
        )


def _feature_enabled(raw: Dict[str, Any], feature: str, legacy: str | None = None) -> bool:
    """GitLab reports features as ``<name>_access_level`` or legacy ``<name>_enabled``."""
    level = raw.get(f"{feature}_access_level")
    if level is not None:
        return level != "disabled"
    return bool(raw.get(legacy or f"{feature}_enabled", False))


def _to_mb(size_bytes: Any) -> float:
    try:
        return round(float(size_bytes or 0) / (1024 * 1024), 2)
    except (TypeError, ValueError):
        return 0.0


@dataclass
class SecurityScanReport(ProjectRecord):
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0
    info: int = 0
    total_vulnerabilities: int = 0
    has_sast: bool = False
    has_dependency_scanning: bool = False
    has_secret_detection: bool = False
    has_container_scanning: bool = False
    has_dast: bool = False
    scanners_enabled: int = 0
    security_score: float = 0.0
    risk_level: str = "unknown"


@dataclass
class CodeQualityReport(ProjectRecord):
    has_readme: bool = False
    has_license: bool = False
    has_contributing: bool = False
    has_changelog: bool = False
    has_ci: bool = False
    merged_mrs: int = 0
    reviewed_mrs: int = 0
    review_rate: float = 0.0
    avg_merge_hours: float = 0.0
    pipeline_success_rate: float = 0.0
    quality_score: float = 0.0


@dataclass
class CostReport(ProjectRecord):
    storage_mb: float = 0.0
    artifacts_mb: float = 0.0
    ci_jobs: int = 0
    ci_minutes: float = 0.0
    compute_cost: float = 0.0
    storage_cost: float = 0.0
    estimated_monthly_cost: float = 0.0


@dataclass
class TeamReport(ReportRecord):
    """User-level activity record."""
    user_id: int = 0
    username: str = ""
    name: str = ""
    state: str = ""
    is_admin: bool = False
    created_at: str = ""
    last_activity_on: str = ""
    days_inactive: int = -1
    events_in_window: int = 0
    active: bool = False

    @classmethod
    def default_for_user(cls, raw: Dict[str, Any]) -> "TeamReport":
        return cls(
            user_id=int(raw.get("id") or 0),
            username=raw.get("username") or "",
            name=raw.get("name") or "",
            state=raw.get("state") or "",
        )


@dataclass
class TechStackReport(ProjectRecord):
    primary_language: str = ""
    languages: str = ""
    language_count: int = 0
    build_tools: List[str] = field(default_factory=list)
    has_dockerfile: bool = False
    has_ci: bool = False
    ci_job_count: int = 0
    ci_stage_count: int = 0
    uses_includes: bool = False
    uses_docker_in_docker: bool = False


@dataclass
class LifecycleReport(ProjectRecord):
    age_days: int = 0
    days_since_activity: int = 0
    releases_count: int = 0
    latest_release_at: str = ""
    lifecycle_stage: str = "unknown"


@dataclass
class BusinessAlignmentReport(ProjectRecord):
    has_description: bool = False
    topics_count: int = 0
    active_milestones: int = 0
    issues_in_window: int = 0
    labeled_issue_ratio: float = 0.0
    milestone_issue_ratio: float = 0.0
    alignment_score: float = 0.0


@dataclass
class AdoptionReport(ProjectRecord):
    uses_issues: bool = False
    uses_merge_requests: bool = False
    uses_ci: bool = False
    uses_wiki: bool = False
    uses_container_registry: bool = False
    uses_packages: bool = False
    uses_environments: bool = False
    features_used: int = 0
    adoption_score: float = 0.0
    adoption_level: str = "none"


@dataclass
class CollaborationReport(ProjectRecord):
    contributors_count: int = 0
    mr_authors: int = 0
    mr_reviewers: int = 0
    avg_comments_per_mr: float = 0.0
    team_participation: float = 0.0
    collaboration_score: float = 0.0


@dataclass
class DevOpsMaturityReport(ProjectRecord):
    has_ci: bool = False
    has_automated_tests: bool = False
    has_security_scanning: bool = False
    has_deployments: bool = False
    deployments_in_window: int = 0
    pipeline_success_rate: float = 0.0
    maturity_score: float = 0.0
    maturity_level: int = 1
    maturity_label: str = "Initial"


@dataclass
class AdoptionBarrierReport(ProjectRecord):
    barriers: List[str] = field(default_factory=list)
    barrier_count: int = 0
    primary_barrier: str = ""
    severity: str = "none"
    affected_users: int = 0
