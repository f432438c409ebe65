"""
Tests for individual stage computations.
"""

import base64
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from gitlab_insights.config import InsightsConfig
from gitlab_insights.reports import (
    AdoptionReport,
    BusinessAlignmentReport,
    CodeQualityReport,
    DevOpsMaturityReport,
    LifecycleReport,
    ProjectReport,
    SecurityScanReport,
    TeamReport,
)
from gitlab_insights.scoring import ScoringPolicy
from gitlab_insights.stages.adoption import measure_project
from gitlab_insights.stages.barriers import compute_barriers, find_barriers
from gitlab_insights.stages.base import StageContext, decode_file_content, run_isolated
from gitlab_insights.stages.collaboration import analyze_project, compute_collaboration
from gitlab_insights.stages.cost import estimate_project
from gitlab_insights.stages.lifecycle import classify_project
from gitlab_insights.stages.maturity import assess_maturity
from gitlab_insights.stages.projects import enrich_project, list_projects
from gitlab_insights.stages.quality import assess_project, is_reviewed, merge_hours
from gitlab_insights.stages.security import scan_project
from gitlab_insights.stages.team import compute_team
from gitlab_insights.stages.tech import profile_project

NOW = datetime(2025, 1, 31, tzinfo=timezone.utc)


def make_ctx(client=None, **config_overrides):
    values = {
        "gitlab_url": "https://gitlab.example.com",
        "gitlab_token": "t",
        "lookback_days": 30,
    }
    values.update(config_overrides)
    if client is None:
        client = Mock()
        client.request.return_value = []
        client.get_one.return_value = None
        client.count.return_value = 0
    return StageContext(client=client, config=InsightsConfig(**values), policy=ScoringPolicy(), now=NOW)


def make_project(**overrides):
    values = {
        "project_id": 1,
        "project_name": "acme/app",
        "default_branch": "main",
        "created_at": "2024-01-01T00:00:00Z",
        "last_activity_at": "2025-01-30T00:00:00Z",
        "merge_requests_enabled": True,
        "jobs_enabled": True,
        "issues_enabled": True,
    }
    values.update(overrides)
    return ProjectReport(**values)


def encoded(text):
    return {"encoding": "base64", "content": base64.b64encode(text.encode()).decode()}


class TestStageContext:
    """Tests for shared stage plumbing."""

    def test_cutoff(self):
        """The cutoff is lookback_days before now."""
        assert make_ctx().cutoff == "2025-01-01T00:00:00Z"

    def test_root_files_cached(self):
        """The repository tree is fetched once per project."""
        ctx = make_ctx()
        ctx.client.request.return_value = [{"name": "README.md"}]
        project = make_project()

        assert ctx.root_files(project) == ["README.md"]
        assert ctx.root_files(project) == ["README.md"]
        assert ctx.client.request.call_count == 1

    def test_root_files_without_branch(self):
        """Empty repositories have no files and cost no API call."""
        ctx = make_ctx()
        assert ctx.root_files(make_project(default_branch="")) == []
        ctx.client.request.assert_not_called()

    def test_ci_profile_decodes_file(self):
        """The CI file is fetched from the default branch and parsed."""
        ctx = make_ctx()
        ctx.client.get_one.return_value = encoded("test:\n  script: pytest\n")

        profile = ctx.ci_profile(make_project(default_branch="feature/x"))

        assert profile.present is True
        assert profile.has_test_jobs is True
        endpoint = ctx.client.get_one.call_args[0][0]
        assert endpoint == "/projects/1/repository/files/.gitlab-ci.yml?ref=feature%2Fx"

    def test_by_project_tolerates_missing_stage(self):
        """Lookups into a stage that did not run are empty."""
        assert make_ctx().by_project("security_scans") == {}

    def test_decode_file_content(self):
        """Base64 content is decoded; bad input yields an empty string."""
        assert decode_file_content(encoded("hello")) == "hello"
        assert decode_file_content({"content": "plain"}) == "plain"
        assert decode_file_content({"encoding": "base64", "content": "%%%"}) == ""
        assert decode_file_content(None) == ""

    def test_run_isolated_parallel_keeps_order(self):
        """With several workers the output order still matches the input."""
        ctx = make_ctx(max_workers=4)
        results = run_isolated(ctx, "test", list(range(20)), lambda n: n * 2, default=lambda n: -1)
        assert results == [n * 2 for n in range(20)]

    @pytest.mark.parametrize("workers", [1, 4])
    def test_run_isolated_reports_progress(self, workers):
        """Per-item progress is reported whether or not a thread pool is used."""
        ctx = make_ctx(max_workers=workers)
        ctx.progress = Mock()

        run_isolated(ctx, "test", list(range(5)), lambda n: n, default=lambda n: -1)

        calls = [c.args for c in ctx.progress.project_progress.call_args_list]
        assert calls == [("test", done, 5) for done in range(1, 6)]

    def test_run_isolated_replaces_failures(self):
        """A failing item gets its default value."""
        def compute(n):
            if n == 1:
                raise ValueError("bad")
            return n

        results = run_isolated(make_ctx(), "test", [0, 1, 2], compute, default=lambda n: None)
        assert results == [0, None, 2]


class TestProjectsStage:
    """Tests for project listing and enrichment."""

    def test_list_projects_for_group(self):
        """A group scope lists the group's projects including subgroups."""
        ctx = make_ctx(group="acme/platform")
        ctx.client.request.return_value = [{"id": 1, "name": "app"}, {"id": 2, "name": "lib"}, {"name": "no-id"}]

        projects = list_projects(ctx)

        assert [p.project_id for p in projects] == [1, 2]
        endpoint = ctx.client.request.call_args[0][0]
        assert endpoint.startswith("/groups/acme%2Fplatform/projects?include_subgroups=true")

    def test_list_projects_limit(self):
        """max_projects caps the list."""
        ctx = make_ctx(max_projects=1)
        ctx.client.request.return_value = [{"id": 1}, {"id": 2}]
        assert len(list_projects(ctx)) == 1

    def test_enrich_project(self):
        """Counts and pipeline success rate feed the health score."""
        ctx = make_ctx()
        counts = {
            "/projects/1/repository/commits": 40,
            "/projects/1/merge_requests?created_after": 6,
            "/projects/1/merge_requests?state=merged": 5,
            "/projects/1/pipelines?updated_after=2025-01-01T00:00:00Z&status=success": 8,
            "/projects/1/pipelines": 10,
        }

        def fake_count(endpoint):
            for prefix, value in counts.items():
                if endpoint.startswith(prefix):
                    return value
            return 0

        ctx.client.count.side_effect = fake_count
        ctx.client.request.return_value = [{"name": "a"}, {"name": "b"}]

        project = enrich_project(ctx, make_project(description="App"))

        assert project.commits_count == 40
        assert project.contributors_count == 2
        assert project.merge_requests_opened == 6
        assert project.merge_requests_merged == 5
        assert project.pipelines_total == 10
        assert project.pipelines_succeeded == 8
        assert project.pipeline_success_rate == 0.8
        assert project.health_score > 0
        assert project.health_grade in "ABCDF"

    def test_from_api(self):
        """Project facts are read from a /projects item."""
        project = ProjectReport.from_api({
            "id": 5,
            "name": "app",
            "path_with_namespace": "acme/app",
            "namespace": {"full_path": "acme"},
            "issues_access_level": "enabled",
            "wiki_access_level": "disabled",
            "builds_access_level": "private",
            "packages_enabled": True,
            "statistics": {"storage_size": 2 * 1024 * 1024, "commit_count": 12},
            "topics": ["api"],
        })
        assert project.project_name == "acme/app"
        assert project.namespace == "acme"
        assert project.issues_enabled is True
        assert project.wiki_enabled is False
        assert project.jobs_enabled is True
        assert project.packages_enabled is True
        assert project.storage_size_mb == 2.0
        assert project.topics == ["api"]


class TestSecurityStage:
    """Tests for the security posture stage."""

    def test_counts_by_severity(self):
        """Vulnerabilities are counted per severity and scanners detected."""
        ctx = make_ctx()
        ctx.client.request.return_value = [
            {"severity": "Critical", "report_type": "sast"},
            {"severity": "high", "report_type": "dependency_scanning"},
            {"severity": "high", "report_type": "sast"},
            {"severity": "low", "report_type": "sast"},
        ]

        report = scan_project(ctx, make_project())

        assert (report.critical, report.high, report.medium, report.low) == (1, 2, 0, 1)
        assert report.total_vulnerabilities == 4
        assert report.has_sast and report.has_dependency_scanning
        assert report.scanners_enabled == 2
        assert report.risk_level == "critical"


class TestQualityStage:
    """Tests for the code quality stage."""

    def test_is_reviewed(self):
        """Discussion or a non-author reviewer counts as review."""
        assert is_reviewed({"user_notes_count": 2}) is True
        assert is_reviewed({"author": {"id": 1}, "reviewers": [{"id": 2}]}) is True
        assert is_reviewed({"author": {"id": 1}, "reviewers": [{"id": 1}]}) is False
        assert is_reviewed({}) is False

    def test_merge_hours(self):
        """Merge time is measured from creation to merge."""
        mr = {"created_at": "2025-01-01T00:00:00Z", "merged_at": "2025-01-02T12:00:00Z"}
        assert merge_hours(mr) == 36.0
        assert merge_hours({"created_at": "2025-01-01T00:00:00Z"}) is None

    def test_assess_project(self):
        """Hygiene files and review coverage are combined into a score."""
        ctx = make_ctx()

        def fake_request(endpoint, *args, **kwargs):
            if "/repository/tree" in endpoint:
                return [{"name": "README.md"}, {"name": "LICENSE"}, {"name": ".gitlab-ci.yml"}]
            if "/merge_requests" in endpoint:
                return [{"user_notes_count": 1}, {"user_notes_count": 0}]
            return []

        ctx.client.request.side_effect = fake_request

        report = assess_project(ctx, make_project(pipeline_success_rate=1.0))

        assert report.has_readme and report.has_license and report.has_ci
        assert not report.has_contributing
        assert report.merged_mrs == 2
        assert report.review_rate == 0.5
        assert report.quality_score == pytest.approx(15 + 10 + 20 + 12.5 + 25)


class TestCostStage:
    """Tests for the cost stage."""

    def test_jobs_in_window(self):
        """Only jobs after the cutoff count; missing durations use the default estimate."""
        ctx = make_ctx()
        ctx.client.request.return_value = [
            {"created_at": "2025-01-20T00:00:00Z", "duration": 600},
            {"created_at": "2025-01-21T00:00:00Z", "duration": None},
            {"created_at": "2024-12-01T00:00:00Z", "duration": 6000},
        ]

        report = estimate_project(ctx, make_project(pipelines_total=2, storage_size_mb=1024.0))

        assert report.ci_jobs == 2
        assert report.ci_minutes == 15.0
        assert report.storage_cost == 0.25
        assert report.estimated_monthly_cost == round(report.compute_cost + report.storage_cost, 2)

    def test_no_pipelines_no_job_calls(self):
        """Projects without pipelines are not asked for jobs."""
        ctx = make_ctx()
        report = estimate_project(ctx, make_project(pipelines_total=0))
        assert report.ci_jobs == 0
        ctx.client.request.assert_not_called()


class TestTeamStage:
    """Tests for the user-level team stage."""

    def test_users_and_activity(self):
        """Each non-bot user gets a record with window activity."""
        ctx = make_ctx()
        ctx.client.request.return_value = [
            {"id": 1, "username": "alice", "last_activity_on": "2025-01-30"},
            {"id": 2, "username": "bob", "last_activity_on": "2024-01-01"},
            {"id": 3, "username": "ci-bot", "bot": True},
        ]
        ctx.client.count.side_effect = lambda endpoint: 12 if "/users/1/" in endpoint else 0

        records = compute_team(ctx)

        assert [r.username for r in records] == ["alice", "bob"]
        assert records[0].events_in_window == 12
        assert records[0].active is True
        assert records[0].days_inactive == 1
        assert records[1].active is False
        assert ctx.client.count.call_args_list[0][0][0] == "/users/1/events?after=2025-01-01"


class TestExtendedStages:
    """Tests for tech, lifecycle, adoption, collaboration, maturity and barriers."""

    def test_tech_profile(self):
        """Languages are ranked and build tools detected from root files."""
        ctx = make_ctx()
        ctx.client.get_one.side_effect = lambda endpoint: (
            {"Python": 70.5, "Shell": 29.5} if endpoint.endswith("/languages") else None
        )
        ctx.client.request.return_value = [{"name": "pyproject.toml"}, {"name": "Dockerfile"}, {"name": "Makefile"}]

        report = profile_project(ctx, make_project())

        assert report.primary_language == "Python"
        assert report.language_count == 2
        assert report.languages == "Python:70.5;Shell:29.5"
        assert report.build_tools == ["make", "python-build"]
        assert report.has_dockerfile is True
        assert report.has_ci is False

    def test_lifecycle(self):
        """Release history and recency place the project in its lifecycle."""
        ctx = make_ctx()
        ctx.client.request.return_value = [{"released_at": "2025-01-10T00:00:00Z"}]
        ctx.client.count.return_value = 4

        report = classify_project(ctx, make_project())

        assert report.releases_count == 4
        assert report.latest_release_at == "2025-01-10T00:00:00Z"
        assert report.days_since_activity == 1
        assert report.lifecycle_stage == "active"

    def test_adoption_uses_business_output(self):
        """Recent issues from the business stage count as issue usage."""
        ctx = make_ctx()
        ctx.results["business_alignment"] = [BusinessAlignmentReport(project_id=1, issues_in_window=3)]

        report = measure_project(ctx, make_project(merge_requests_opened=2, pipelines_total=5))

        assert report.uses_issues and report.uses_merge_requests and report.uses_ci
        assert not report.uses_wiki
        assert report.features_used == 3
        assert report.adoption_score == 65.0
        assert report.adoption_level == "medium"

    def test_collaboration(self):
        """Authors and reviewers are counted once each; the author never reviews."""
        ctx = make_ctx()
        ctx.client.request.return_value = [
            {"author": {"id": 1}, "reviewers": [{"id": 2}], "assignees": [{"id": 1}], "user_notes_count": 4},
            {"author": {"id": 2}, "reviewers": [{"id": 3}], "assignees": [], "user_notes_count": 2},
        ]

        report = analyze_project(ctx, make_project(contributors_count=3), active_users=4)

        assert report.mr_authors == 2
        assert report.mr_reviewers == 2
        assert report.avg_comments_per_mr == 3.0
        assert report.team_participation == 0.5

    def test_collaboration_without_team(self):
        """Participation is zero when the team stage produced nothing."""
        ctx = make_ctx()
        ctx.projects = [make_project()]
        ctx.client.request.return_value = [{"author": {"id": 1}}]

        records = compute_collaboration(ctx)

        assert records[0].team_participation == 0.0

    def test_maturity_prefers_security_output(self):
        """Scanners found by the security stage count as security scanning."""
        ctx = make_ctx()
        ctx.results["security_scans"] = [SecurityScanReport(project_id=1, scanners_enabled=2)]
        ctx.client.count.return_value = 10

        report = assess_maturity(ctx, make_project(pipelines_total=4, pipeline_success_rate=1.0))

        assert report.has_security_scanning is True
        assert report.has_deployments is True
        assert report.deployments_in_window == 10
        assert 1 <= report.maturity_level <= 5

    def test_barriers_from_upstream(self):
        """Barriers come from earlier outputs, most severe first, without API calls."""
        ctx = make_ctx()
        ctx.results.update({
            "security_scans": [SecurityScanReport(project_id=1, critical=1)],
            "adoption": [AdoptionReport(project_id=1, adoption_score=10.0)],
            "devops_maturity": [DevOpsMaturityReport(project_id=1, maturity_level=1)],
            "code_quality": [CodeQualityReport(project_id=1, merged_mrs=4, review_rate=0.25)],
            "lifecycle": [LifecycleReport(project_id=1, lifecycle_stage="dormant")],
        })

        report = find_barriers(ctx, make_project(contributors_count=1))

        assert report.primary_barrier == "unresolved critical or high vulnerabilities"
        assert "low feature adoption" in report.barriers
        assert "merge requests merged without review" in report.barriers
        assert "dormant project" in report.barriers
        assert "single contributor" in report.barriers
        assert report.barrier_count == len(report.barriers)
        assert report.severity == "high"
        ctx.client.request.assert_not_called()
        ctx.client.count.assert_not_called()

    def test_barriers_tolerate_empty_upstream(self):
        """With every upstream stage skipped there is still one record per project."""
        ctx = make_ctx()
        ctx.projects = [make_project(project_id=1, pipelines_total=3, pipeline_success_rate=1.0, contributors_count=4)]

        records = compute_barriers(ctx)

        assert len(records) == 1
        assert records[0].barriers == []
        assert records[0].severity == "none"


class TestTeamReport:
    """Tests for the team record defaults."""

    def test_default_for_user(self):
        """A failed user keeps identity fields and default activity."""
        record = TeamReport.default_for_user({"id": 3, "username": "carol"})
        assert record.user_id == 3
        assert record.username == "carol"
        assert record.days_inactive == -1
        assert record.active is False
