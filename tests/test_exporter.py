"""
Tests for CSV and dashboard export.
"""

import csv

import pytest

from gitlab_insights.exporter import (
    build_overview,
    build_sections,
    csv_row,
    export_all,
    export_stage_csv,
)
from gitlab_insights.reports import (
    AdoptionBarrierReport,
    CostReport,
    ProjectReport,
    SecurityScanReport,
    TeamReport,
)
from gitlab_insights.stages import STAGES
from gitlab_insights.types import StageStatus


def read_csv(path):
    with path.open(newline="", encoding="utf-8") as f:
        return list(csv.reader(f))


@pytest.fixture
def projects():
    return [
        ProjectReport(project_id=1, project_name="group/api", name="api", topics=["backend", "python"],
                      health_score=80.0, health_grade="B"),
        ProjectReport(project_id=2, project_name="group/web", name="<web>", health_score=40.0, health_grade="D"),
    ]


class TestCsvExport:
    """Tests for per-stage CSV files."""

    def test_list_fields_joined(self, projects):
        """List values are flattened into one cell."""
        assert csv_row(projects[0])["topics"] == "backend; python"

    def test_header_order_matches_record(self, tmp_path, projects):
        """Columns follow the record field order."""
        path = tmp_path / "projects.csv"
        export_stage_csv(projects, ProjectReport, path)

        rows = read_csv(path)

        assert rows[0] == ProjectReport.fieldnames()
        assert rows[0][:2] == ["project_id", "project_name"]
        assert len(rows) == 3
        assert rows[1][0] == "1"

    def test_empty_stage_writes_header(self, tmp_path):
        """A stage without records still gets a header row."""
        path = tmp_path / "out" / "cost.csv"
        export_stage_csv([], CostReport, path)

        assert read_csv(path) == [CostReport.fieldnames()]


class TestOverview:
    """Tests for dashboard headline figures."""

    def test_empty_results(self):
        """Only the project count is shown without data."""
        assert build_overview({}) == [{"label": "Projects", "value": 0}]

    def test_cards(self, projects):
        """Figures are aggregated across stages."""
        results = {
            "projects": projects,
            "security_scans": [
                SecurityScanReport(project_id=1, critical=2, risk_level="critical"),
                SecurityScanReport(project_id=2, risk_level="low"),
            ],
            "cost": [CostReport(estimated_monthly_cost=1000.5), CostReport(estimated_monthly_cost=20)],
            "team": [TeamReport(user_id=1, active=True), TeamReport(user_id=2, active=False)],
            "adoption_barriers": [
                AdoptionBarrierReport(barriers=["single contributor"]),
                AdoptionBarrierReport(barriers=["single contributor", "dormant project"]),
            ],
        }

        cards = {card["label"]: card["value"] for card in build_overview(results)}

        assert cards["Projects"] == 2
        assert cards["Average health"] == 60.0
        assert cards["Health grades"] == "B:1 D:1"
        assert cards["Critical vulnerabilities"] == 2
        assert cards["High/critical risk projects"] == 1
        assert cards["Estimated monthly cost"] == "$1,020.50"
        assert cards["Active users"] == "1 / 2"
        assert cards["Most common barrier"] == "single contributor (2)"


class TestSections:
    """Tests for dashboard tables."""

    def test_section_per_stage(self, projects):
        """Every stage gets a section with its status."""
        statuses = {"projects": StageStatus.COMPLETED, "security_scans": StageStatus.SKIPPED}

        sections = build_sections(STAGES, {"projects": projects}, statuses)

        assert [s["name"] for s in sections] == [stage.name for stage in STAGES]
        assert sections[0]["status"] == "completed"
        assert sections[1]["status"] == "skipped"
        assert sections[2]["status"] == "pending"
        assert len(sections[0]["rows"]) == 2
        assert sections[0]["rows"][0][0] == 1


class TestExportAll:
    """Tests for the full export."""

    def test_skipped_stages_have_no_csv(self, tmp_path, projects):
        """Skipped stages are left out; the dashboard is written last."""
        statuses = {stage.name: StageStatus.COMPLETED for stage in STAGES}
        statuses["security_scans"] = StageStatus.SKIPPED

        written = export_all(tmp_path, STAGES, {"projects": projects}, statuses,
                             instance_url="https://gitlab.example.com", lookback_days=30)

        names = [path.name for path in written]
        assert "security_scans.csv" not in names
        assert "projects.csv" in names
        assert "adoption_barriers.csv" in names
        assert names[-1] == "dashboard.html"
        assert len(names) == len(STAGES)

    def test_dashboard_escapes_values(self, tmp_path, projects):
        """Project data is HTML-escaped in the dashboard."""
        statuses = {stage.name: StageStatus.COMPLETED for stage in STAGES}

        export_all(tmp_path, STAGES, {"projects": projects}, statuses,
                   instance_url="https://gitlab.example.com", lookback_days=30)

        html = (tmp_path / "dashboard.html").read_text(encoding="utf-8")
        assert "&lt;web&gt;" in html
        assert "<web>" not in html
        assert "https://gitlab.example.com" in html
        assert "last 30 days" in html
