"""
Tests for scoring heuristics and the scoring policy.
"""

import pytest

from gitlab_insights.scoring import (
    ScoringPolicy,
    barrier_severity,
    calculate_adoption_score,
    calculate_alignment_score,
    calculate_collaboration_score,
    calculate_health_score,
    calculate_maturity,
    calculate_quality_score,
    calculate_security_score,
    classify_lifecycle,
    estimate_monthly_cost,
    grade_for,
    load_policy,
)


@pytest.fixture
def policy():
    return ScoringPolicy()


class TestScoringPolicy:
    """Tests for policy loading."""

    def test_defaults(self, policy):
        """Health weights add up to 100."""
        total = (
            policy.health_activity_weight
            + policy.health_pipeline_weight
            + policy.health_collaboration_weight
            + policy.health_documentation_weight
            + policy.health_freshness_weight
        )
        assert total == 100.0
        assert sum(policy.adoption_weights.values()) == 100.0

    def test_load_from_yaml(self, tmp_path):
        """YAML overrides are applied and adoption weights merged."""
        path = tmp_path / "policy.yaml"
        path.write_text(
            "cost_per_ci_minute: 0.01\n"
            "adoption_weights:\n"
            "  uses_wiki: 0\n",
            encoding="utf-8",
        )

        loaded = load_policy(path)

        assert loaded.cost_per_ci_minute == 0.01
        assert loaded.adoption_weights["uses_wiki"] == 0
        assert loaded.adoption_weights["uses_ci"] == 25.0

    def test_unknown_key_rejected(self):
        """Typos in the policy file are reported."""
        with pytest.raises(ValueError, match="cost_per_minute"):
            ScoringPolicy.from_dict({"cost_per_minute": 1})

    def test_non_mapping_rejected(self, tmp_path):
        """A policy file must contain a mapping."""
        path = tmp_path / "policy.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_policy(path)

    def test_no_path_gives_defaults(self):
        """No policy file means the default policy."""
        assert load_policy(None) == ScoringPolicy()


class TestHealthScore:
    """Tests for the project health score."""

    def test_fully_healthy(self, policy):
        """Maximum inputs give a perfect score."""
        score = calculate_health_score(
            commits=200, pipeline_success_rate=1.0, pipelines_total=50, merge_requests_merged=20,
            contributors=10, has_description=True, days_since_activity=0, archived=False, policy=policy,
        )
        assert score == 100.0
        assert grade_for(score) == "A"

    def test_empty_project(self, policy):
        """A project with no activity data scores zero."""
        score = calculate_health_score(
            commits=0, pipeline_success_rate=0.0, pipelines_total=0, merge_requests_merged=0,
            contributors=0, has_description=False, days_since_activity=None, archived=False, policy=policy,
        )
        assert score == 0.0
        assert grade_for(score) == "F"

    def test_archived_capped(self, policy):
        """Archived projects never score above 20."""
        score = calculate_health_score(
            commits=200, pipeline_success_rate=1.0, pipelines_total=50, merge_requests_merged=20,
            contributors=10, has_description=True, days_since_activity=0, archived=True, policy=policy,
        )
        assert score == 20.0

    @pytest.mark.parametrize("score,grade", [(95, "A"), (80, "B"), (65, "C"), (45, "D"), (10, "F")])
    def test_grades(self, score, grade):
        """Grade boundaries."""
        assert grade_for(score) == grade


class TestSecurityScore:
    """Tests for the security score."""

    def test_clean_with_scanners(self, policy):
        """No findings and scanners enabled is low risk."""
        score, risk = calculate_security_score({}, 3, policy)
        assert score == 100.0
        assert risk == "low"

    def test_no_scanners_is_medium_risk(self, policy):
        """Without scanners the posture is unknown, so medium risk."""
        _, risk = calculate_security_score({}, 0, policy)
        assert risk == "medium"

    def test_penalties(self, policy):
        """Severity penalties are subtracted and clamped at zero."""
        score, risk = calculate_security_score({"critical": 1, "high": 2}, 0, policy)
        assert score == 100 - 25 - 20
        assert risk == "critical"
        score, _ = calculate_security_score({"critical": 10}, 0, policy)
        assert score == 0.0


class TestOtherScores:
    """Tests for the remaining heuristics."""

    def test_quality_score(self):
        """Every component at maximum gives 100."""
        assert calculate_quality_score(True, True, True, True, 1.0, 1.0) == 100.0
        assert calculate_quality_score(False, False, False, False, 0.0, 0.0) == 0.0

    def test_monthly_cost(self, policy):
        """CI minutes are scaled to 30 days and storage priced per GB."""
        compute, storage, total = estimate_monthly_cost(
            ci_minutes=1000, storage_mb=2048, lookback_days=60, policy=policy
        )
        assert compute == round(500 * policy.cost_per_ci_minute, 2)
        assert storage == 0.5
        assert total == round(compute + storage, 2)

    @pytest.mark.parametrize(
        "archived,age,idle,expected",
        [
            (True, 500, 0, "archived"),
            (False, 500, 200, "dormant"),
            (False, 30, 1, "new"),
            (False, 500, 90, "maintenance"),
            (False, 500, 5, "active"),
        ],
    )
    def test_lifecycle(self, policy, archived, age, idle, expected):
        """Lifecycle classification thresholds."""
        assert classify_lifecycle(archived, age, idle, policy) == expected

    def test_alignment_score(self):
        """Alignment components cap at 100."""
        assert calculate_alignment_score(True, 5, 4, 1.0, 1.0) == 100.0
        assert calculate_alignment_score(False, 0, 0, 0.0, 0.0) == 0.0

    def test_adoption_score(self, policy):
        """Adoption is the weighted share of used features."""
        score, level = calculate_adoption_score({"uses_ci": True, "uses_merge_requests": True, "uses_issues": True,
                                                 "uses_container_registry": True, "uses_environments": True}, policy)
        assert score == 85.0
        assert level == "high"
        assert calculate_adoption_score({}, policy) == (0.0, "none")
        assert calculate_adoption_score({"uses_wiki": True}, policy) == (5.0, "low")

    def test_collaboration_score(self):
        """Collaboration caps at 100."""
        assert calculate_collaboration_score(10, 10, 10.0, 10) == 100.0
        assert calculate_collaboration_score(0, 0, 0.0, 0) == 0.0

    def test_maturity_levels(self):
        """Maturity levels run from Initial to Optimizing."""
        assert calculate_maturity(False, False, False, False, 0, 0.0, 90) == (0.0, 1, "Initial")
        score, level, label = calculate_maturity(True, True, True, True, 52, 1.0, 364)
        assert score == 100.0
        assert (level, label) == (5, "Optimizing")

    @pytest.mark.parametrize("count,severity", [(0, "none"), (1, "low"), (3, "medium"), (5, "high")])
    def test_barrier_severity(self, count, severity):
        """Barrier severity grows with the number of barriers."""
        assert barrier_severity(count) == severity
