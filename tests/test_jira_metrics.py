"""
Tests for jira_metrics - velocity, quality checklist and executive KPIs.
"""

import pytest

from jira_issues import Issue
from jira_metrics import (
    SprintMetrics,
    business_impact,
    calculate_quality_score,
    efficiency_score,
    enhance_sprint_metrics,
    executive_kpis,
    executive_recommendations,
    metrics_recommendations,
    performance_status,
    quality_status,
    score_band,
    validate_sprint_metrics,
    velocity_percentage,
)


class TestQualityScore:
    def test_mixed_checklist(self):
        assert calculate_quality_score({"a": "yes", "b": "partial", "c": "na"}) == 75

    def test_all_not_applicable_scores_zero(self):
        assert calculate_quality_score({"a": "na", "b": "NA"}) == 0

    def test_empty_checklist(self):
        assert calculate_quality_score({}) == 0

    def test_unknown_values_ignored(self, caplog):
        assert calculate_quality_score({"a": "yes", "b": "maybe"}) == 100
        assert "maybe" in caplog.text

    def test_case_insensitive(self):
        assert calculate_quality_score({"a": "YES", "b": "No"}) == 50


class TestSprintMetrics:
    def test_from_dict(self, sample_metrics):
        metrics = SprintMetrics.from_dict(sample_metrics)

        assert metrics.estimated_points == 20
        assert metrics.sprint_number == "42"
        assert metrics.quality_checklist["codeReview"] == "yes"
        assert metrics.to_dict()["completedTotalPoints"] == 17

    def test_none_passes_through(self):
        assert SprintMetrics.from_dict(None) is None
        assert SprintMetrics.from_dict({}) is None

    def test_junk_numbers_default_to_zero(self):
        metrics = SprintMetrics.from_dict({"estimatedPoints": "twenty", "testCoverage": None})
        assert metrics.estimated_points == 0
        assert metrics.test_coverage == 0


class TestVelocity:
    def test_velocity_percentage(self, sample_metrics):
        assert velocity_percentage(SprintMetrics.from_dict(sample_metrics)) == pytest.approx(85.0)

    def test_no_estimate(self):
        assert velocity_percentage(SprintMetrics(completed_total_points=5)) == 0.0
        assert velocity_percentage(None) == 0.0

    @pytest.mark.parametrize("velocity,expected", [
        (90, "Excellent"), (75, "Good"), (60, "Fair"), (59.9, "Needs Improvement"),
    ])
    def test_performance_status(self, velocity, expected):
        assert performance_status(velocity) == expected

    def test_quality_status(self):
        assert quality_status(80).startswith("Excellent")
        assert quality_status(60).startswith("Good")
        assert quality_status(10).startswith("Needs Improvement")

    def test_efficiency_score(self):
        metrics = SprintMetrics(estimated_points=10, completed_total_points=10,
                                quality_checklist={"a": "yes"})
        issues = [Issue(status="Done"), Issue(status="Open")]
        assert efficiency_score(metrics, issues) == pytest.approx(40 + 30 + 15)


class TestRecommendations:
    def test_on_track(self):
        metrics = SprintMetrics(estimated_points=10, completed_total_points=10,
                                test_coverage=90, quality_checklist={"a": "yes"})
        assert metrics_recommendations(metrics) == ["Continue current practices - performance is on track"]

    def test_everything_low(self):
        metrics = SprintMetrics(estimated_points=10, completed_total_points=5, test_coverage=10)
        assert len(metrics_recommendations(metrics)) == 3

    def test_executive_without_metrics(self):
        assert "metrics tracking" in executive_recommendations(None, [])[0]

    def test_executive_completion(self):
        metrics = SprintMetrics(estimated_points=10, completed_total_points=10,
                                test_coverage=90, quality_checklist={"a": "yes"})
        recs = executive_recommendations(metrics, [Issue(status="Open")])
        assert recs == ["Analyze blockers and dependencies to improve sprint completion rates"]


class TestExecutiveKpis:
    def test_without_metrics(self):
        kpis = executive_kpis(None, [])
        assert kpis["velocity"] == 0
        assert kpis["efficiencyStatus"] == "poor"

    def test_with_metrics(self, sample_metrics, sample_issues):
        from jira_issues import issues_from_dicts

        kpis = executive_kpis(SprintMetrics.from_dict(sample_metrics), issues_from_dicts(sample_issues))

        assert kpis["velocity"] == 85
        assert kpis["velocityStatus"] == "good"
        assert kpis["qualityScore"] == 75
        assert kpis["completionRate"] == 50
        assert kpis["completionStatus"] == "poor"
        assert kpis["efficiencyScore"] == 70

    @pytest.mark.parametrize("value,expected", [(95, "excellent"), (80, "good"), (65, "fair"), (10, "poor")])
    def test_score_band(self, value, expected):
        assert score_band(value, 90, 75, 60) == expected


class TestBusinessImpact:
    def test_counts(self):
        issues = [
            Issue(status="Done", issue_type="Story", story_points=8.0),
            Issue(status="Done", issue_type="Bug", story_points=2.0),
            Issue(status="Closed", issue_type="Technical Task"),
            Issue(status="Open", issue_type="Story", story_points=13.0),
        ]

        impact = business_impact(issues)

        assert impact["completedIssues"] == 3
        assert impact["highValueDeliverables"] == 1
        assert impact["highValuePercentage"] == 80
        assert impact["storiesCompleted"] == 1
        assert impact["bugFixes"] == 1
        assert impact["technicalDebt"] == 1


class TestValidateSprintMetrics:
    def test_valid(self, sample_metrics):
        assert validate_sprint_metrics(sample_metrics) == []

    def test_absent_numbers_are_allowed(self):
        assert validate_sprint_metrics({"sprintNumber": "7"}) == []

    def test_collects_every_problem(self):
        errors = validate_sprint_metrics({
            "plannedItems": -1, "estimatedPoints": -2, "completedTotalPoints": -3, "testCoverage": 101,
        })

        assert errors == [
            "Sprint number is required",
            "Planned items cannot be negative",
            "Estimated points cannot be negative",
            "Completed points cannot be negative",
            "Test coverage must be between 0 and 100",
        ]

    @pytest.mark.parametrize("field,value,message", [
        ("estimatedPoints", "twenty", "Estimated points must be a number"),
        ("plannedItems", True, "Planned items must be a number"),
        ("testCoverage", float("nan"), "Test coverage must be a number"),
        ("completedTotalPoints", [5], "Completed points must be a number"),
        ("qualityChecklist", ["yes"], "Quality checklist must be an object"),
    ])
    def test_rejects_junk(self, sample_metrics, field, value, message):
        sample_metrics[field] = value
        assert validate_sprint_metrics(sample_metrics) == [message]

    @pytest.mark.parametrize("coverage", [0, "100", 55.5])
    def test_coverage_bounds_are_inclusive(self, sample_metrics, coverage):
        sample_metrics["testCoverage"] = coverage
        assert validate_sprint_metrics(sample_metrics) == []

    def test_not_an_object(self):
        assert validate_sprint_metrics("fast") == ["Metrics must be an object, got str"]


class TestEnhanceSprintMetrics:
    def test_derived_scores(self, sample_metrics):
        enhanced = enhance_sprint_metrics(SprintMetrics.from_dict(sample_metrics))

        assert enhanced["qualityScore"] == 75
        assert enhanced["velocityAchievement"] == 85
        assert enhanced["efficiencyScore"] == 80
        assert (enhanced["velocity"], enhanced["velocityTarget"]) == (17, 20)
        assert enhanced["sprintNumber"] == "42"

    def test_without_estimate(self):
        enhanced = enhance_sprint_metrics(SprintMetrics(completed_total_points=5,
                                                        quality_checklist={"tests": "yes"}))

        assert enhanced["velocityAchievement"] == 0
        assert enhanced["efficiencyScore"] == 50
