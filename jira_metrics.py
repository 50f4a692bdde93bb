"""
Shared helpers for sprint metrics (velocity, quality checklist, efficiency).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from jira_epics import completion_rate, round_half_up
from jira_issues import Issue

logger = logging.getLogger(__name__)

QUALITY_SCORES: Dict[str, float] = {"yes": 1.0, "partial": 0.5, "no": 0.0}
NOT_APPLICABLE = "na"


def _number(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass
class SprintMetrics:
    planned_items: float = 0
    estimated_points: float = 0
    carry_forward_points: float = 0
    committed_buffer_points: float = 0
    completed_buffer_points: float = 0
    test_coverage: float = 0
    sprint_number: str = ""
    completed_total_points: float = 0
    completed_adjusted_points: float = 0
    quality_checklist: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["SprintMetrics"]:
        """Build metrics from the camelCase payload; None passes through."""
        if not data:
            return None
        checklist = data.get("qualityChecklist") or {}
        return cls(
            planned_items=_number(data.get("plannedItems")),
            estimated_points=_number(data.get("estimatedPoints")),
            carry_forward_points=_number(data.get("carryForwardPoints")),
            committed_buffer_points=_number(data.get("committedBufferPoints")),
            completed_buffer_points=_number(data.get("completedBufferPoints")),
            test_coverage=_number(data.get("testCoverage")),
            sprint_number=str(data.get("sprintNumber") or ""),
            completed_total_points=_number(data.get("completedTotalPoints")),
            completed_adjusted_points=_number(data.get("completedAdjustedPoints")),
            quality_checklist={str(k): str(v).lower() for k, v in dict(checklist).items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plannedItems": self.planned_items,
            "estimatedPoints": self.estimated_points,
            "carryForwardPoints": self.carry_forward_points,
            "committedBufferPoints": self.committed_buffer_points,
            "completedBufferPoints": self.completed_buffer_points,
            "testCoverage": self.test_coverage,
            "sprintNumber": self.sprint_number,
            "completedTotalPoints": self.completed_total_points,
            "completedAdjustedPoints": self.completed_adjusted_points,
            "qualityChecklist": dict(self.quality_checklist),
        }


def calculate_quality_score(checklist: Mapping[str, str]) -> int:
    """Return the checklist score as a rounded percentage.

    yes counts 1, partial 0.5, no 0; "na" items are left out of the
    average entirely. A checklist with nothing applicable scores 0.

    Examples:
        >>> calculate_quality_score({"tests": "yes", "docs": "partial", "perf": "na"})
        75
        >>> calculate_quality_score({"tests": "na"})
        0
    """
    scores: List[float] = []
    for item, status in (checklist or {}).items():
        status = str(status).lower()
        if status == NOT_APPLICABLE:
            continue
        if status not in QUALITY_SCORES:
            logger.warning("Ignoring unknown quality checklist value %r for %s", status, item)
            continue
        scores.append(QUALITY_SCORES[status])
    if not scores:
        return 0
    return round_half_up(sum(scores) / len(scores) * 100)


def velocity_percentage(metrics: Optional[SprintMetrics]) -> float:
    """Completed vs estimated points as a percentage; 0 without an estimate."""
    if not metrics or metrics.estimated_points <= 0:
        return 0.0
    return metrics.completed_total_points / metrics.estimated_points * 100


_NON_NEGATIVE = (
    ("plannedItems", "Planned items"),
    ("estimatedPoints", "Estimated points"),
    ("completedTotalPoints", "Completed points"),
)


def _checked_number(data: Mapping[str, Any], name: str, label: str, errors: List[str]) -> Optional[float]:
    value = data.get(name)
    if value is None or value == "":
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = None
    if isinstance(value, bool) or number is None or not math.isfinite(number):
        errors.append(f"{label} must be a number")
        return None
    return number


def validate_sprint_metrics(data: Any) -> List[str]:
    """Return the problems with a posted metrics payload; empty when it is usable.

    Unlike SprintMetrics.from_dict, which quietly reads junk numbers as 0,
    this rejects them. Absent numbers count as 0.

    Examples:
        >>> validate_sprint_metrics({"sprintNumber": "42", "testCoverage": 85})
        []
        >>> validate_sprint_metrics({"plannedItems": -1, "testCoverage": 120})
        ['Sprint number is required', 'Planned items cannot be negative', 'Test coverage must be between 0 and 100']
    """
    if not isinstance(data, Mapping):
        return [f"Metrics must be an object, got {type(data).__name__}"]
    errors: List[str] = []
    if not data.get("sprintNumber"):
        errors.append("Sprint number is required")
    for name, label in _NON_NEGATIVE:
        value = _checked_number(data, name, label, errors)
        if value is not None and value < 0:
            errors.append(f"{label} cannot be negative")
    coverage = _checked_number(data, "testCoverage", "Test coverage", errors)
    if coverage is not None and not 0 <= coverage <= 100:
        errors.append("Test coverage must be between 0 and 100")
    checklist = data.get("qualityChecklist")
    if checklist is not None and not isinstance(checklist, Mapping):
        errors.append("Quality checklist must be an object")
    return errors


def enhance_sprint_metrics(metrics: SprintMetrics) -> Dict[str, Any]:
    """Metrics JSON plus the derived scores stored with a sprint's history.

    The estimate is the commitment: velocityAchievement is completed over
    estimated points, and efficiencyScore averages it with the quality score.
    """
    quality = calculate_quality_score(metrics.quality_checklist)
    achievement = round_half_up(velocity_percentage(metrics))
    return {
        **metrics.to_dict(),
        "qualityScore": quality,
        "velocityAchievement": achievement,
        "efficiencyScore": round_half_up((achievement + quality) / 2),
        "velocity": metrics.completed_total_points,
        "velocityTarget": metrics.estimated_points,
    }


def efficiency_score(metrics: SprintMetrics, issues: Iterable[Issue]) -> float:
    """Weighted blend: velocity 40 %, quality checklist 30 %, issue completion 30 %."""
    issues = list(issues)
    done = sum(1 for issue in issues if issue.completed)
    return (
        velocity_percentage(metrics) * 0.4
        + calculate_quality_score(metrics.quality_checklist) * 0.3
        + completion_rate(done, len(issues)) * 0.3
    )


def performance_status(velocity: float) -> str:
    """Band a velocity percentage.

    Examples:
        >>> performance_status(92.0)
        'Excellent'
        >>> performance_status(61.0)
        'Fair'
    """
    if velocity >= 90:
        return "Excellent"
    if velocity >= 75:
        return "Good"
    if velocity >= 60:
        return "Fair"
    return "Needs Improvement"


def quality_status(score: float) -> str:
    if score >= 80:
        return "Excellent - High standards maintained"
    if score >= 60:
        return "Good - Minor improvements needed"
    return "Needs Improvement - Focus on quality required"


def metrics_recommendations(metrics: SprintMetrics) -> List[str]:
    recommendations = []
    if velocity_percentage(metrics) < 75:
        recommendations.append("Consider reducing sprint scope or improving estimation accuracy")
    if calculate_quality_score(metrics.quality_checklist) < 70:
        recommendations.append("Implement additional quality gates and review processes")
    if metrics.test_coverage < 80:
        recommendations.append("Increase test coverage through additional unit and integration tests")
    if not recommendations:
        recommendations.append("Continue current practices - performance is on track")
    return recommendations


def score_band(value: float, excellent: float, good: float, fair: float) -> str:
    """Return "excellent", "good", "fair" or "poor" for ``value``."""
    if value >= excellent:
        return "excellent"
    if value >= good:
        return "good"
    if value >= fair:
        return "fair"
    return "poor"


def executive_kpis(metrics: Optional[SprintMetrics], issues: Iterable[Issue]) -> Dict[str, Any]:
    """Headline KPIs for executive outputs, each with a status band.

    Without metrics every KPI is 0 and "poor".
    """
    if not metrics:
        return {
            "velocity": 0, "velocityStatus": "poor",
            "qualityScore": 0, "qualityStatus": "poor",
            "completionRate": 0, "completionStatus": "poor",
            "efficiencyScore": 0, "efficiencyStatus": "poor",
        }
    issues = list(issues)
    velocity = round_half_up(velocity_percentage(metrics))
    quality = calculate_quality_score(metrics.quality_checklist)
    completion = completion_rate(sum(1 for i in issues if i.completed), len(issues))
    efficiency = round_half_up((velocity + quality + completion) / 3)
    return {
        "velocity": velocity,
        "velocityStatus": score_band(velocity, 90, 75, 60),
        "qualityScore": quality,
        "qualityStatus": score_band(quality, 80, 60, 40),
        "completionRate": completion,
        "completionStatus": score_band(completion, 90, 75, 60),
        "efficiencyScore": efficiency,
        "efficiencyStatus": score_band(efficiency, 80, 60, 40),
    }


def business_impact(issues: Iterable[Issue], high_value_points: float = 8) -> Dict[str, int]:
    """Counts of delivered work by kind, for the business impact sections."""
    completed = [i for i in issues if i.completed]
    high_value = [i for i in completed if i.points >= high_value_points]
    completed_points = sum(i.points for i in completed)
    return {
        "highValueDeliverables": len(high_value),
        "highValuePercentage": completion_rate(sum(i.points for i in high_value), completed_points),
        "completedIssues": len(completed),
        "storiesCompleted": sum(1 for i in completed if i.issue_type.lower() == "story"),
        "bugFixes": sum(1 for i in completed if i.issue_type.lower() == "bug"),
        "technicalDebt": sum(1 for i in completed if i.issue_type.lower() in ("technical task", "tech debt")),
    }


def executive_recommendations(metrics: Optional[SprintMetrics], issues: Iterable[Issue]) -> List[str]:
    if not metrics:
        return ["Implement sprint metrics tracking to improve visibility and decision-making"]
    issues = list(issues)
    recommendations = []
    if velocity_percentage(metrics) < 75:
        recommendations.append("Review sprint planning process to improve estimation accuracy and scope management")
    if calculate_quality_score(metrics.quality_checklist) < 70:
        recommendations.append("Strengthen quality gates and review processes to maintain high standards")
    if completion_rate(sum(1 for i in issues if i.completed), len(issues)) < 80:
        recommendations.append("Analyze blockers and dependencies to improve sprint completion rates")
    if metrics.test_coverage < 80:
        recommendations.append("Increase test coverage through additional unit and integration testing")
    if not recommendations:
        recommendations.append("Continue current practices - performance is on track")
    return recommendations
