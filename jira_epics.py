"""
Epic grouping and sprint roll-ups.

Issues carry epic metadata of uneven quality: some have an epic key, some
only an epic name (which is sometimes really a key), some nothing at all.
group_by_epic() resolves one identity per epic, buckets the rest into a
single "No Epic" group and reports malformed issues instead of dropping
them silently.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, List, Optional

from jira_issues import Issue, issue_from_dict
from jira_security import looks_like_issue_key

logger = logging.getLogger(__name__)

NO_EPIC_KEY = "no-epic"
NO_EPIC_NAME = "No Epic"
NO_EPIC_COLOR = "#6b7280"
DEFAULT_EPIC_COLOR = "#3b82f6"

# Fields an issue needs to take part in grouping, with their payload names
REQUIRED_FIELDS = (("id", "id"), ("key", "key"), ("summary", "summary"), ("issue_type", "issueType"))


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero.

    Examples:
        >>> round_half_up(62.5)
        63
        >>> round_half_up(2.5)
        3
    """
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def completion_rate(completed: float, total: float) -> int:
    """Return completed/total as a rounded percentage, 0 when total is 0.

    Examples:
        >>> completion_rate(5, 8)
        63
        >>> completion_rate(0, 0)
        0
    """
    if total <= 0:
        return 0
    return round_half_up(completed / total * 100)


@dataclass(frozen=True)
class AggregationWarning:
    """An input issue that was left out of the aggregation, and why."""

    position: int
    issue_key: Optional[str]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"position": self.position, "issueKey": self.issue_key, "reason": self.reason}


@dataclass
class EpicGroup:
    epic_key: str
    epic_name: str
    epic_color: str
    issues: List[Issue] = field(default_factory=list)
    total_story_points: float = 0.0
    completed_story_points: float = 0.0
    completion_rate: int = 0

    @property
    def completed_issues(self) -> int:
        return sum(1 for issue in self.issues if issue.completed)

    def to_dict(self, include_issues: bool = True) -> Dict[str, Any]:
        data = {
            "epicKey": self.epic_key,
            "epicName": self.epic_name,
            "epicColor": self.epic_color,
            "totalStoryPoints": self.total_story_points,
            "completedStoryPoints": self.completed_story_points,
            "completionRate": self.completion_rate,
            "issueCount": len(self.issues),
            "completedIssues": self.completed_issues,
        }
        if include_issues:
            data["issues"] = [issue.to_dict() for issue in self.issues]
        return data


@dataclass(frozen=True)
class SprintSummary:
    total_issues: int = 0
    completed_issues: int = 0
    total_story_points: float = 0.0
    completed_story_points: float = 0.0
    completion_rate: int = 0

    @property
    def issue_completion_rate(self) -> int:
        return completion_rate(self.completed_issues, self.total_issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalIssues": self.total_issues,
            "completedIssues": self.completed_issues,
            "totalStoryPoints": self.total_story_points,
            "completedStoryPoints": self.completed_story_points,
            "completionRate": self.completion_rate,
            "issueCompletionRate": self.issue_completion_rate,
        }


@dataclass
class EpicAggregation:
    """Result of group_by_epic(): groups, sprint summary and dropped-issue warnings."""

    groups: List[EpicGroup]
    summary: SprintSummary
    warnings: List[AggregationWarning] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return bool(self.groups)

    def to_dict(self, include_issues: bool = True) -> Dict[str, Any]:
        return {
            "epics": [group.to_dict(include_issues) for group in self.groups],
            "summary": self.summary.to_dict(),
            "warnings": [warning.to_dict() for warning in self.warnings],
            "hasData": self.has_data,
        }


def resolve_epic_key(issue: Issue) -> str:
    """Return the grouping key for an issue's epic.

    Precedence: explicit epic key, then an epic name shaped like an issue
    key, then "name-<epic name>". Issues without any epic metadata map to
    "no-epic".

    Examples:
        >>> resolve_epic_key(Issue(epic_name="PROJ-7"))
        'PROJ-7'
        >>> resolve_epic_key(Issue(epic_name="Checkout"))
        'name-Checkout'
    """
    if issue.epic_key:
        return issue.epic_key
    if issue.epic_name:
        if looks_like_issue_key(issue.epic_name):
            return issue.epic_name.strip()
        return f"name-{issue.epic_name}"
    return NO_EPIC_KEY


def _coerce(item: Any, position: int, warnings: List[AggregationWarning]) -> Optional[Issue]:
    key = item.get("key") if isinstance(item, dict) else getattr(item, "key", None)
    try:
        issue = issue_from_dict(item)
    except (TypeError, ValueError) as exc:
        warnings.append(AggregationWarning(position=position, issue_key=key or None, reason=str(exc)))
        return None
    missing = [name for attr, name in REQUIRED_FIELDS if not getattr(issue, attr)]
    if missing:
        warnings.append(AggregationWarning(position=position, issue_key=issue.key or None,
                                           reason=f"missing {', '.join(missing)}"))
        return None
    return issue


def group_by_epic(issues: Iterable[Any]) -> EpicAggregation:
    """Group issues into epics and compute completion statistics.

    Args:
        issues: Issue instances or camelCase issue dicts. Entries that are
            not mappings, have no status, carry non-numeric story points or lack
            id, key, summary or issue type are dropped with a warning.

    Returns:
        EpicAggregation with groups sorted by completion rate (desc), then
        epic name (asc). Zero valid issues gives empty groups and
        ``has_data`` False.

    Example:
        >>> base = {"issueType": "Story", "epicKey": "E1"}
        >>> result = group_by_epic([
        ...     {**base, "id": "1", "key": "A-1", "summary": "a", "storyPoints": 5, "status": "Done"},
        ...     {**base, "id": "2", "key": "A-2", "summary": "b", "storyPoints": 3, "status": "To Do"},
        ... ])
        >>> result.groups[0].completion_rate
        63
    """
    warnings: List[AggregationWarning] = []
    groups: Dict[str, EpicGroup] = {}

    for position, item in enumerate(issues or []):
        issue = _coerce(item, position, warnings)
        if issue is None:
            continue

        epic_key = resolve_epic_key(issue)
        group = groups.get(epic_key)
        if group is None:
            if epic_key == NO_EPIC_KEY:
                group = EpicGroup(NO_EPIC_KEY, NO_EPIC_NAME, NO_EPIC_COLOR)
            else:
                group = EpicGroup(
                    epic_key=epic_key,
                    epic_name=issue.epic_name or issue.epic_key or epic_key,
                    epic_color=issue.epic_color or DEFAULT_EPIC_COLOR,
                )
            groups[epic_key] = group
        elif group.epic_color == DEFAULT_EPIC_COLOR and issue.epic_color and epic_key != NO_EPIC_KEY:
            group.epic_color = issue.epic_color

        group.issues.append(issue)
        group.total_story_points += issue.points
        if issue.completed:
            group.completed_story_points += issue.points

    for group in groups.values():
        group.completion_rate = completion_rate(group.completed_story_points, group.total_story_points)

    ordered = sorted(groups.values(), key=lambda g: (-g.completion_rate, g.epic_name))
    valid = [issue for group in ordered for issue in group.issues]

    if warnings:
        logger.warning(
            "Dropped %d malformed issue(s) during epic grouping: %s",
            len(warnings), "; ".join(f"#{w.position} {w.reason}" for w in warnings[:5]),
        )

    return EpicAggregation(groups=ordered, summary=summarize_issues(valid), warnings=warnings)


def summarize_issues(issues: Iterable[Issue]) -> SprintSummary:
    """Sprint-wide totals; the completion rate is point based."""
    issues = list(issues)
    total_points = sum(issue.points for issue in issues)
    completed_points = sum(issue.points for issue in issues if issue.completed)
    return SprintSummary(
        total_issues=len(issues),
        completed_issues=sum(1 for issue in issues if issue.completed),
        total_story_points=total_points,
        completed_story_points=completed_points,
        completion_rate=completion_rate(completed_points, total_points),
    )


def _breakdown(issues: Iterable[Issue], label) -> Dict[str, Dict[str, float]]:
    counts: Dict[str, Dict[str, float]] = {}
    for issue in issues:
        bucket = counts.setdefault(label(issue), {"total": 0, "completed": 0, "points": 0.0})
        bucket["total"] += 1
        bucket["points"] += issue.points
        if issue.completed:
            bucket["completed"] += 1
    return counts


def issue_type_breakdown(issues: Iterable[Issue]) -> Dict[str, Dict[str, float]]:
    """Return {issue type: {total, completed, points}} in first-seen order."""
    return _breakdown(issues, lambda issue: issue.issue_type or "Unknown")


def assignee_breakdown(issues: Iterable[Issue]) -> Dict[str, Dict[str, float]]:
    return _breakdown(issues, lambda issue: issue.assignee or "Unassigned")
