"""
Issue read model shared by the Jira client, the epic aggregator and the renderers.

Jira returns rich-text fields either as plain strings or as Atlassian Document
Format (ADF) trees, and custom fields as anything at all. Field values are
classified into a small tagged union first, then flattened to plain text.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from jira_config import DEFAULT_FIELD_IDS
from jira_security import looks_like_issue_key

logger = logging.getLogger(__name__)

DONE_STATUS_MARKERS = ("done", "closed", "resolved")

# ADF nodes that end a line of text when flattened
_ADF_BLOCK_NODES = {"paragraph", "heading", "listItem", "blockquote", "codeBlock", "rule", "tableRow"}


@dataclass(frozen=True)
class PlainTextValue:
    text: str


@dataclass(frozen=True)
class AdfValue:
    document: Dict[str, Any]


@dataclass(frozen=True)
class OpaqueValue:
    raw: Any


FieldValue = Union[PlainTextValue, AdfValue, OpaqueValue]


def parse_field_value(raw: Any) -> Optional[FieldValue]:
    """Classify a raw Jira field value.

    Examples:
        >>> parse_field_value("Fixed login")
        PlainTextValue(text='Fixed login')
        >>> parse_field_value({"type": "doc", "content": []})
        AdfValue(document={'type': 'doc', 'content': []})
        >>> parse_field_value(None) is None
        True
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        return PlainTextValue(raw)
    if isinstance(raw, dict) and raw.get("type") == "doc":
        return AdfValue(raw)
    return OpaqueValue(raw)


def adf_to_text(node: Any) -> str:
    """Flatten an ADF node (usually the root "doc") into plain text.

    Examples:
        >>> adf_to_text({"type": "doc", "content": [
        ...     {"type": "paragraph", "content": [{"type": "text", "text": "Hello"}]}]})
        'Hello'
    """
    return _adf_walk(node).strip()


def _adf_walk(node: Any) -> str:
    if isinstance(node, list):
        return "".join(_adf_walk(child) for child in node)
    if not isinstance(node, dict):
        return ""
    node_type = node.get("type")
    if node_type == "text":
        return str(node.get("text", ""))
    if node_type == "hardBreak":
        return "\n"
    attrs = node.get("attrs") or {}
    if node_type in ("mention", "emoji"):
        return str(attrs.get("text", ""))
    if node_type == "inlineCard":
        return str(attrs.get("url", ""))
    text = _adf_walk(node.get("content", []))
    if node_type == "listItem":
        text = f"- {text.strip()}"
    if node_type in _ADF_BLOCK_NODES:
        return text.rstrip("\n") + "\n"
    return text


def field_value_text(value: Optional[FieldValue]) -> str:
    """Return the plain-text rendering of any FieldValue variant."""
    if value is None:
        return ""
    if isinstance(value, PlainTextValue):
        return value.text.strip()
    if isinstance(value, AdfValue):
        return adf_to_text(value.document)
    raw = value.raw
    if isinstance(raw, dict):
        for key in ("value", "name", "displayName"):
            if isinstance(raw.get(key), str):
                return raw[key]
        return ""
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return str(raw)
    if isinstance(raw, list):
        return ", ".join(t for t in (field_value_text(parse_field_value(item)) for item in raw) if t)
    return ""


def coerce_story_points(value: Any) -> Optional[float]:
    """Return story points as float, None when unset.

    Raises:
        ValueError: If the value is set but not a finite number

    Examples:
        >>> coerce_story_points(5)
        5.0
        >>> coerce_story_points("?") is None
        True
    """
    if value in (None, "", "?"):
        return None
    if isinstance(value, bool):
        raise ValueError(f"Story points must be numeric, got {value!r}")
    try:
        points = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Story points must be numeric, got {value!r}") from None
    if not math.isfinite(points):
        raise ValueError(f"Story points must be finite, got {value!r}")
    return points


def format_points(points: Optional[float]) -> str:
    """Render story points without a trailing ".0" for whole numbers."""
    if points is None:
        return "0"
    if float(points).is_integer():
        return str(int(points))
    return f"{points:g}"


def is_issue_completed(status: Optional[str]) -> bool:
    """Return True when a Jira status name represents finished work.

    Workflows use varying done-state labels, so this matches on markers
    rather than one literal.

    Examples:
        >>> is_issue_completed("Done")
        True
        >>> is_issue_completed("Closed - Won't Fix")
        True
        >>> is_issue_completed("In Review")
        False
    """
    if not status:
        return False
    lowered = status.lower()
    return any(marker in lowered for marker in DONE_STATUS_MARKERS)


@dataclass(frozen=True)
class Issue:
    """Immutable sprint issue as used by the export pipeline."""

    id: str = ""
    key: str = ""
    summary: str = ""
    status: str = ""
    issue_type: str = ""
    description: Optional[str] = None
    assignee: Optional[str] = None
    story_points: Optional[float] = None
    is_subtask: bool = False
    parent_key: Optional[str] = None
    epic_key: Optional[str] = None
    epic_name: Optional[str] = None
    epic_color: Optional[str] = None
    release_notes: Optional[str] = None

    @property
    def completed(self) -> bool:
        return is_issue_completed(self.status)

    @property
    def points(self) -> float:
        """Story points with unset counted as 0."""
        return self.story_points or 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Return the camelCase representation used by HTTP payloads."""
        data = asdict(self)
        return {_CAMEL_NAMES.get(name, name): value for name, value in data.items()}


_CAMEL_NAMES = {
    "issue_type": "issueType",
    "story_points": "storyPoints",
    "is_subtask": "isSubtask",
    "parent_key": "parentKey",
    "epic_key": "epicKey",
    "epic_name": "epicName",
    "epic_color": "epicColor",
    "release_notes": "releaseNotes",
}
_SNAKE_NAMES = {camel: snake for snake, camel in _CAMEL_NAMES.items()}


def _optional_text(value: Any) -> Optional[str]:
    text = field_value_text(parse_field_value(value))
    return text or None


def _optional_str(value: Any) -> Optional[str]:
    """Scalar payload value as stripped text; None, "" and containers give None."""
    if value is None or isinstance(value, (Mapping, list, tuple, bool)):
        return None
    return str(value).strip() or None


def issue_from_dict(data: Mapping[str, Any]) -> Issue:
    """Build an Issue from a camelCase (or snake_case) mapping.

    Raises:
        TypeError: If ``data`` is not a mapping
        ValueError: If status is missing or story points are not numeric
    """
    if isinstance(data, Issue):
        return data
    if not isinstance(data, Mapping):
        raise TypeError(f"Issue must be a mapping, got {type(data).__name__}")

    values = {_SNAKE_NAMES.get(name, name): value for name, value in data.items()}
    status = values.get("status")
    if isinstance(status, Mapping):
        status = status.get("name")
    if not isinstance(status, str) or not status.strip():
        raise ValueError("missing status")

    return Issue(
        id=str(values.get("id") or ""),
        key=str(values.get("key") or ""),
        summary=str(values.get("summary") or ""),
        status=status.strip(),
        issue_type=str(values.get("issue_type") or ""),
        description=_optional_text(values.get("description")),
        assignee=_optional_str(values.get("assignee")),
        story_points=coerce_story_points(values.get("story_points")),
        is_subtask=bool(values.get("is_subtask", False)),
        parent_key=_optional_str(values.get("parent_key")),
        epic_key=_optional_str(values.get("epic_key")),
        epic_name=_optional_str(values.get("epic_name")),
        epic_color=_optional_str(values.get("epic_color")),
        release_notes=_optional_text(values.get("release_notes")),
    )


def issues_from_dicts(items: Iterable[Any]) -> List[Issue]:
    """Convert a payload list to Issues, skipping and logging malformed entries."""
    issues = []
    for index, item in enumerate(items or []):
        try:
            issues.append(issue_from_dict(item))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping malformed issue at position %d: %s", index, exc)
    return issues


def _extract_epic(fields: Mapping[str, Any], epic_name_field: str):
    epic_key = epic_name = epic_color = None

    epic = fields.get("epic")
    if isinstance(epic, Mapping) and (epic.get("key") or epic.get("name")):
        epic_key = epic.get("key")
        epic_name = epic.get("name")
        color = epic.get("color")
        if isinstance(color, Mapping):
            epic_color = color.get("key")
    else:
        name_value = fields.get(epic_name_field)
        if isinstance(name_value, str) and name_value.strip():
            epic_name = name_value.strip()
            # Epic name fields sometimes carry the epic's key instead of its name
            if looks_like_issue_key(epic_name):
                epic_key = epic_name

    if epic_key and not epic_name:
        epic_name = epic_key

    parent = fields.get("parent")
    if not epic_key and not epic_name and isinstance(parent, Mapping):
        epic_key = parent.get("key")
        epic_name = (parent.get("fields") or {}).get("summary")

    return epic_key, epic_name, epic_color


def issue_from_jira(raw: Mapping[str, Any], field_ids: Optional[Dict[str, str]] = None) -> Issue:
    """Build an Issue from a raw Jira REST issue.

    Epic metadata is taken from, in order: the ``epic`` field, the epic-name
    custom field (a value shaped like an issue key also becomes the epic key),
    then the parent issue.

    Args:
        raw: Issue JSON as returned by /rest/api/3/search
        field_ids: Custom field ids (story_points, epic_name, release_notes)

    Returns:
        Issue instance

    Example:
        >>> issue = issue_from_jira({"id": "1", "key": "PROJ-1", "fields": {
        ...     "summary": "Login", "status": {"name": "Done"},
        ...     "issuetype": {"name": "Story"}, "customfield_10127": 3}})
        >>> issue.story_points, issue.completed
        (3.0, True)
    """
    ids = {**DEFAULT_FIELD_IDS, **(field_ids or {})}
    fields = raw.get("fields") or {}
    status = (fields.get("status") or {}).get("name") or ""
    issue_type = fields.get("issuetype") or {}
    assignee = fields.get("assignee") or {}
    parent = fields.get("parent")

    try:
        story_points = coerce_story_points(fields.get(ids["story_points"]))
    except ValueError:
        logger.warning("Ignoring non-numeric story points on %s", raw.get("key"))
        story_points = None

    epic_key, epic_name, epic_color = _extract_epic(fields, ids["epic_name"])

    return Issue(
        id=str(raw.get("id") or ""),
        key=str(raw.get("key") or ""),
        summary=str(fields.get("summary") or ""),
        status=status,
        issue_type=str(issue_type.get("name") or ""),
        description=_optional_text(fields.get("description")),
        assignee=assignee.get("displayName") or None,
        story_points=story_points,
        is_subtask=bool(parent),
        parent_key=parent.get("key") if isinstance(parent, Mapping) else None,
        epic_key=epic_key,
        epic_name=epic_name,
        epic_color=epic_color,
        release_notes=_optional_text(fields.get(ids["release_notes"])),
    )


def search_fields(field_ids: Optional[Dict[str, str]] = None) -> List[str]:
    """Return the field list requested from /rest/api/3/search."""
    ids = {**DEFAULT_FIELD_IDS, **(field_ids or {})}
    return [
        "summary", "description", "status", "assignee", "issuetype",
        "parent", "epic", ids["story_points"], ids["epic_name"], ids["release_notes"],
    ]
