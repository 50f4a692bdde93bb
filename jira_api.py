"""
Synchronous Jira REST client for the sprint review.

Every read goes through a RequestCache so a review session that keeps
switching between boards and sprints talks to Jira once per resource per TTL.
Failures surface as UpstreamFetchError; bad caller input as ValidationError.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import requests

from jira_async import (
    features_enable_sprints,
    fetch_boards_for_projects,
    is_not_agility_board_error,
    parse_boards,
    sprint_capability_from_type,
)
from jira_cache import RequestCache, derive_cache_key
from jira_config import (
    get_cache_ttl,
    get_field_ids,
    get_jira_auth,
    get_jira_session,
    get_jira_url,
    get_max_concurrent,
    get_request_timeout,
    get_ssl_verify,
)
from jira_issues import Issue, issue_from_jira, search_fields
from jira_security import get_safe_logger, sanitize_jql_value
from jsr_errors import UpstreamFetchError, ValidationError

logger = get_safe_logger(__name__)

SPRINT_PAGE_SIZE = 50
SEARCH_MAX_RESULTS = 1000

_OFFSET_NO_COLON = re.compile(r'([+-]\d{2})(\d{2})$')


@lru_cache(maxsize=128)
def parse_iso8601_datetime(iso_string: str) -> Optional[datetime]:
    """Parse a Jira ISO 8601 timestamp; None if unparseable.

    Supported formats:
    - 2024-01-15T09:00:00.000Z
    - 2024-01-15T09:00:00.000+0000
    - 2024-01-15T09:00:00+02:00

    Examples:
        >>> parse_iso8601_datetime("2024-01-15T09:00:00.000Z")
        datetime.datetime(2024, 1, 15, 9, 0, tzinfo=datetime.timezone.utc)
        >>> parse_iso8601_datetime("invalid") is None
        True
    """
    if not iso_string:
        return None
    text = iso_string.strip().replace('Z', '+00:00')
    text = _OFFSET_NO_COLON.sub(r'\1:\2', text)
    try:
        parsed = datetime.fromisoformat(text)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sprint_sort_key(sprint: Dict[str, Any]):
    started = parse_iso8601_datetime(sprint.get("startDate") or "")
    return (sprint.get("state") != "active", -(started.timestamp() if started else 0.0))


def _validated_id(value: Any, what: str) -> str:
    try:
        return sanitize_jql_value(value, "id")
    except ValueError as exc:
        raise ValidationError(f"Valid {what} ID is required: {exc}") from exc


class JiraApi:
    """Cached Jira client.

    Args:
        jira_url: Base URL; defaults to JSR_JIRA_URL
        session: requests.Session; defaults to the shared retrying session
        cache: RequestCache; defaults to a new cache with JSR_CACHE_TTL_SECONDS
        field_ids: Custom field ids; defaults to the JSR_FIELD_* settings
        timeout: Per-request timeout in seconds; defaults to JSR_REQUEST_TIMEOUT

    Example:
        >>> api = JiraApi()
        >>> sprints = api.fetch_sprints(42)
        >>> issues = api.fetch_sprint_issues(int(sprints[0]["id"]))
    """

    def __init__(
        self,
        jira_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        cache: Optional[RequestCache] = None,
        field_ids: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ):
        self.jira_url = (jira_url or get_jira_url()).rstrip("/")
        self.session = session or get_jira_session()
        self.cache = cache if cache is not None else RequestCache(ttl_seconds=get_cache_ttl())
        self.field_ids = field_ids or get_field_ids()
        self.timeout = timeout or get_request_timeout()

    def _request(
        self,
        operation: str,
        path: str,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.jira_url}{path}"
        key = derive_cache_key(operation, {"url": url, "method": method, "params": params, "body": json_body})
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit for %s", operation)
            return cached

        try:
            resp = self.session.request(method, url, params=params, json=json_body, timeout=self.timeout)
        except requests.Timeout as exc:
            raise UpstreamFetchError(f"Jira {operation} timed out", operation=operation) from exc
        except requests.RequestException as exc:
            raise UpstreamFetchError(f"Jira {operation} failed: {exc}", operation=operation) from exc

        if not resp.ok:
            raise UpstreamFetchError(
                f"Jira {operation} failed with HTTP {resp.status_code}",
                status_code=resp.status_code,
                operation=operation,
                body=resp.text[:500],
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamFetchError(
                f"Jira {operation} returned malformed JSON", status_code=resp.status_code, operation=operation
            ) from exc

        self.cache.set(key, data)
        return data

    def test_connection(self) -> Dict[str, Any]:
        """Check credentials against /myself.

        Returns:
            {"success": True, "user": {...}} or {"success": False, "error": "..."}
        """
        try:
            data = self._request("connection_test", "/rest/api/3/myself")
        except UpstreamFetchError as exc:
            logger.error("Jira connection failed: %s", exc)
            return {"success": False, "error": str(exc)}
        user = {
            "accountId": data.get("accountId"),
            "displayName": data.get("displayName"),
            "emailAddress": data.get("emailAddress"),
        }
        logger.info("Jira connection successful")
        return {"success": True, "user": user}

    def fetch_projects(self) -> List[Dict[str, str]]:
        """Return software projects as [{id, key, name}]."""
        data = self._request("fetch_projects", "/rest/api/3/project")
        if not isinstance(data, list):
            raise UpstreamFetchError("Invalid response format from Jira projects API", operation="fetch_projects")
        projects = [
            {"id": str(p.get("id", "")), "key": str(p.get("key", "")), "name": str(p.get("name", ""))}
            for p in data
            if isinstance(p, dict) and p.get("projectTypeKey") in (None, "software")
        ]
        logger.info("Found %d software projects", len(projects))
        return projects

    def fetch_boards(self, project_key: Optional[str] = None) -> List[Dict[str, Any]]:
        params = None
        if project_key:
            try:
                params = {"projectKeyOrId": sanitize_jql_value(project_key, "project")}
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        data = self._request("fetch_boards", "/rest/agile/1.0/board", params=params)
        return parse_boards(data)

    def board_has_sprints(self, board_id: Any, board_type: Optional[str] = None) -> bool:
        """Return True when the board supports sprints.

        Scrum and kanban boards are accepted by type. Other boards are asked
        via the features endpoint; a 400 "not an agility board" answer counts
        as sprint-capable, any other failure as not.
        """
        decided = sprint_capability_from_type(board_type)
        if decided is not None:
            return decided
        board = _validated_id(board_id, "board")
        try:
            data = self._request("board_features", f"/rest/agile/1.0/board/{board}/features")
        except UpstreamFetchError as exc:
            if is_not_agility_board_error(exc):
                return True
            logger.warning("Failed to fetch features for board %s: %s", board, exc)
            return False
        return features_enable_sprints(data)

    def fetch_projects_with_boards(self, max_concurrent: Optional[int] = None) -> List[Dict[str, Any]]:
        """Return projects with their sprint-capable boards.

        When a project has exactly one board, ``boardId``/``boardName`` are
        filled in so the caller can preselect it.
        """
        projects = self.fetch_projects()
        if not projects:
            return []
        boards_by_project = fetch_boards_for_projects(
            self.jira_url,
            [p["key"] for p in projects],
            auth=get_jira_auth(),
            ssl_verify=get_ssl_verify(),
            cache=self.cache,
            max_concurrent=max_concurrent or get_max_concurrent(),
            timeout=self.timeout,
        )
        combined = []
        for project in projects:
            boards = [{**b, "id": str(b["id"])} for b in boards_by_project.get(project["key"], [])]
            single = boards[0] if len(boards) == 1 else None
            combined.append({
                **project,
                "boards": boards,
                "boardId": single["id"] if single else None,
                "boardName": single["name"] if single else None,
            })
        return combined

    def fetch_sprints(self, board_id: Any) -> List[Dict[str, Any]]:
        """Return every sprint of a board, active first, then newest start date first."""
        board = _validated_id(board_id, "board")
        sprints: List[Dict[str, Any]] = []
        start_at = 0
        while True:
            page = self._request(
                "fetch_sprints",
                f"/rest/agile/1.0/board/{board}/sprint",
                params={"startAt": start_at, "maxResults": SPRINT_PAGE_SIZE},
            )
            if not isinstance(page, dict) or not isinstance(page.get("values"), list):
                raise UpstreamFetchError("Invalid response format from Jira sprints API", operation="fetch_sprints")
            values = page["values"]
            sprints.extend(
                {
                    "id": str(s.get("id", "")),
                    "name": s.get("name", ""),
                    "state": s.get("state", ""),
                    "startDate": s.get("startDate"),
                    "endDate": s.get("endDate"),
                    "boardId": s.get("originBoardId"),
                    "goal": s.get("goal"),
                }
                for s in values
                if isinstance(s, dict)
            )
            if page.get("isLast") or len(values) < SPRINT_PAGE_SIZE:
                break
            start_at += SPRINT_PAGE_SIZE

        sprints.sort(key=_sprint_sort_key)
        logger.info("Found %d sprints for board %s", len(sprints), board)
        return sprints

    def fetch_issues_by_jql(self, jql: str, operation: str = "fetch_issues_by_jql") -> List[Issue]:
        if not jql or not jql.strip():
            raise ValidationError("JQL query is required")
        data = self._request(
            operation,
            "/rest/api/3/search",
            method="POST",
            json_body={"jql": jql.strip(), "maxResults": SEARCH_MAX_RESULTS, "fields": search_fields(self.field_ids)},
        )
        if not isinstance(data, dict) or not isinstance(data.get("issues"), list):
            raise UpstreamFetchError("Invalid response format from Jira search API", operation=operation)
        return [issue_from_jira(raw, self.field_ids) for raw in data["issues"] if isinstance(raw, dict)]

    def fetch_sprint_issues(self, sprint_id: Any) -> List[Issue]:
        sprint = _validated_id(sprint_id, "sprint")
        issues = self.fetch_issues_by_jql(f"sprint = {sprint}", operation="fetch_sprint_issues")
        logger.info("Found %d issues for sprint %s", len(issues), sprint)
        return issues

    def fetch_sprint_with_issues(self, board_id: Any, sprint_id: Any) -> Dict[str, Any]:
        """Return {"sprint", "issues", "availableSprints"} for one board/sprint pair."""
        if not board_id or not sprint_id:
            raise ValidationError("Board ID and Sprint ID are required")
        sprints = self.fetch_sprints(board_id)
        issues = self.fetch_sprint_issues(sprint_id)
        selected = next((s for s in sprints if s["id"] == str(sprint_id)), None)
        return {"sprint": selected, "issues": issues, "availableSprints": sprints}

    def clear_cache(self, pattern: Optional[str] = None) -> int:
        return self.cache.clear(pattern)

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
