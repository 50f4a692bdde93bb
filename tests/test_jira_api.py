"""
Tests for jira_api - cached Jira REST client.
"""

import pytest
import requests
from responses import matchers

import jira_api
from jira_api import JiraApi, parse_iso8601_datetime
from jira_cache import RequestCache
from jira_config import DEFAULT_FIELD_IDS
from jsr_errors import UpstreamFetchError, ValidationError

JIRA = "https://jira.example.com"


@pytest.fixture
def api():
    return JiraApi(
        jira_url=JIRA + "/",
        session=requests.Session(),
        cache=RequestCache(ttl_seconds=300),
        field_ids=dict(DEFAULT_FIELD_IDS),
        timeout=5,
    )


def _sprint(i, state="closed", start=None):
    return {"id": i, "name": f"Sprint {i}", "state": state, "startDate": start, "originBoardId": 7}


def _raw_issue(key, status, points=None, epic=None):
    fields = {"summary": f"Summary {key}", "status": {"name": status}, "issuetype": {"name": "Story"}}
    if points is not None:
        fields["customfield_10127"] = points
    if epic:
        fields["epic"] = epic
    return {"id": key.split("-")[1], "key": key, "fields": fields}


class TestParseIso8601:
    def test_offset_without_colon(self):
        parsed = parse_iso8601_datetime("2024-01-15T09:00:00.000+0200")
        assert parsed.utcoffset().total_seconds() == 7200

    def test_naive_assumed_utc(self):
        assert parse_iso8601_datetime("2024-01-15T09:00:00").tzinfo is not None

    def test_empty(self):
        assert parse_iso8601_datetime("") is None


class TestConnection:
    def test_success(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/api/3/myself",
                           json={"accountId": "abc", "displayName": "Test User", "emailAddress": "t@example.com"})

        result = api.test_connection()

        assert result["success"] is True
        assert result["user"]["displayName"] == "Test User"

    def test_failure_is_reported_not_raised(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/api/3/myself", status=401, body="Unauthorized")

        result = api.test_connection()

        assert result["success"] is False
        assert "401" in result["error"]


class TestProjectsAndBoards:
    def test_only_software_projects(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/api/3/project", json=[
            {"id": 1, "key": "PROJ", "name": "Project", "projectTypeKey": "software"},
            {"id": 2, "key": "HR", "name": "People", "projectTypeKey": "business"},
            {"id": 3, "key": "OLD", "name": "Legacy"},
        ])

        projects = api.fetch_projects()

        assert [p["key"] for p in projects] == ["PROJ", "OLD"]
        assert projects[0]["id"] == "1"

    def test_projects_bad_payload(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/api/3/project", json={"values": []})
        with pytest.raises(UpstreamFetchError):
            api.fetch_projects()

    def test_fetch_boards_for_project(self, api, mock_responses):
        mock_responses.get(
            f"{JIRA}/rest/agile/1.0/board",
            match=[matchers.query_param_matcher({"projectKeyOrId": "PROJ"})],
            json={"values": [{"id": 7, "name": "PROJ board", "type": "scrum"}]},
        )
        assert api.fetch_boards("PROJ") == [{"id": 7, "name": "PROJ board", "type": "scrum"}]

    def test_fetch_boards_rejects_bad_key(self, api):
        with pytest.raises(ValidationError):
            api.fetch_boards("proj; drop")

    def test_board_type_shortcut(self, api):
        assert api.board_has_sprints(7, "scrum") is True
        assert api.board_has_sprints(7, "kanban") is True

    def test_board_features(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/agile/1.0/board/8/features",
                           json={"features": [{"feature": "sprints", "enabled": True}]})
        mock_responses.get(f"{JIRA}/rest/agile/1.0/board/9/features", status=400,
                           body='{"errorMessages":["Board is not an agility board"]}')
        mock_responses.get(f"{JIRA}/rest/agile/1.0/board/10/features", status=404)

        assert api.board_has_sprints(8, "simple") is True
        assert api.board_has_sprints(9) is True
        assert api.board_has_sprints(10) is False

    def test_projects_with_boards(self, api, mock_responses, mock_jira_env, monkeypatch):
        mock_responses.get(f"{JIRA}/rest/api/3/project", json=[
            {"id": 1, "key": "PROJ", "name": "Project"},
            {"id": 2, "key": "OPS", "name": "Operations"},
        ])
        calls = {}

        def fake_fetch(url, keys, **kwargs):
            calls.update(url=url, keys=keys, **kwargs)
            return {
                "PROJ": [{"id": 7, "name": "PROJ board", "type": "scrum"}],
                "OPS": [{"id": 8, "name": "A", "type": "scrum"}, {"id": 9, "name": "B", "type": "kanban"}],
            }

        monkeypatch.setattr(jira_api, "fetch_boards_for_projects", fake_fetch)

        result = api.fetch_projects_with_boards(max_concurrent=2)

        assert calls["keys"] == ["PROJ", "OPS"]
        assert calls["cache"] is api.cache
        assert calls["max_concurrent"] == 2
        assert result[0]["boardId"] == "7"
        assert result[0]["boardName"] == "PROJ board"
        assert result[1]["boardId"] is None
        assert [b["id"] for b in result[1]["boards"]] == ["8", "9"]


class TestSprints:
    def test_paginates_and_sorts(self, api, mock_responses):
        url = f"{JIRA}/rest/agile/1.0/board/7/sprint"
        first_page = [_sprint(i, start=f"2024-01-{(i % 28) + 1:02d}T09:00:00.000Z") for i in range(1, 51)]
        mock_responses.get(url, match=[matchers.query_param_matcher({"startAt": "0", "maxResults": "50"})],
                           json={"values": first_page, "isLast": False})
        mock_responses.get(url, match=[matchers.query_param_matcher({"startAt": "50", "maxResults": "50"})],
                           json={"values": [_sprint(51, "active", "2023-06-01T09:00:00.000Z"),
                                            _sprint(52, "future")], "isLast": True})

        sprints = api.fetch_sprints(7)

        assert len(sprints) == 52
        assert sprints[0]["id"] == "51"
        assert sprints[0]["state"] == "active"
        # undated future sprint sorts after every dated one
        assert sprints[-1]["id"] == "52"
        assert sprints[1]["startDate"] >= sprints[2]["startDate"]

    def test_short_page_stops(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/agile/1.0/board/7/sprint", json={"values": [_sprint(1)]})
        assert [s["id"] for s in api.fetch_sprints("7")] == ["1"]

    def test_invalid_board_id(self, api):
        with pytest.raises(ValidationError):
            api.fetch_sprints("7 OR 1=1")

    def test_http_error(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/agile/1.0/board/7/sprint", status=404, body="Board not found")

        with pytest.raises(UpstreamFetchError) as exc_info:
            api.fetch_sprints(7)

        assert exc_info.value.status_code == 404


class TestIssues:
    def test_search_builds_issues(self, api, mock_responses):
        mock_responses.post(
            f"{JIRA}/rest/api/3/search",
            match=[matchers.json_params_matcher({"jql": "sprint = 42"}, strict_match=False)],
            json={"issues": [
                _raw_issue("PROJ-1", "Done", 5, epic={"key": "PROJ-100", "name": "Auth", "color": {"key": "#22c55e"}}),
                _raw_issue("PROJ-2", "In Progress", "3"),
            ]},
        )

        issues = api.fetch_sprint_issues(42)

        assert [i.key for i in issues] == ["PROJ-1", "PROJ-2"]
        assert issues[0].story_points == 5.0
        assert issues[0].epic_key == "PROJ-100"
        assert issues[0].completed
        assert issues[1].story_points == 3.0
        assert not issues[1].completed

    def test_empty_jql(self, api):
        with pytest.raises(ValidationError):
            api.fetch_issues_by_jql("   ")

    def test_bad_search_payload(self, api, mock_responses):
        mock_responses.post(f"{JIRA}/rest/api/3/search", json={"total": 0})
        with pytest.raises(UpstreamFetchError):
            api.fetch_issues_by_jql("project = PROJ")

    def test_malformed_json(self, api, mock_responses):
        mock_responses.post(f"{JIRA}/rest/api/3/search", body="<html>gateway</html>")
        with pytest.raises(UpstreamFetchError, match="malformed JSON"):
            api.fetch_issues_by_jql("project = PROJ")

    def test_connection_error(self, api, mock_responses):
        mock_responses.post(f"{JIRA}/rest/api/3/search", body=requests.ConnectionError("refused"))
        with pytest.raises(UpstreamFetchError):
            api.fetch_issues_by_jql("project = PROJ")

    def test_sprint_with_issues(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/agile/1.0/board/7/sprint",
                           json={"values": [_sprint(41), _sprint(42, "active")], "isLast": True})
        mock_responses.post(f"{JIRA}/rest/api/3/search", json={"issues": [_raw_issue("PROJ-1", "Done", 2)]})

        data = api.fetch_sprint_with_issues(7, 42)

        assert data["sprint"]["id"] == "42"
        assert len(data["availableSprints"]) == 2
        assert data["issues"][0].key == "PROJ-1"

    def test_sprint_with_issues_requires_ids(self, api):
        with pytest.raises(ValidationError):
            api.fetch_sprint_with_issues(None, 42)


class TestCaching:
    def test_second_read_is_served_from_cache(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/api/3/project", json=[{"id": 1, "key": "PROJ", "name": "P"}])

        api.fetch_projects()
        api.fetch_projects()

        assert len(mock_responses.calls) == 1
        assert api.get_cache_stats()["hits"] == 1

    def test_clear_cache_forces_refetch(self, api, mock_responses):
        mock_responses.get(f"{JIRA}/rest/api/3/project", json=[{"id": 1, "key": "PROJ", "name": "P"}])

        api.fetch_projects()
        assert api.clear_cache("fetch_projects") == 1
        api.fetch_projects()

        assert len(mock_responses.calls) == 2

    def test_errors_are_not_cached(self, api, mock_responses):
        url = f"{JIRA}/rest/api/3/project"
        mock_responses.get(url, status=500)
        mock_responses.get(url, json=[])

        with pytest.raises(UpstreamFetchError):
            api.fetch_projects()
        assert api.fetch_projects() == []
