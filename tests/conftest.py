"""Shared pytest fixtures for sprint review testing."""
import base64
import io

import pytest
from PIL import Image


@pytest.fixture
def mock_jira_env(tmp_path, monkeypatch):
    """Create a temporary .jira_environment file for testing."""
    env_file = tmp_path / ".jira_environment"
    env_file.write_text("""
export JSR_JIRA_URL="https://test.atlassian.net"
export JSR_JIRA_USERNAME="test@example.com"
export JSR_JIRA_PASSWORD="test-api-token-123"
export JSR_FIELD_STORY_POINTS="customfield_10024"
export JSR_CACHE_TTL_SECONDS="120"
""")

    # Point jira_config to use this test file
    import jira_config
    monkeypatch.setattr(jira_config, "DEFAULT_ENV_PATH", env_file)
    for key in ("JSR_SSL_VERIFY", "REQUESTS_CA_BUNDLE", "JSR_MAX_CONCURRENT", "JSR_CACHE_TTL_SECONDS"):
        monkeypatch.delenv(key, raising=False)

    # Clear cache to force reload with test config
    jira_config.load_jira_env.cache_clear()
    jira_config.get_jira_session.cache_clear()

    return env_file


@pytest.fixture(autouse=True)
def reset_session_cache():
    """Reset config and session caches between tests to ensure isolation."""
    import jira_config
    jira_config.load_jira_env.cache_clear()
    jira_config.get_jira_session.cache_clear()
    yield
    jira_config.load_jira_env.cache_clear()
    jira_config.get_jira_session.cache_clear()


@pytest.fixture
def mock_responses():
    """Enable responses library for HTTP mocking."""
    import responses as resp_lib
    with resp_lib.RequestsMock() as rsps:
        yield rsps


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def png_data_url():
    buf = io.BytesIO()
    Image.new("RGB", (8, 6), color=(37, 99, 235)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture
def sample_issues():
    return [
        {"id": "101", "key": "PROJ-1", "summary": "Login with SSO", "status": "Done", "issueType": "Story",
         "assignee": "Alex Doe", "storyPoints": 5, "epicKey": "PROJ-100", "epicName": "Authentication",
         "epicColor": "#22c55e"},
        {"id": "102", "key": "PROJ-2", "summary": "Password reset", "status": "In Progress", "issueType": "Story",
         "assignee": "Sam Roe", "storyPoints": 3, "epicKey": "PROJ-100", "epicName": "Authentication"},
        {"id": "103", "key": "PROJ-3", "summary": "Fix dashboard crash", "status": "Closed", "issueType": "Bug",
         "assignee": "Alex Doe", "storyPoints": 2, "epicName": "Dashboard"},
        {"id": "104", "key": "PROJ-4", "summary": "Upgrade build tooling", "status": "To Do",
         "issueType": "Technical Task", "storyPoints": None},
    ]


@pytest.fixture
def sample_upcoming():
    return [
        {"id": "201", "key": "PROJ-10", "summary": "Audit log export", "status": "To Do", "issueType": "Story",
         "storyPoints": 8},
        {"id": "202", "key": "PROJ-11", "summary": "Rate limit API", "status": "To Do", "issueType": "Story"},
    ]


@pytest.fixture
def sample_metrics():
    return {
        "plannedItems": 12,
        "estimatedPoints": 20,
        "carryForwardPoints": 3,
        "committedBufferPoints": 2,
        "completedBufferPoints": 1,
        "testCoverage": 82,
        "sprintNumber": "42",
        "completedTotalPoints": 17,
        "completedAdjustedPoints": 16,
        "qualityChecklist": {"codeReview": "yes", "documentation": "partial", "performance": "na"},
    }


@pytest.fixture
def sample_presentation():
    """Five-slide review deck (one duplicate id that must be dropped)."""
    return {
        "id": "pres-1",
        "title": "Sprint 42 Review",
        "createdAt": "2024-05-03T10:00:00+00:00",
        "metadata": {"sprintName": "Sprint 42", "totalSlides": 5, "hasMetrics": True,
                     "demoStoriesCount": 1, "customSlidesCount": 1},
        "slides": [
            {"id": "s1", "title": "Sprint 42 Review", "type": "title", "order": 0, "content": "Team Phoenix"},
            {"id": "s2", "title": "Sprint Overview", "type": "summary", "order": 1,
             "content": "## Highlights\n- **SSO** shipped\n- Dashboard stabilised"},
            {"id": "s3", "title": "Login with SSO", "type": "demo-story", "order": 2, "storyId": "101",
             "content": {"accomplishments": "SSO login for all tenants", "businessValue": "Fewer support tickets",
                         "userImpact": "One click sign in"}},
            {"id": "s4", "title": "Sprint Metrics", "type": "metrics", "order": 3, "content": ""},
            {"id": "s5", "title": "Epic Progress", "type": "epic-breakdown", "order": 4, "content": ""},
            {"id": "s2", "title": "Duplicate overview", "type": "summary", "order": 9, "content": "ignored"},
        ],
    }


@pytest.fixture
def review_payload(sample_presentation, sample_issues, sample_upcoming, sample_metrics):
    return {
        "presentation": sample_presentation,
        "allIssues": sample_issues,
        "upcomingIssues": sample_upcoming,
        "sprintMetrics": sample_metrics,
    }
