import os
import sys
# Ensure project root is importable for tests, regardless of runner CWD
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from typing import Any, Dict, List, Optional

import pytest

ENV_VARS = (
    "JIRA_BASE_URL", "JIRA_USERNAME", "JIRA_EMAIL", "JIRA_TOKEN",
    "JIRA_API_TOKEN", "JIRA_JQL", "REPORT_DIR",
)


class FakeResponse:
    def __init__(
        self,
        status_code: int = 200,
        json_data: Optional[Any] = None,
        text: str = "",
        reason: str = "OK",
        headers: Optional[Dict[str, str]] = None,
    ):
        self.status_code = status_code
        self._json_data = json_data
        self.text = text
        self.reason = reason
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._json_data


class FakeSession:
    """Records GET calls and replays a fixed response (or raises)."""

    def __init__(self, response: Optional[FakeResponse] = None, exc: Optional[Exception] = None):
        self.response = response
        self.exc = exc
        self.calls: List[Dict[str, Any]] = []
        self.closed = 0

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response

    def close(self):
        self.closed += 1


def make_issue(key="TEST-1", summary="Sum", assignee="Dev A", project=("Proj", "PRJ"), worklogs=()):
    fields: Dict[str, Any] = {"worklog": {"worklogs": list(worklogs)}}
    if summary is not None:
        fields["summary"] = summary
    if assignee is not None:
        fields["assignee"] = {"displayName": assignee}
    if project is not None:
        fields["project"] = {"name": project[0], "key": project[1]}
    issue: Dict[str, Any] = {"fields": fields}
    if key is not None:
        issue["key"] = key
    return issue


def make_worklog(started, seconds=3600, author="Dev B", comment="Work"):
    wl: Dict[str, Any] = {"started": started, "timeSpentSeconds": seconds}
    if author is not None:
        wl["updateAuthor"] = {"displayName": author}
    if comment is not None:
        wl["comment"] = comment
    return wl


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer JIRA_* variables out of config resolution."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def cfg():
    return {
        "base_url": "https://example.atlassian.net",
        "username": "user@example.com",
        "token": "token123",
        "jql": "timespent > 0",
        "fields": "worklog,summary,assignee,project,key",
        "expand": "worklog",
        "api_version": "2",
        "timeout": 5,
        "verify_ssl": True,
        "ca_bundle": "",
        "http_proxy": "",
        "https_proxy": "",
        "report_dir": "",
    }


@pytest.fixture
def tmp_config_file(tmp_path):
    """Create a minimal valid config.ini and return its path."""
    p = tmp_path / "config.ini"
    p.write_text(
        "[jira]\n"
        "base_url = https://example.atlassian.net/\n"
        "username = user@example.com\n"
        "api_token = token123\n"
        "verify_ssl = true\n",
        encoding="utf-8",
    )
    return p


# Expose utilities for tests
__all__ = ["FakeResponse", "FakeSession", "make_issue", "make_worklog"]
