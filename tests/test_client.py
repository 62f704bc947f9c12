"""Tests for TrackerClient (core/client.py) with requests patched out."""

from unittest.mock import Mock, patch

import pytest
import requests

from workitem_sync.core.client import TrackerClient


def _response(status=200, payload=None, content=b"x"):
    response = Mock()
    response.status_code = status
    response.content = content
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(
            f"{status} Error", response=response
        )
    else:
        response.raise_for_status.return_value = None
    return response


def test_session_headers(mock_config):
    """Session carries the bearer token, Accept and User-Agent headers."""
    client = TrackerClient(mock_config)
    headers = client.session.headers
    assert headers["Authorization"] == "Bearer ghp_test"
    assert headers["Accept"] == "application/vnd.github+json"
    assert headers["User-Agent"] == "workitem-sync"


def test_session_is_reused_per_thread(mock_config):
    client = TrackerClient(mock_config)
    assert client.session is client.session


def test_repo_path(mock_config):
    assert TrackerClient(mock_config).repo_path == "/repos/acme/widgets"


@patch("workitem_sync.core.client.requests.Session.request")
def test_rest_builds_url_and_decodes(mock_request, mock_config):
    mock_request.return_value = _response(payload={"ok": True})
    client = TrackerClient(mock_config)

    assert client.rest("GET", "/thing", params={"a": 1}) == {"ok": True}

    args, kwargs = mock_request.call_args
    assert args == ("GET", "https://api.example.com/thing")
    assert kwargs["params"] == {"a": 1}
    assert kwargs["timeout"] == (10, 30.0)


@patch("workitem_sync.core.client.requests.Session.request")
def test_rest_empty_response(mock_request, mock_config):
    mock_request.return_value = _response(status=204, content=b"")
    assert TrackerClient(mock_config).rest("DELETE", "/x") is None


@patch("workitem_sync.core.client.requests.Session.request")
def test_rest_raises_http_error_with_response(mock_request, mock_config):
    mock_request.return_value = _response(status=502)
    with pytest.raises(requests.HTTPError) as exc_info:
        TrackerClient(mock_config).rest("GET", "/x")
    assert exc_info.value.response.status_code == 502


@patch("workitem_sync.core.client.requests.Session.post")
def test_graphql_returns_data(mock_post, mock_config):
    mock_post.return_value = _response(payload={"data": {"viewer": "me"}})
    result = TrackerClient(mock_config).graphql("{ viewer }", {"a": 1})
    assert result == {"viewer": "me"}
    assert mock_post.call_args[1]["json"] == {
        "query": "{ viewer }",
        "variables": {"a": 1},
    }


@patch("workitem_sync.core.client.requests.Session.post")
def test_graphql_errors_raise(mock_post, mock_config):
    mock_post.return_value = _response(
        payload={"errors": [{"message": "bad field"}]}
    )
    with pytest.raises(requests.HTTPError, match="bad field"):
        TrackerClient(mock_config).graphql("{ nope }")


@patch("workitem_sync.core.client.requests.Session.request")
def test_get_rate_limit(mock_request, mock_config):
    mock_request.return_value = _response(
        payload={
            "rate": {
                "limit": 5000,
                "remaining": 12,
                "reset": 1_700_000_000,
                "used": 4988,
            }
        }
    )
    info = TrackerClient(mock_config).get_rate_limit()
    assert info.remaining == 12
    assert info.reset.timestamp() == 1_700_000_000


@patch("workitem_sync.core.client.requests.Session.request")
def test_list_issues_returns_raw_page(mock_request, mock_config):
    mock_request.return_value = _response(
        payload=[
            {"number": 1, "title": "issue"},
            {"number": 2, "title": "pr", "pull_request": {}},
        ]
    )
    issues = TrackerClient(mock_config).list_issues(labels=["a", "b"])
    assert [i["number"] for i in issues] == [1, 2]
    params = mock_request.call_args[1]["params"]
    assert params["labels"] == "a,b"
    assert params["state"] == "all"


def test_create_issue_requires_title(mock_config):
    with pytest.raises(ValueError, match="title is required"):
        TrackerClient(mock_config).create_issue({"title": "  "})


@patch("workitem_sync.core.client.requests.Session.request")
def test_update_issue_uses_patch(mock_request, mock_config):
    mock_request.return_value = _response(payload={"number": 3})
    TrackerClient(mock_config).update_issue(3, {"state": "closed"})
    args, kwargs = mock_request.call_args
    assert args == ("PATCH", "https://api.example.com/repos/acme/widgets/issues/3")
    assert kwargs["json"] == {"state": "closed"}
