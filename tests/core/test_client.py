from unittest.mock import MagicMock

import pytest

from story_archiver.core import client as client_module
from story_archiver.core.client import DEFAULT_RETRY_AFTER_SECONDS, RateLimitedClient, parse_retry_after


def _response(status_code, headers=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.headers = headers or {}
    response.text = text
    return response


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def session():
    mock_session = MagicMock()
    mock_session.headers = {}
    return mock_session


def test_waits_for_retry_after_then_retries(session, sleeps):
    ok = _response(200, text="body")
    session.get.side_effect = [_response(429, {"retry-after": "5"}), ok]
    client = RateLimitedClient(session=session, timeout=10, sleep=sleeps.append)

    response = client.get("https://www.royalroad.com/fiction/1")

    assert response is ok
    assert sleeps == [5]
    assert session.get.call_count == 2
    session.get.assert_called_with("https://www.royalroad.com/fiction/1", params=None, timeout=10)


def test_missing_retry_after_waits_default(session, sleeps):
    session.get.side_effect = [_response(429), _response(429, {"retry-after": "soon"}), _response(200)]
    client = RateLimitedClient(session=session, sleep=sleeps.append)

    client.get("https://archiveofourown.org/works/1")

    assert sleeps == [DEFAULT_RETRY_AFTER_SECONDS, DEFAULT_RETRY_AFTER_SECONDS]


@pytest.mark.parametrize("status", [200, 404, 500, 503])
def test_other_statuses_pass_through(session, sleeps, status):
    response = _response(status)
    session.get.return_value = response
    client = RateLimitedClient(session=session, sleep=sleeps.append)

    assert client.get("https://example.com") is response
    assert sleeps == []
    assert session.get.call_count == 1


def test_get_with_query_sends_params(session, sleeps):
    session.get.return_value = _response(200)
    client = RateLimitedClient(session=session, timeout=3, sleep=sleeps.append)

    client.get_with_query("https://archiveofourown.org/works/1", [("view_adult", "true")])

    session.get.assert_called_once_with(
        "https://archiveofourown.org/works/1", params=[("view_adult", "true")], timeout=3
    )


def test_transport_errors_propagate(session, sleeps):
    session.get.side_effect = ConnectionError("down")
    client = RateLimitedClient(session=session, sleep=sleeps.append)
    with pytest.raises(ConnectionError):
        client.get("https://example.com")


def test_sets_user_agent(session):
    RateLimitedClient(session=session)
    assert "User-Agent" in session.headers


@pytest.mark.parametrize("value,expected", [(None, 60), ("5", 5), (" 12 ", 12), ("Wed, 21 Oct 2015 07:28:00 GMT", 60)])
def test_parse_retry_after(value, expected):
    assert parse_retry_after(value) == expected


def test_configure_client_replaces_shared_client(monkeypatch):
    monkeypatch.setattr(client_module, "_client", None)
    first = client_module.get_client()
    assert client_module.get_client() is first

    configured = client_module.configure_client(timeout=7)
    assert configured.timeout == 7
    assert client_module.get_client() is configured
