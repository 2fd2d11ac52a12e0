import http.client
import io
import json
from typing import Any
from urllib import error

import pytest

from app.services.meetgeek_api_client import MeetGeekApiClient, MeetGeekApiError


class _MockResponse:
    def __init__(self, payload: Any = None, raw_body: bytes | None = None) -> None:
        self._payload = raw_body if raw_body is not None else json.dumps(payload).encode("utf-8")

    def __enter__(self) -> "_MockResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # type: ignore[no-untyped-def]
        return False

    def read(self) -> bytes:
        return self._payload


def _http_error(status_code: int, body: str = "") -> error.HTTPError:
    return error.HTTPError(
        url="https://api.meetgeek.ai/v1/meetings/meeting-1",
        code=status_code,
        msg="error",
        hdrs=None,
        fp=io.BytesIO(body.encode("utf-8")),
    )


def test_fetch_meeting_sends_bearer_token_and_returns_payload(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, Any] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["url"] = req.full_url
        captured["authorization"] = req.get_header("Authorization")
        captured["method"] = req.get_method()
        captured["timeout"] = timeout
        return _MockResponse({"meeting_id": "meeting-1", "title": "Discovery call"})

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", fake_urlopen)

    client = MeetGeekApiClient(
        api_url="https://api.meetgeek.ai/",
        api_key="secret-key",
        timeout_seconds=4.0,
    )
    payload = client.fetch_meeting("meeting-1")

    assert payload == {"meeting_id": "meeting-1", "title": "Discovery call"}
    assert captured["url"] == "https://api.meetgeek.ai/v1/meetings/meeting-1"
    assert captured["authorization"] == "Bearer secret-key"
    assert captured["method"] == "GET"
    assert captured["timeout"] == 4.0


def test_api_key_with_bearer_prefix_is_not_prefixed_twice(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, Any] = {}

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        captured["authorization"] = req.get_header("Authorization")
        return _MockResponse([])

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", fake_urlopen)

    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="Bearer already-prefixed")
    client.fetch_transcript("meeting-1")

    assert captured["authorization"] == "Bearer already-prefixed"


def test_resource_paths_target_meeting_subresources(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    urls: list[str] = []

    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        urls.append(req.full_url)
        return _MockResponse({})

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", fake_urlopen)

    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key")
    client.fetch_transcript("meeting 1")
    client.fetch_summary("meeting 1")
    client.fetch_highlights("meeting 1")

    assert urls == [
        "https://api.meetgeek.ai/v1/meetings/meeting%201/transcript",
        "https://api.meetgeek.ai/v1/meetings/meeting%201/summary",
        "https://api.meetgeek.ai/v1/meetings/meeting%201/highlights",
    ]


def test_not_found_is_reported_as_not_ready(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(404, '{"message": "not found"}')

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", fake_urlopen)

    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key")

    assert client.fetch_meeting("meeting-1") is None
    assert client.fetch_transcript("meeting-1") is None


def test_server_error_raises_with_status_code(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def fake_urlopen(req, timeout=10):  # type: ignore[no-untyped-def]
        raise _http_error(500, "upstream exploded")

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", fake_urlopen)

    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key")
    with pytest.raises(MeetGeekApiError, match="HTTP 500") as exc_info:
        client.fetch_summary("meeting-1")

    assert exc_info.value.status_code == 500


def test_connection_and_timeout_errors_are_wrapped(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def refused(req, timeout=10):  # type: ignore[no-untyped-def]
        raise error.URLError("connection refused")

    def slow(req, timeout=10):  # type: ignore[no-untyped-def]
        raise TimeoutError("timed out")

    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key", timeout_seconds=2.0)

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", refused)
    with pytest.raises(MeetGeekApiError, match="connection error"):
        client.fetch_meeting("meeting-1")

    monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", slow)
    with pytest.raises(MeetGeekApiError, match="timed out after 2.0s"):
        client.fetch_meeting("meeting-1")


def test_invalid_json_and_non_object_metadata_raise(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key")

    monkeypatch.setattr(
        "app.services.meetgeek_api_client.request.urlopen",
        lambda req, timeout=10: _MockResponse(raw_body=b"<html>"),
    )
    with pytest.raises(MeetGeekApiError, match="invalid JSON"):
        client.fetch_transcript("meeting-1")

    monkeypatch.setattr(
        "app.services.meetgeek_api_client.request.urlopen",
        lambda req, timeout=10: _MockResponse(["not", "an", "object"]),
    )
    with pytest.raises(MeetGeekApiError, match="JSON object"):
        client.fetch_meeting("meeting-1")


def test_undecodable_body_is_reported_as_invalid_json(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(
        "app.services.meetgeek_api_client.request.urlopen",
        lambda req, timeout=10: _MockResponse(raw_body=b"\xff\xfe\x00garbage"),
    )

    with pytest.raises(MeetGeekApiError, match="invalid JSON"):
        MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key").fetch_transcript("meeting-1")


def test_dropped_connections_are_wrapped(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    class _TruncatedResponse(_MockResponse):
        def read(self) -> bytes:
            raise http.client.IncompleteRead(b'{"sentences": [')

    def reset(req, timeout=10):  # type: ignore[no-untyped-def]
        raise ConnectionResetError(104, "Connection reset by peer")

    def closed(req, timeout=10):  # type: ignore[no-untyped-def]
        raise http.client.RemoteDisconnected("Remote end closed connection without response")

    client = MeetGeekApiClient(api_url="https://api.meetgeek.ai", api_key="key")

    for urlopen in (reset, closed, lambda req, timeout=10: _TruncatedResponse({})):
        monkeypatch.setattr("app.services.meetgeek_api_client.request.urlopen", urlopen)
        with pytest.raises(MeetGeekApiError, match="connection failed") as exc_info:
            client.fetch_highlights("meeting-1")
        assert exc_info.value.status_code is None
