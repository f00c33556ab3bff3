from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock

import pytest
import requests

from wanikani_cache.client import (
    API_REVISION,
    MAX_IDS_PER_REQUEST,
    RetryPolicy,
    WaniKaniClient,
)
from wanikani_cache.errors import AuthError, HttpError, NetworkError, RateLimitError

BASE = "https://api.example.test/v2"


def response(status: int = 200, body: Any = None, headers: Optional[Dict[str, str]] = None) -> MagicMock:
    mock = MagicMock()
    mock.status_code = status
    mock.headers = headers or {}
    mock.json.return_value = body if body is not None else {}
    return mock


def page(data: List[Any], next_url: Optional[str] = None) -> Dict[str, Any]:
    return {"object": "collection", "data": data, "pages": {"next_url": next_url}}


def make_client(*responses: Any, token: Optional[str] = "secret", **kwargs: Any) -> WaniKaniClient:
    session = MagicMock()
    session.get.side_effect = list(responses)
    return WaniKaniClient(token=token, base_url=BASE, session=session, **kwargs)


def requested_urls(client: WaniKaniClient) -> List[str]:
    return [c.args[0] for c in client.session.get.call_args_list]


def test_missing_token_raises_before_any_request(monkeypatch: Any) -> None:
    monkeypatch.delenv("WANIKANI_API_TOKEN", raising=False)
    client = make_client(token=None)
    assert not client.has_credentials
    with pytest.raises(AuthError):
        client.fetch_user()
    client.session.get.assert_not_called()


def test_token_read_from_environment(monkeypatch: Any) -> None:
    monkeypatch.setenv("WANIKANI_API_TOKEN", "from-env")
    client = WaniKaniClient(session=MagicMock())
    assert client.token == "from-env"
    assert client.has_credentials


def test_request_sends_auth_and_revision_headers() -> None:
    client = make_client(response(body={"data": {"username": "koichi", "level": 3}}))
    user = client.fetch_user()

    assert user["username"] == "koichi"
    call = client.session.get.call_args
    assert call.args[0] == f"{BASE}/user"
    assert call.kwargs["headers"]["Authorization"] == "Bearer secret"
    assert call.kwargs["headers"]["Wanikani-Revision"] == API_REVISION
    assert call.kwargs["timeout"] == client.timeout


def test_rate_limit_carries_retry_after() -> None:
    client = make_client(response(429, headers={"Retry-After": "42"}))
    with pytest.raises(RateLimitError) as exc_info:
        client.fetch_subject(1)
    assert exc_info.value.status == 429
    assert exc_info.value.retry_after == 42.0


def test_rate_limit_without_header() -> None:
    client = make_client(response(429))
    with pytest.raises(RateLimitError) as exc_info:
        client.fetch_subject(1)
    assert exc_info.value.retry_after is None


def test_non_success_status_is_http_error() -> None:
    client = make_client(response(404))
    with pytest.raises(HttpError) as exc_info:
        client.fetch_subject(99999)
    assert exc_info.value.status == 404
    assert not isinstance(exc_info.value, RateLimitError)
    assert "404" in str(exc_info.value)


def test_transport_failure_is_network_error() -> None:
    client = make_client(requests.ConnectionError("connection refused"))
    with pytest.raises(NetworkError):
        client.fetch_subject(1)


def test_unreadable_body_is_network_error() -> None:
    bad = response()
    bad.json.side_effect = ValueError("Expecting value")
    client = make_client(bad)
    with pytest.raises(NetworkError):
        client.fetch_subject(1)


def test_no_retry_by_default() -> None:
    client = make_client(response(503), response(body={"id": 1}))
    with pytest.raises(HttpError):
        client.fetch_subject(1)
    assert client.session.get.call_count == 1


def test_retry_policy_retries_server_errors() -> None:
    slept: List[float] = []
    client = make_client(
        response(503),
        requests.Timeout("read timed out"),
        response(body={"id": 1, "object": "kanji"}),
        sleep=slept.append,
    )
    result = client.fetch_resource("/subjects/1", retry=RetryPolicy(attempts=3, backoff=0.5))
    assert result["id"] == 1
    assert client.session.get.call_count == 3
    assert slept == [0.5, 1.0]


def test_retry_policy_never_retries_rate_limits_or_client_errors() -> None:
    client = make_client(response(429), response(body={}))
    with pytest.raises(RateLimitError):
        client.fetch_resource("/subjects/1", retry=RetryPolicy(attempts=3))
    assert client.session.get.call_count == 1

    client = make_client(response(401), response(body={}))
    with pytest.raises(HttpError):
        client.fetch_resource("/subjects/1", retry=RetryPolicy(attempts=3))
    assert client.session.get.call_count == 1


def test_retry_policy_gives_up_after_attempts() -> None:
    client = make_client(response(500), response(502))
    with pytest.raises(HttpError) as exc_info:
        client.fetch_resource("/subjects/1", retry=RetryPolicy(attempts=2))
    assert exc_info.value.status == 502


def test_pagination_follows_next_url() -> None:
    client = make_client(
        response(body=page([{"id": 1}, {"id": 2}], f"{BASE}/subjects?levels=1&page_after_id=2")),
        response(body=page([{"id": 3}], None)),
    )
    items = client.fetch_subjects([1])

    assert [i["id"] for i in items] == [1, 2, 3]
    assert requested_urls(client) == [
        f"{BASE}/subjects?levels=1",
        f"{BASE}/subjects?levels=1&page_after_id=2",
    ]


def test_fetch_subjects_builds_level_and_type_filters() -> None:
    client = make_client(response(body=page([])))
    client.fetch_subjects([1, 2, 3], ["kanji", "vocabulary"])
    assert requested_urls(client) == [f"{BASE}/subjects?levels=1,2,3&types=kanji,vocabulary"]


def test_review_assignments_query() -> None:
    client = make_client(response(body=page([{"id": 10, "data": {}}])))
    assert len(client.fetch_review_assignments()) == 1
    assert requested_urls(client) == [f"{BASE}/assignments?immediately_available_for_review=true"]


def test_assignments_for_subjects_are_chunked() -> None:
    ids = list(range(1, 2501))
    responses = [
        response(body=page([
            {"id": 100000 + i, "data": {"subject_id": i, "srs_stage": 2, "started_at": "2026-01-01T00:00:00Z"}}
            for i in chunk_ids
        ]))
        for chunk_ids in ([1, 2], [1500], [2500])
    ]
    client = make_client(*responses)

    result = client.fetch_assignments_for_subjects(ids)

    urls = requested_urls(client)
    assert len(urls) == 3
    sizes = [len(url.split("subject_ids=")[1].split(",")) for url in urls]
    assert sizes == [MAX_IDS_PER_REQUEST, MAX_IDS_PER_REQUEST, 500]
    assert set(result) == {1, 2, 1500, 2500}
    assert result[1]["srs_stage"] == 2
    assert result[1]["started_at"] == "2026-01-01T00:00:00Z"
    assert result[1]["burned_at"] is None


def test_assignments_for_no_subjects_makes_no_request() -> None:
    client = make_client()
    assert client.fetch_assignments_for_subjects([]) == {}
    client.session.get.assert_not_called()
