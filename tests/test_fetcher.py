from __future__ import annotations

import pytest
import requests

from http_fakes import FakeHttp, FakeResponse, html_page, video
from video_slicer.fetcher import (
    DEFAULT_STRATEGIES,
    FetchError,
    HtmlPageDetected,
    fetch_with_fallback,
)

URL = "https://cdn.example.com/clip.mp4"


def test_all_strategies_failing_stops_after_three_attempts() -> None:
    http = FakeHttp(
        get=[
            requests.ConnectionError("reset"),
            FakeResponse(status_code=403, content_type=None),
            FakeResponse(status_code=502, content_type=None),
        ]
    )

    with pytest.raises(FetchError) as excinfo:
        fetch_with_fallback(URL, session=http)

    assert len(http.get_calls) == 3
    assert str(excinfo.value) == "HTTP error 502"
    assert [item.outcome for item in excinfo.value.attempts] == [
        "network_error",
        "http_error",
        "http_error",
    ]


def test_html_page_short_circuits_before_next_strategy() -> None:
    page = html_page()
    http = FakeHttp(get=[page, video()])

    with pytest.raises(HtmlPageDetected):
        fetch_with_fallback(URL, session=http)

    assert len(http.get_calls) == 1
    assert page.closed


def test_first_success_wins() -> None:
    first_ok = video()
    http = FakeHttp(get=[FakeResponse(status_code=503, content_type=None), first_ok, video()])

    response = fetch_with_fallback(URL, session=http)

    assert response is first_ok
    assert len(http.get_calls) == 2


def test_strategies_rewrite_url_in_priority_order() -> None:
    http = FakeHttp(
        get=[
            requests.Timeout("slow"),
            requests.Timeout("slow"),
            video(),
        ]
    )

    fetch_with_fallback(URL, session=http)

    urls = [call[0] for call in http.get_calls]
    assert urls[0] == URL
    assert urls[1] == "https://corsproxy.io/?https%3A%2F%2Fcdn.example.com%2Fclip.mp4"
    assert urls[2] == "https://api.allorigins.win/raw?url=https%3A%2F%2Fcdn.example.com%2Fclip.mp4"
    assert [s.label for s in DEFAULT_STRATEGIES][0] == "direct"


def test_generic_content_type_is_returned() -> None:
    http = FakeHttp(get=[video(content_type="application/octet-stream")])

    response = fetch_with_fallback(URL, session=http)

    assert response.headers["Content-Type"] == "application/octet-stream"


def test_empty_strategy_list_reports_unreachable() -> None:
    with pytest.raises(FetchError, match="unreachable"):
        fetch_with_fallback(URL, session=FakeHttp(), strategies=())
