from __future__ import annotations

import logging
from typing import Callable, Sequence
from urllib.parse import quote

import requests

from .models import FetchStrategy, ResolutionAttempt


logger = logging.getLogger(__name__)

LogCallback = Callable[[str, str], None]

DEFAULT_TIMEOUT: tuple[float, float] = (10, 15)


class FetchError(RuntimeError):
    def __init__(self, message: str, attempts: Sequence[ResolutionAttempt] = ()) -> None:
        super().__init__(message)
        self.attempts = list(attempts)


class HtmlPageDetected(RuntimeError):
    """A strategy reached a web page instead of media; the URL needs re-resolution."""

    def __init__(self, url: str, strategy: str) -> None:
        super().__init__(f"{url} returned a web page via {strategy}")
        self.url = url
        self.strategy = strategy


def _corsproxy(url: str) -> str:
    return f"https://corsproxy.io/?{quote(url, safe='')}"


def _allorigins(url: str) -> str:
    return f"https://api.allorigins.win/raw?url={quote(url, safe='')}"


DEFAULT_STRATEGIES: tuple[FetchStrategy, ...] = (
    FetchStrategy(label="direct", transform=lambda url: url),
    FetchStrategy(label="proxy corsproxy.io", transform=_corsproxy),
    FetchStrategy(label="proxy allorigins", transform=_allorigins),
)


def is_html_content_type(content_type: str | None) -> bool:
    return bool(content_type) and content_type.strip().lower().startswith("text/html")


def fetch_with_fallback(
    url: str,
    session: requests.Session | None = None,
    strategies: Sequence[FetchStrategy] = DEFAULT_STRATEGIES,
    timeout: float | tuple[float, float] = DEFAULT_TIMEOUT,
    log_cb: LogCallback | None = None,
) -> requests.Response:
    """Try each strategy in order and return the first streamed media response.

    The caller owns the returned response and must close it. A 2xx response
    served as ``text/html`` stops the loop with :class:`HtmlPageDetected`
    instead of moving on to the next strategy.
    """
    http = session or requests.Session()
    attempts: list[ResolutionAttempt] = []
    last_error: str | None = None

    for strategy in strategies:
        target = strategy.transform(url)
        _log(log_cb, f"Downloading via {strategy.label}...")

        try:
            response = http.get(target, stream=True, timeout=timeout, allow_redirects=True)
        except requests.RequestException as exc:
            last_error = f"network error via {strategy.label}: {exc}"
            attempts.append(ResolutionAttempt(url, strategy.label, "network_error", str(exc)))
            logger.warning("Fetch failed via %s: %s", strategy.label, exc)
            continue

        if response.ok:
            if is_html_content_type(response.headers.get("Content-Type")):
                response.close()
                attempts.append(ResolutionAttempt(url, strategy.label, "html_page"))
                raise HtmlPageDetected(url, strategy.label)
            attempts.append(ResolutionAttempt(url, strategy.label, "success"))
            return response

        status = response.status_code
        response.close()
        if status in (401, 403):
            logger.warning("Access denied via %s (HTTP %s)", strategy.label, status)
        last_error = f"HTTP error {status}"
        attempts.append(ResolutionAttempt(url, strategy.label, "http_error", str(status)))

    raise FetchError(last_error or f"unreachable: {url}", attempts)


def _log(log_cb: LogCallback | None, message: str, level: str = "info") -> None:
    if log_cb:
        log_cb(message, level)
