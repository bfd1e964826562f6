from __future__ import annotations

import time
from enum import Enum
from typing import Callable, Sequence
from urllib.parse import unquote, urlsplit, urlunsplit

import requests

from .fetcher import DEFAULT_STRATEGIES, FetchError, HtmlPageDetected, fetch_with_fallback
from .models import Config, FetchStrategy, FileSource
from .social_extractor import ExtractionError, extract_social_video


LogCallback = Callable[[str, str], None]

PRIMARY_DOMAIN = "youtube.com"
MIRROR_DOMAIN = "ssyoutube.com"

SOCIAL_PATTERNS = (
    "youtube.com",
    "youtu.be",
    "facebook.com",
    "tiktok.com",
    "instagram.com",
    "x.com",
    "twitter.com",
    "ssyoutube.com",
)

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".mov", ".webm", ".m4v")

# Extraction calls allowed per phase (social lookup, web page recovery).
MAX_EXTRACTION_ATTEMPTS = 2


class ResolutionError(RuntimeError):
    pass


class ResolverState(str, Enum):
    EXTRACT = "EXTRACT"
    FETCH = "FETCH"
    HTML_RECOVERY = "HTML_RECOVERY"
    MATERIALIZE = "MATERIALIZE"


def is_valid_media_url(url: str) -> bool:
    parsed = urlsplit(url)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def has_mirror_marker(url: str) -> bool:
    return MIRROR_DOMAIN in urlsplit(url).netloc.lower()


def apply_mirror_rewrite(url: str) -> str:
    parts = urlsplit(url)
    host = parts.netloc.lower()
    if PRIMARY_DOMAIN not in host or MIRROR_DOMAIN in host:
        return url
    start = host.index(PRIMARY_DOMAIN)
    netloc = parts.netloc[:start] + MIRROR_DOMAIN + parts.netloc[start + len(PRIMARY_DOMAIN):]
    return urlunsplit(parts._replace(netloc=netloc))


def strip_mirror(url: str) -> str:
    parts = urlsplit(url)
    host = parts.netloc.lower()
    if MIRROR_DOMAIN not in host:
        return url
    start = host.index(MIRROR_DOMAIN)
    netloc = parts.netloc[:start] + PRIMARY_DOMAIN + parts.netloc[start + len(MIRROR_DOMAIN):]
    return urlunsplit(parts._replace(netloc=netloc))


def is_social_link(url: str) -> bool:
    lowered = url.lower()
    return any(pattern in lowered for pattern in SOCIAL_PATTERNS)


def extraction_candidates(url: str) -> list[str]:
    candidates = [url]
    if has_mirror_marker(url):
        candidates.append(strip_mirror(url))
    return candidates[:MAX_EXTRACTION_ATTEMPTS]


def derive_filename(url: str, now: Callable[[], float] = time.time) -> str:
    last_segment = unquote(urlsplit(url).path.rsplit("/", 1)[-1])
    if last_segment.lower().endswith(MEDIA_EXTENSIONS):
        return last_segment
    return f"video_{int(now() * 1000)}.mp4"


class UrlResolver:
    """Turns a user-supplied link into a downloaded :class:`FileSource`.

    The flow is a bounded state machine::

        EXTRACT (social links only) -> FETCH -> MATERIALIZE
                                         |
                                         +-> HTML_RECOVERY -> MATERIALIZE

    Every extraction phase makes at most ``MAX_EXTRACTION_ATTEMPTS`` calls,
    so the number of network round trips is bounded for any input.

    ``HTML_RECOVERY`` runs for any link whose fetch lands on a web page, even
    when the domain heuristic did not flag it as social. Links the heuristic
    misses are only recovered after a failed fetch, never proactively.
    """

    def __init__(
        self,
        config: Config,
        session: requests.Session | None = None,
        strategies: Sequence[FetchStrategy] = DEFAULT_STRATEGIES,
        log_cb: LogCallback | None = None,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.strategies = strategies
        self.log_cb = log_cb
        self.now = now

    def resolve(self, raw_url: str) -> FileSource:
        typed_url = (raw_url or "").strip()
        if not typed_url:
            raise ResolutionError("please enter a URL")
        if not is_valid_media_url(typed_url):
            raise ResolutionError("only public http/https links are supported")

        url = apply_mirror_rewrite(typed_url)
        if url != typed_url:
            self._log("Rewrote the YouTube link to its ssyoutube mirror.")
        self._log(f"Resolving link: {url}")

        target = url
        used_extraction = False
        response: requests.Response | None = None
        state = ResolverState.EXTRACT if is_social_link(url) else ResolverState.FETCH

        while True:
            if state is ResolverState.MATERIALIZE:
                return self._materialize(response, target)

            if state is ResolverState.EXTRACT:
                self._log("Social media link detected, looking up the source video...")
                extracted = self._extract_first(url)
                if extracted:
                    target = extracted
                    used_extraction = True
                    self._log("Found the direct video link.", "success")
                else:
                    target = typed_url
                    self._log("Could not resolve the link automatically, trying a direct download...", "warning")
                state = ResolverState.FETCH

            elif state is ResolverState.FETCH:
                try:
                    response = self._fetch(target)
                except HtmlPageDetected as exc:
                    if used_extraction:
                        raise ResolutionError(
                            "server returned a web page instead of a media file"
                        ) from exc
                    state = ResolverState.HTML_RECOVERY
                except FetchError as exc:
                    raise ResolutionError(f"could not download the video: {exc}") from exc
                else:
                    state = ResolverState.MATERIALIZE

            elif state is ResolverState.HTML_RECOVERY:
                self._log("This link is a web page, looking for a video inside it...")
                response, target = self._recover_from_html(url)
                used_extraction = True
                state = ResolverState.MATERIALIZE

    def _extract(self, url: str) -> str:
        return extract_social_video(
            url,
            api_url=self.config.extractor_api_url,
            session=self.session,
            timeout=self.config.request_timeout_sec,
        )

    def _fetch(self, url: str) -> requests.Response:
        return fetch_with_fallback(
            url,
            session=self.session,
            strategies=self.strategies,
            log_cb=self.log_cb,
        )

    def _extract_first(self, url: str) -> str | None:
        for candidate in extraction_candidates(url):
            try:
                return self._extract(candidate)
            except ExtractionError as exc:
                self._log(f"Extraction failed for {candidate}: {exc}", "warning")
        return None

    def _recover_from_html(self, url: str) -> tuple[requests.Response, str]:
        for candidate in extraction_candidates(url):
            try:
                extracted = self._extract(candidate)
                return self._fetch(extracted), extracted
            except (ExtractionError, FetchError, HtmlPageDetected) as exc:
                self._log(f"No video found via {candidate}: {exc}", "warning")
        raise ResolutionError("no direct media found")

    def _materialize(self, response: requests.Response, target: str) -> FileSource:
        max_bytes = self.config.max_video_mb * 1024 * 1024
        chunks: list[bytes] = []
        total = 0

        try:
            content_type = response.headers.get("Content-Type") or ""
            if content_type and not content_type.lower().startswith("video/"):
                self._log(
                    f"Downloaded content is {content_type}, it may not be processable.",
                    "warning",
                )

            content_length = response.headers.get("Content-Length")
            if content_length:
                try:
                    if int(content_length) > max_bytes:
                        raise ResolutionError("source video exceeds the size limit")
                except ValueError:
                    pass

            self._log("Saving the video to memory...")
            for chunk in response.iter_content(chunk_size=256 * 1024):
                if not chunk:
                    continue
                total += len(chunk)
                if total > max_bytes:
                    raise ResolutionError("source video exceeds the size limit")
                chunks.append(chunk)
        except requests.RequestException as exc:
            raise ResolutionError(f"download interrupted: {exc}") from exc
        finally:
            response.close()

        if total < self.config.min_media_bytes:
            raise ResolutionError("resource too small")

        name = derive_filename(target, self.now)
        source = FileSource(binary=b"".join(chunks), name=name)
        self._log(f"Download complete: {name} ({source.size_mb:.2f} MB)", "success")
        return source

    def _log(self, message: str, level: str = "info") -> None:
        if self.log_cb:
            self.log_cb(message, level)


def resolve_url(
    raw_url: str,
    config: Config,
    session: requests.Session | None = None,
    log_cb: LogCallback | None = None,
) -> FileSource:
    return UrlResolver(config, session=session, log_cb=log_cb).resolve(raw_url)
