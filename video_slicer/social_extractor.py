from __future__ import annotations

import logging

import requests


logger = logging.getLogger(__name__)


class ExtractionError(RuntimeError):
    pass


def extract_social_video(
    url: str,
    api_url: str,
    session: requests.Session | None = None,
    timeout: float = 30,
) -> str:
    """Ask the extraction API for a direct media URL behind a social-media page."""
    http = session or requests.Session()
    try:
        response = http.post(
            api_url,
            json={"url": url},
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=timeout,
        )
    except requests.RequestException as exc:
        logger.warning("Extraction request failed for %s: %s", url, exc)
        raise ExtractionError(f"extraction API unreachable: {exc}") from exc

    if not response.ok:
        raise ExtractionError(f"extraction API error (HTTP {response.status_code})")

    try:
        payload = response.json()
    except ValueError as exc:
        raise ExtractionError("extraction API returned invalid JSON") from exc

    return parse_extraction_payload(payload)


def parse_extraction_payload(payload: object) -> str:
    if not isinstance(payload, dict):
        raise ExtractionError("no direct video link found")

    status = payload.get("status")
    if status in ("stream", "redirect") and payload.get("url"):
        return str(payload["url"])

    if status == "picker":
        picker = payload.get("picker") or []
        if picker and isinstance(picker[0], dict) and picker[0].get("url"):
            return str(picker[0]["url"])

    if status == "error":
        raise ExtractionError(str(payload.get("text") or "no video found at this link"))

    raise ExtractionError("no direct video link found")
