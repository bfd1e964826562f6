from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Mapping

from .models import Config, DriveCredentials


DEFAULT_EXTRACTOR_API_URL = "https://api.cobalt.tools/api/json"
MIN_CREDENTIAL_LENGTH = 8

DRIVE_ENV_NAMES = {
    "client_id": "VS_GOOGLE_CLIENT_ID",
    "api_key": "VS_GOOGLE_API_KEY",
    "app_id": "VS_GOOGLE_APP_ID",
}


class ConfigError(RuntimeError):
    pass


def _read_positive_int(env_name: str, default: int) -> int:
    raw = os.getenv(env_name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_str(env_name: str, default: str) -> str:
    raw = (os.getenv(env_name) or "").strip()
    return raw or default


def load_config() -> Config:
    output_dir_raw = _read_str("VS_OUTPUT_DIR", "")
    return Config(
        max_video_mb=_read_positive_int("VS_MAX_VIDEO_MB", 500),
        min_media_bytes=_read_positive_int("VS_MIN_MEDIA_BYTES", 1000),
        request_timeout_sec=_read_positive_int("VS_REQUEST_TIMEOUT_SEC", 30),
        task_timeout_sec=_read_positive_int("VS_TASK_TIMEOUT_SEC", 1800),
        default_segment_seconds=_read_positive_int("VS_DEFAULT_SEGMENT_SECONDS", 5),
        extractor_api_url=_read_str("VS_EXTRACTOR_API_URL", DEFAULT_EXTRACTOR_API_URL),
        ffmpeg_binary=_read_str("VS_FFMPEG_BINARY", "ffmpeg"),
        ffprobe_binary=_read_str("VS_FFPROBE_BINARY", "ffprobe"),
        output_dir=Path(output_dir_raw).expanduser() if output_dir_raw else None,
    )


def validate_runtime(config: Config) -> list[str]:
    errors: list[str] = []
    if shutil.which(config.ffmpeg_binary) is None:
        errors.append(f"ffmpeg executable not found: {config.ffmpeg_binary}")
    if shutil.which(config.ffprobe_binary) is None:
        errors.append(f"ffprobe executable not found: {config.ffprobe_binary}")
    return errors


def resolve_drive_credentials(user_values: Mapping[str, str] | None = None) -> DriveCredentials:
    """Merge Drive credentials: user-entered value, then environment, then empty."""
    user_values = user_values or {}
    resolved: dict[str, str] = {}
    for key, env_name in DRIVE_ENV_NAMES.items():
        entered = (user_values.get(key) or "").strip()
        resolved[key] = entered or (os.getenv(env_name) or "").strip()
    return DriveCredentials(**resolved)


def missing_drive_credentials(credentials: DriveCredentials) -> list[str]:
    missing: list[str] = []
    for key in DRIVE_ENV_NAMES:
        if len(getattr(credentials, key)) < MIN_CREDENTIAL_LENGTH:
            missing.append(key)
    return missing


def validate_drive_credentials(credentials: DriveCredentials) -> None:
    missing = missing_drive_credentials(credentials)
    if missing:
        raise ConfigError(
            "Google Drive is not configured, missing or invalid: " + ", ".join(missing)
        )
