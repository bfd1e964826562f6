from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Literal, Union


Status = Literal["SUCCESS", "FAILED"]
LogLevel = Literal["info", "error", "success", "warning"]
AttemptOutcome = Literal["success", "http_error", "html_page", "network_error"]


@dataclass(frozen=True)
class Config:
    max_video_mb: int = 500
    min_media_bytes: int = 1000
    request_timeout_sec: int = 30
    task_timeout_sec: int = 1800
    default_segment_seconds: int = 5
    extractor_api_url: str = "https://api.cobalt.tools/api/json"
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    output_dir: Path | None = None


@dataclass(frozen=True)
class DriveCredentials:
    client_id: str = ""
    api_key: str = ""
    app_id: str = ""


@dataclass(frozen=True)
class DriveFolder:
    id: str
    name: str


@dataclass(frozen=True)
class FileSource:
    binary: bytes
    name: str

    @property
    def size_mb(self) -> float:
        return len(self.binary) / (1024 * 1024)


@dataclass(frozen=True)
class UrlSource:
    raw: str


MediaSource = Union[FileSource, UrlSource]


@dataclass(frozen=True)
class FetchStrategy:
    label: str
    transform: Callable[[str], str]


@dataclass(frozen=True)
class ResolutionAttempt:
    target_url: str
    strategy: str
    outcome: AttemptOutcome
    detail: str = ""


class ProcessingMode(str, Enum):
    EXTRACT_FRAMES = "EXTRACT_FRAMES"
    CUT_SEGMENTS = "CUT_SEGMENTS"


@dataclass(frozen=True)
class ProcessingOptions:
    mode: ProcessingMode
    segment_seconds: int = 5


class RunState(str, Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    LOADING_ENGINE = "LOADING_ENGINE"
    RESOLVING_INPUT = "RESOLVING_INPUT"
    TRANSCODING = "TRANSCODING"
    DISPATCHING = "DISPATCHING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class GeneratedArtifact:
    filename: str
    binary: bytes
    mime_type: str


@dataclass
class DispatchRecord:
    index: int
    filename: str
    status: Status
    error: str
    size_bytes: int
    duration_sec: float


@dataclass(frozen=True)
class LogMessage:
    id: str
    text: str
    level: LogLevel = "info"
    timestamp: datetime = field(default_factory=datetime.now)
