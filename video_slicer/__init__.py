from .config import ConfigError, load_config, resolve_drive_credentials, validate_runtime
from .ffmpeg_pipeline import EngineError, FFmpegEngine, run_pipeline
from .models import (
    Config,
    DispatchRecord,
    FileSource,
    GeneratedArtifact,
    ProcessingMode,
    ProcessingOptions,
    RunState,
    UrlSource,
)
from .report import build_result_csv
from .resolver import ResolutionError, UrlResolver, resolve_url
from .session import Session
from .sinks import (
    DispatchError,
    ForcedDownloadSink,
    LocalDirectorySink,
    RemoteFolderSink,
    dispatch_all,
)

__all__ = [
    "Config",
    "ConfigError",
    "DispatchError",
    "DispatchRecord",
    "EngineError",
    "FFmpegEngine",
    "FileSource",
    "ForcedDownloadSink",
    "GeneratedArtifact",
    "LocalDirectorySink",
    "ProcessingMode",
    "ProcessingOptions",
    "RemoteFolderSink",
    "ResolutionError",
    "RunState",
    "Session",
    "UrlResolver",
    "UrlSource",
    "build_result_csv",
    "dispatch_all",
    "load_config",
    "resolve_drive_credentials",
    "resolve_url",
    "run_pipeline",
    "validate_runtime",
]
