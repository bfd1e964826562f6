from __future__ import annotations

import re
import uuid
from pathlib import Path
from typing import Callable, Iterable, Iterator, Mapping

import requests

from .config import ConfigError, resolve_drive_credentials
from .drive import DriveClient, DriveError
from .ffmpeg_pipeline import EngineError, FFmpegEngine, run_pipeline
from .models import (
    Config,
    DispatchRecord,
    DriveFolder,
    FileSource,
    GeneratedArtifact,
    LogMessage,
    MediaSource,
    ProcessingMode,
    ProcessingOptions,
    RunState,
    UrlSource,
)
from .resolver import ResolutionError, UrlResolver
from .sinks import LocalDirectorySink, OutputSink, RemoteFolderSink, dispatch_all


LogListener = Callable[[LogMessage], None]
ProgressListener = Callable[[int], None]

STARTABLE_STATES = frozenset({RunState.IDLE, RunState.ERROR, RunState.COMPLETED})
ACTIVE_STATES = frozenset(
    {
        RunState.VALIDATING,
        RunState.LOADING_ENGINE,
        RunState.RESOLVING_INPUT,
        RunState.TRANSCODING,
        RunState.DISPATCHING,
    }
)

SECURITY_RESTRICTION_RE = re.compile(
    r"permission denied|certificate|ssl|cors|cross-origin|http error 40[13]|forbidden",
    re.IGNORECASE,
)
SECURITY_HINT = (
    "Hint: this looks like a security restriction (file permissions, TLS or "
    "cross-origin policy) rather than a problem with the video itself."
)


class Session:
    """One user's working session: input, engine, run state, progress and log.

    The session is the only writer of ``progress`` and ``logs``; components
    report through callbacks and the session records and forwards them.
    """

    def __init__(
        self,
        config: Config,
        engine: FFmpegEngine | None = None,
        http: requests.Session | None = None,
        resolver: UrlResolver | None = None,
        pipeline: Callable[..., Iterable[GeneratedArtifact]] = run_pipeline,
        log_listener: LogListener | None = None,
        progress_listener: ProgressListener | None = None,
    ) -> None:
        self.config = config
        self.http = http or requests.Session()
        self.pipeline = pipeline
        self.log_listener = log_listener
        self.progress_listener = progress_listener

        self.state = RunState.IDLE
        self.history: list[RunState] = [RunState.IDLE]
        self.progress = 0
        self.logs: list[LogMessage] = []
        self.records: list[DispatchRecord] = []
        self.source: MediaSource | None = None
        self.source_url: str | None = None

        self._engine = engine
        self._resolver = resolver
        self._resolving = False

    @property
    def engine(self) -> FFmpegEngine:
        if self._engine is None:
            self._engine = FFmpegEngine(self.config.ffmpeg_binary, self.config.ffprobe_binary)
        return self._engine

    @property
    def resolver(self) -> UrlResolver:
        if self._resolver is None:
            self._resolver = UrlResolver(self.config, session=self.http, log_cb=self.log)
        return self._resolver

    @property
    def is_busy(self) -> bool:
        return self._resolving or self.state in ACTIVE_STATES

    def can_start(self) -> bool:
        return not self.is_busy and self.state in STARTABLE_STATES

    def log(self, text: str, level: str = "info", notify: bool = True) -> LogMessage:
        message = LogMessage(id=uuid.uuid4().hex[:9], text=text, level=level)
        self.logs.append(message)
        if notify and self.log_listener:
            self.log_listener(message)
        return message

    def set_file(self, data: bytes, name: str) -> FileSource:
        self.source = FileSource(binary=data, name=name)
        self.source_url = None
        self._reset()
        self.log(f"Loaded video: {name} ({self.source.size_mb:.2f} MB)", "success")
        return self.source

    def set_url(self, raw_url: str) -> UrlSource:
        self.source = UrlSource(raw=raw_url.strip())
        self.source_url = self.source.raw
        self._reset()
        return self.source

    def clear_source(self) -> None:
        had_source = self.source is not None
        self.source = None
        self.source_url = None
        self._reset()
        if had_source:
            self.log("Input video cleared.")

    def source_matches_link(self, raw_url: str) -> bool:
        """True when the current source was taken from ``raw_url``."""
        return self.source is not None and self.source_url == (raw_url or "").strip()

    def resolve_input(self, raw_url: str) -> FileSource | None:
        """Download a link ahead of a run and keep it as the current source."""
        if self.is_busy:
            self.log("Please wait for the current task to finish.", "warning")
            return None

        self._resolving = True
        try:
            source = self.resolver.resolve(raw_url)
        except ResolutionError as exc:
            self._report_error("Download error", exc)
            return None
        finally:
            self._resolving = False

        self.source = source
        self.source_url = (raw_url or "").strip()
        self._reset()
        return source

    def run(
        self,
        options: ProcessingOptions,
        sink: OutputSink | None,
        source: MediaSource | None = None,
    ) -> list[DispatchRecord]:
        if not self.can_start():
            self.log("A run is already in progress.", "warning")
            return []

        try:
            return self._run(options, sink, source if source is not None else self.source)
        finally:
            if self.state in ACTIVE_STATES:
                # Only a BaseException (a page stop or rerun) gets here; listeners are skipped.
                self._transition(RunState.ERROR)
                self.log("Processing was interrupted.", "warning", notify=False)

    def _run(
        self,
        options: ProcessingOptions,
        sink: OutputSink | None,
        source: MediaSource | None,
    ) -> list[DispatchRecord]:
        self.records = []
        self.progress = 0
        self._emit_progress()

        self._transition(RunState.VALIDATING)
        problem = validate_run(source, options, sink)
        if problem:
            self.log(problem, "error")
            self._transition(RunState.ERROR)
            return []

        try:
            self._transition(RunState.LOADING_ENGINE)
            self.log("Starting the video engine...")
            self.engine.load()

            if isinstance(source, UrlSource):
                self._transition(RunState.RESOLVING_INPUT)
                raw_url = source.raw
                source = self.resolver.resolve(raw_url)
                self.source = source
                self.source_url = raw_url

            self._transition(RunState.TRANSCODING)
            self.log("Processing started.")
            artifacts = self.pipeline(
                self.engine,
                source,
                options,
                progress_cb=self._set_progress,
                log_cb=self.log,
                timeout_sec=self.config.task_timeout_sec,
            )
            self.records = dispatch_all(self._mark_dispatching(artifacts), sink, log_cb=self.log)
        except ResolutionError as exc:
            self._fail("Download error", exc)
            return self.records
        except (EngineError, ConfigError) as exc:
            self._fail("Processing error", exc)
            return self.records
        except Exception as exc:  # noqa: BLE001
            self._fail("Unexpected error", exc)
            return self.records

        self._set_progress(100)
        self._transition(RunState.COMPLETED)
        self.log("Processing complete! Check the selected destination.", "success")
        return self.records

    def list_drive_folders(
        self,
        access_token: str,
        user_credentials: Mapping[str, str] | None = None,
    ) -> list[DriveFolder]:
        try:
            client = self._drive_client(access_token, user_credentials)
            return client.list_folders()
        except (ConfigError, DriveError) as exc:
            self._report_error("Google Drive error", exc)
            return []

    def make_remote_sink(
        self,
        access_token: str,
        folder_id: str,
        user_credentials: Mapping[str, str] | None = None,
    ) -> RemoteFolderSink | None:
        try:
            client = self._drive_client(access_token, user_credentials)
        except ConfigError as exc:
            self._report_error("Google Drive error", exc)
            return None
        return RemoteFolderSink(client, folder_id)

    def make_local_sink(self, directory: str | Path | None) -> LocalDirectorySink | None:
        chosen = str(directory).strip() if directory else ""
        if chosen:
            return LocalDirectorySink(Path(chosen))
        if self.config.output_dir is not None:
            self.log(f"No folder chosen, using the default: {self.config.output_dir}", "warning")
            return LocalDirectorySink(self.config.output_dir)
        return None

    def _drive_client(
        self,
        access_token: str,
        user_credentials: Mapping[str, str] | None,
    ) -> DriveClient:
        credentials = resolve_drive_credentials(user_credentials)
        return DriveClient(access_token, credentials, session=self.http)

    def _mark_dispatching(self, artifacts: Iterable[GeneratedArtifact]) -> Iterator[GeneratedArtifact]:
        for artifact in artifacts:
            if self.state is not RunState.DISPATCHING:
                self._transition(RunState.DISPATCHING)
            yield artifact
            del artifact

        if self.state is not RunState.DISPATCHING:
            self._transition(RunState.DISPATCHING)
            self.log("The video produced no output files.", "warning")

    def _transition(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)

    def _set_progress(self, value: int) -> None:
        value = min(max(int(value), 0), 100)
        if value > self.progress:
            self.progress = value
            self._emit_progress()

    def _emit_progress(self) -> None:
        if self.progress_listener:
            self.progress_listener(self.progress)

    def _reset(self) -> None:
        if self.state in STARTABLE_STATES:
            self._transition(RunState.IDLE)
        self.progress = 0
        self._emit_progress()

    def _fail(self, prefix: str, exc: Exception) -> None:
        self._transition(RunState.ERROR)
        self._report_error(prefix, exc)

    def _report_error(self, prefix: str, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        self.log(f"{prefix}: {message}", "error")
        if SECURITY_RESTRICTION_RE.search(message):
            self.log(SECURITY_HINT, "warning")


def validate_run(
    source: MediaSource | None,
    options: ProcessingOptions,
    sink: OutputSink | None,
) -> str | None:
    if source is None:
        return "Please choose an input video first."
    if sink is None:
        return "No output destination selected."
    if options.mode is ProcessingMode.CUT_SEGMENTS and options.segment_seconds <= 0:
        return "Segment length must be greater than 0 seconds."
    return None
