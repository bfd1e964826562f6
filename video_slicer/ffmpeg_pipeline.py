from __future__ import annotations

import json
import math
import re
import shutil
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator

from .models import FileSource, GeneratedArtifact, ProcessingMode, ProcessingOptions


LogCallback = Callable[[str, str], None]
ProgressCallback = Callable[[int], None]
RatioCallback = Callable[[float], None]

INPUT_NAME = "input.mp4"
SEGMENT_PATTERN = "output_%03d.mp4"
FRAME_PATTERN = "frame_%04d.png"
SEGMENT_NAME_RE = re.compile(r"^output_\d{3}\.mp4$")
FRAME_NAME_RE = re.compile(r"^frame_\d{4}\.png$")


class EngineError(RuntimeError):
    pass


@dataclass(frozen=True)
class VideoProbe:
    duration_sec: float
    has_video: bool
    has_audio: bool


def _parse_duration(raw: object) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if value > 0 else 0.0


class FFmpegEngine:
    """Session-owned handle on the ffmpeg executables.

    ``load()`` runs once: it checks the binaries and creates a private working
    directory that plays the role of the engine's virtual filesystem. The
    handle is reused for every run of the session and never unloaded.
    """

    def __init__(self, ffmpeg_binary: str = "ffmpeg", ffprobe_binary: str = "ffprobe") -> None:
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.workdir: Path | None = None

    @property
    def loaded(self) -> bool:
        return self.workdir is not None

    def load(self) -> FFmpegEngine:
        if self.loaded:
            return self
        if shutil.which(self.ffmpeg_binary) is None:
            raise EngineError(f"ffmpeg executable not found: {self.ffmpeg_binary}")
        if shutil.which(self.ffprobe_binary) is None:
            raise EngineError(f"ffprobe executable not found: {self.ffprobe_binary}")
        self.workdir = Path(tempfile.mkdtemp(prefix="video_slicer_"))
        return self

    def _require_workdir(self) -> Path:
        if self.workdir is None:
            raise EngineError("engine is not loaded")
        return self.workdir

    def _path(self, name: str) -> Path:
        return self._require_workdir() / name

    def write_file(self, name: str, data: bytes) -> None:
        try:
            self._path(name).write_bytes(data)
        except OSError as exc:
            raise EngineError(f"could not stage {name}: {exc}") from exc

    def read_file(self, name: str) -> bytes:
        try:
            return self._path(name).read_bytes()
        except OSError as exc:
            raise EngineError(f"could not read {name}: {exc}") from exc

    def delete_file(self, name: str) -> None:
        self._path(name).unlink(missing_ok=True)

    def list_dir(self) -> list[str]:
        workdir = self._require_workdir()
        return sorted(entry.name for entry in workdir.iterdir() if entry.is_file())

    def probe(self, name: str) -> VideoProbe:
        cmd = [
            self.ffprobe_binary,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_streams",
            "-show_format",
            str(self._path(name)),
        ]

        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
            )
        except subprocess.CalledProcessError as exc:
            stderr = exc.stderr.strip() if exc.stderr else ""
            raise EngineError(f"ffprobe failed: {stderr or exc}") from exc
        except OSError as exc:
            raise EngineError(f"ffprobe could not start: {exc}") from exc

        try:
            payload = json.loads(completed.stdout)
        except json.JSONDecodeError as exc:
            raise EngineError("ffprobe output could not be parsed") from exc

        streams = payload.get("streams", [])
        format_data = payload.get("format", {})
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)

        duration = _parse_duration(format_data.get("duration"))
        if duration <= 0 and video_stream is not None:
            duration = _parse_duration(video_stream.get("duration"))

        return VideoProbe(
            duration_sec=duration,
            has_video=video_stream is not None,
            has_audio=any(s.get("codec_type") == "audio" for s in streams),
        )

    def exec(
        self,
        args: list[str],
        duration_sec: float = 0.0,
        progress_cb: RatioCallback | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        """Run ffmpeg inside the working directory, reporting progress as a 0-1 ratio."""
        workdir = self._require_workdir()
        cmd = [
            self.ffmpeg_binary,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostats",
            "-progress",
            "pipe:1",
            *args,
        ]
        started_at = time.monotonic()

        with tempfile.TemporaryFile(mode="w+") as stderr_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    cwd=workdir,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                )
            except OSError as exc:
                raise EngineError(f"ffmpeg could not start: {exc}") from exc

            try:
                for line in process.stdout or ():
                    key, _, value = line.strip().partition("=")
                    if progress_cb:
                        if key in ("out_time_us", "out_time_ms") and duration_sec > 0:
                            try:
                                seconds = int(value) / 1_000_000
                            except ValueError:
                                seconds = None
                            if seconds is not None:
                                progress_cb(min(max(seconds / duration_sec, 0.0), 1.0))
                        elif key == "progress" and value == "end":
                            progress_cb(1.0)
                    if timeout_sec and time.monotonic() - started_at > timeout_sec:
                        raise EngineError("ffmpeg timed out")

                remaining = None
                if timeout_sec:
                    remaining = max(0.0, timeout_sec - (time.monotonic() - started_at))
                try:
                    returncode = process.wait(timeout=remaining)
                except subprocess.TimeoutExpired as exc:
                    raise EngineError("ffmpeg timed out") from exc
            finally:
                if process.poll() is None:
                    process.kill()
                    process.wait()
                if process.stdout is not None:
                    process.stdout.close()

            if returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read().strip()
                message = stderr.splitlines()[-1] if stderr else "ffmpeg failed"
                raise EngineError(message)


def build_command(options: ProcessingOptions, duration_sec: float = 0.0) -> list[str]:
    if options.mode is ProcessingMode.CUT_SEGMENTS:
        return [
            "-i",
            INPUT_NAME,
            "-c",
            "copy",
            "-map",
            "0",
            "-segment_time",
            str(options.segment_seconds),
            "-f",
            "segment",
            "-reset_timestamps",
            "1",
            SEGMENT_PATTERN,
        ]

    cmd = ["-i", INPUT_NAME, "-vf", "fps=1"]
    if duration_sec > 0:
        cmd.extend(["-frames:v", str(max(1, math.floor(duration_sec)))])
    cmd.append(FRAME_PATTERN)
    return cmd


def expected_artifact_count(options: ProcessingOptions, duration_sec: float) -> int:
    if duration_sec <= 0:
        return 0
    if options.mode is ProcessingMode.CUT_SEGMENTS:
        return math.ceil(duration_sec / options.segment_seconds)
    return max(1, math.floor(duration_sec))


def output_name_pattern(mode: ProcessingMode) -> tuple[re.Pattern[str], str]:
    if mode is ProcessingMode.CUT_SEGMENTS:
        return SEGMENT_NAME_RE, "video/mp4"
    return FRAME_NAME_RE, "image/png"


def run_pipeline(
    engine: FFmpegEngine,
    source: FileSource,
    options: ProcessingOptions,
    progress_cb: ProgressCallback | None = None,
    log_cb: LogCallback | None = None,
    timeout_sec: float | None = None,
) -> Iterator[GeneratedArtifact]:
    """Transcode ``source`` and yield the produced files one at a time.

    Each output is read and deleted from the engine before it is yielded, and
    the staged input is removed last, including when the caller stops early.
    """
    if not isinstance(source, FileSource):
        raise TypeError("the pipeline only accepts a resolved FileSource")
    if options.mode is ProcessingMode.CUT_SEGMENTS and options.segment_seconds <= 0:
        raise ValueError("segment_seconds must be positive")

    engine.load()
    name_re, mime_type = output_name_pattern(options.mode)
    _purge_outputs(engine, name_re)

    _log(log_cb, "Loading the file into the engine...")
    engine.write_file(INPUT_NAME, source.binary)

    try:
        probe = engine.probe(INPUT_NAME)
        if options.mode is ProcessingMode.EXTRACT_FRAMES and not probe.has_video:
            raise EngineError("input file has no video stream")

        if options.mode is ProcessingMode.CUT_SEGMENTS:
            _log(log_cb, f"Cutting the video into {options.segment_seconds}s segments...")
        else:
            _log(log_cb, "Extracting one frame per second (this can take a while)...")

        def forward_progress(ratio: float) -> None:
            if progress_cb:
                progress_cb(round(ratio * 100))

        engine.exec(
            build_command(options, probe.duration_sec),
            duration_sec=probe.duration_sec,
            progress_cb=forward_progress,
            timeout_sec=timeout_sec,
        )

        _log(log_cb, "Collecting output files...")
        for name in engine.list_dir():
            if not name_re.match(name):
                continue
            data = engine.read_file(name)
            engine.delete_file(name)
            yield GeneratedArtifact(filename=name, binary=data, mime_type=mime_type)
            del data
    finally:
        _purge_outputs(engine, name_re)
        engine.delete_file(INPUT_NAME)


def _purge_outputs(engine: FFmpegEngine, name_re: re.Pattern[str]) -> None:
    for name in engine.list_dir():
        if name_re.match(name):
            engine.delete_file(name)


def _log(log_cb: LogCallback | None, message: str, level: str = "info") -> None:
    if log_cb:
        log_cb(message, level)
