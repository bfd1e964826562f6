from __future__ import annotations

from pathlib import Path

import pytest

from video_slicer.ffmpeg_pipeline import EngineError
from video_slicer.models import (
    Config,
    FileSource,
    GeneratedArtifact,
    ProcessingMode,
    ProcessingOptions,
    RunState,
    UrlSource,
)
from video_slicer.resolver import ResolutionError
from video_slicer.session import SECURITY_HINT, Session
from video_slicer.sinks import DispatchError, LocalDirectorySink, OutputSink


SEGMENTS = ProcessingOptions(mode=ProcessingMode.CUT_SEGMENTS, segment_seconds=5)
SOURCE = FileSource(binary=b"\x00" * 2048, name="clip.mp4")


class StubEngine:
    def __init__(self) -> None:
        self.load_count = 0

    def load(self) -> StubEngine:
        self.load_count += 1
        return self


class StubResolver:
    def __init__(self, result: FileSource | Exception) -> None:
        self.result = result
        self.calls: list[str] = []

    def resolve(self, raw_url: str) -> FileSource:
        self.calls.append(raw_url)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class MemorySink(OutputSink):
    label = "memory"

    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.saved: list[str] = []

    def dispatch(self, artifact: GeneratedArtifact) -> None:
        if artifact.filename == self.fail_on:
            raise DispatchError("write refused")
        self.saved.append(artifact.filename)


def fake_pipeline(count: int = 3, progress: tuple[int, ...] = (30, 10, 80), error: Exception | None = None):
    calls: list[FileSource] = []

    def pipeline(engine, source, options, progress_cb=None, log_cb=None, timeout_sec=None):
        calls.append(source)
        for value in progress:
            progress_cb(value)
        if error:
            raise error
        for i in range(count):
            yield GeneratedArtifact(filename=f"output_{i:03d}.mp4", binary=b"x", mime_type="video/mp4")

    pipeline.calls = calls
    return pipeline


def _session(**kwargs) -> tuple[Session, list[int]]:
    progress: list[int] = []
    kwargs.setdefault("engine", StubEngine())
    kwargs.setdefault("pipeline", fake_pipeline())
    session = Session(Config(), progress_listener=progress.append, **kwargs)
    return session, progress


def test_missing_source_fails_before_loading_engine() -> None:
    engine = StubEngine()
    session, _ = _session(engine=engine)

    records = session.run(SEGMENTS, MemorySink())

    assert records == []
    assert session.state is RunState.ERROR
    assert RunState.LOADING_ENGINE not in session.history
    assert engine.load_count == 0
    assert session.logs[-1].level == "error"


def test_missing_sink_and_bad_segment_length_are_rejected() -> None:
    session, _ = _session()
    session.set_file(SOURCE.binary, SOURCE.name)

    session.run(SEGMENTS, None)
    assert session.state is RunState.ERROR

    session.run(ProcessingOptions(mode=ProcessingMode.CUT_SEGMENTS, segment_seconds=0), MemorySink())
    assert session.state is RunState.ERROR
    assert "greater than 0" in session.logs[-1].text
    assert RunState.LOADING_ENGINE not in session.history


def test_successful_run_walks_states_and_keeps_progress_monotonic() -> None:
    session, progress = _session()
    session.set_file(SOURCE.binary, SOURCE.name)
    sink = MemorySink()

    records = session.run(SEGMENTS, sink)

    assert sink.saved == ["output_000.mp4", "output_001.mp4", "output_002.mp4"]
    assert [r.status for r in records] == ["SUCCESS"] * 3
    assert session.state is RunState.COMPLETED
    assert session.history[-5:] == [
        RunState.VALIDATING,
        RunState.LOADING_ENGINE,
        RunState.TRANSCODING,
        RunState.DISPATCHING,
        RunState.COMPLETED,
    ]
    assert progress[-4:] == [0, 30, 80, 100]
    assert session.progress == 100


def test_url_source_is_resolved_inside_the_run() -> None:
    resolver = StubResolver(SOURCE)
    pipeline = fake_pipeline()
    session, _ = _session(resolver=resolver, pipeline=pipeline)

    session.run(SEGMENTS, MemorySink(), source=UrlSource(raw="https://youtu.be/abc"))

    assert resolver.calls == ["https://youtu.be/abc"]
    assert RunState.RESOLVING_INPUT in session.history
    assert pipeline.calls == [SOURCE]
    assert session.source == SOURCE


def test_resolution_failure_ends_in_error_without_transcoding() -> None:
    pipeline = fake_pipeline()
    session, _ = _session(resolver=StubResolver(ResolutionError("no direct media found")), pipeline=pipeline)
    session.set_url("https://blog.example.com/post")

    session.run(SEGMENTS, MemorySink())

    assert session.state is RunState.ERROR
    assert pipeline.calls == []
    assert RunState.TRANSCODING not in session.history
    assert session.logs[-1].text == "Download error: no direct media found"


def test_engine_error_with_security_pattern_adds_hint() -> None:
    session, _ = _session(pipeline=fake_pipeline(error=EngineError("output_000.mp4: Permission denied")))
    session.set_file(SOURCE.binary, SOURCE.name)

    session.run(SEGMENTS, MemorySink())

    assert session.state is RunState.ERROR
    assert session.logs[-2].text == "Processing error: output_000.mp4: Permission denied"
    assert session.logs[-1].text == SECURITY_HINT


def test_single_dispatch_failure_still_completes_run() -> None:
    session, _ = _session(pipeline=fake_pipeline(count=4))
    session.set_file(SOURCE.binary, SOURCE.name)

    records = session.run(SEGMENTS, MemorySink(fail_on="output_002.mp4"))

    assert session.state is RunState.COMPLETED
    assert sum(1 for r in records if r.status == "SUCCESS") == 3
    assert any(m.text == "Done! Saved 3 file(s) to memory." for m in session.logs)


def test_engine_is_reused_across_runs() -> None:
    engine = StubEngine()
    session, _ = _session(engine=engine)
    session.set_file(SOURCE.binary, SOURCE.name)

    session.run(SEGMENTS, MemorySink())
    session.pipeline = fake_pipeline()
    session.run(SEGMENTS, MemorySink())

    assert session.engine is engine
    assert session.state is RunState.COMPLETED


def test_default_engine_is_created_once() -> None:
    session = Session(Config())

    assert session.engine is session.engine


def test_runs_are_refused_while_input_is_resolving() -> None:
    refused: list[list] = []

    class ReentrantResolver(StubResolver):
        def resolve(self, raw_url: str) -> FileSource:
            assert session.is_busy
            refused.append(session.run(SEGMENTS, MemorySink(), source=SOURCE))
            return super().resolve(raw_url)

    session, _ = _session(resolver=ReentrantResolver(SOURCE))

    resolved = session.resolve_input("https://cdn.example.com/clip.mp4")

    assert resolved == SOURCE
    assert refused == [[]]
    assert not session.is_busy
    assert session.source == SOURCE


def test_resolve_input_failure_is_logged_not_raised() -> None:
    session, _ = _session(resolver=StubResolver(ResolutionError("HTTP error 403")))

    assert session.resolve_input("https://cdn.example.com/clip.mp4") is None
    assert session.logs[-2].text == "Download error: HTTP error 403"
    assert session.logs[-1].text == SECURITY_HINT


def test_local_sink_falls_back_to_configured_folder(tmp_path: Path) -> None:
    session = Session(Config(output_dir=tmp_path))

    sink = session.make_local_sink("")

    assert isinstance(sink, LocalDirectorySink)
    assert sink.directory == tmp_path
    assert Session(Config()).make_local_sink("  ") is None


def test_remote_sink_without_credentials_is_config_error(monkeypatch) -> None:
    for name in ("VS_GOOGLE_CLIENT_ID", "VS_GOOGLE_API_KEY", "VS_GOOGLE_APP_ID"):
        monkeypatch.delenv(name, raising=False)
    session = Session(Config())

    assert session.make_remote_sink("token", "folder-1", {}) is None
    assert session.logs[-1].text.startswith("Google Drive error: Google Drive is not configured")


class PageStopped(BaseException):
    pass


def test_interrupted_run_does_not_block_the_next_one() -> None:
    def stop_on_start(message) -> None:
        if message.text == "Processing started.":
            raise PageStopped()

    session, _ = _session(log_listener=stop_on_start)
    session.set_file(SOURCE.binary, SOURCE.name)

    with pytest.raises(PageStopped):
        session.run(SEGMENTS, MemorySink())

    assert session.state is RunState.ERROR
    assert session.can_start()
    assert session.logs[-1].text == "Processing was interrupted."

    session.log_listener = None
    session.pipeline = fake_pipeline()
    sink = MemorySink()
    session.run(SEGMENTS, sink)

    assert session.state is RunState.COMPLETED
    assert len(sink.saved) == 3


def test_run_without_outputs_still_passes_through_dispatching() -> None:
    session, _ = _session(pipeline=fake_pipeline(count=0))
    session.set_file(SOURCE.binary, SOURCE.name)

    records = session.run(SEGMENTS, MemorySink())

    assert records == []
    assert session.history[-3:] == [RunState.TRANSCODING, RunState.DISPATCHING, RunState.COMPLETED]
    assert any(m.text == "The video produced no output files." for m in session.logs)


def test_source_remembers_the_link_it_came_from() -> None:
    session, _ = _session(resolver=StubResolver(SOURCE))

    session.resolve_input("  https://cdn.example.com/a.mp4 ")
    assert session.source_matches_link("https://cdn.example.com/a.mp4")
    assert not session.source_matches_link("https://cdn.example.com/b.mp4")

    session.set_file(b"\x00" * 10, "upload.mp4")
    assert session.source_url is None
    assert not session.source_matches_link("https://cdn.example.com/a.mp4")

    session.set_url("https://cdn.example.com/b.mp4")
    assert session.source_matches_link("https://cdn.example.com/b.mp4")

    session.clear_source()
    assert session.source is None
    assert not session.source_matches_link("https://cdn.example.com/b.mp4")


def test_url_resolved_in_run_keeps_its_origin() -> None:
    session, _ = _session(resolver=StubResolver(SOURCE))

    session.run(SEGMENTS, MemorySink(), source=UrlSource(raw="https://cdn.example.com/c.mp4"))

    assert session.source == SOURCE
    assert session.source_matches_link("https://cdn.example.com/c.mp4")


def test_clearing_an_empty_source_is_silent() -> None:
    session, _ = _session()

    session.clear_source()

    assert session.logs == []
