from __future__ import annotations

import base64
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterable

from .drive import DriveClient, DriveError
from .models import DispatchRecord, GeneratedArtifact


LogCallback = Callable[[str, str], None]
DownloadTrigger = Callable[[str, str, str], None]


class DispatchError(RuntimeError):
    pass


class OutputSink(ABC):
    label = "output"

    @abstractmethod
    def dispatch(self, artifact: GeneratedArtifact) -> None:
        """Deliver one artifact, raising :class:`DispatchError` on failure."""


class LocalDirectorySink(OutputSink):
    label = "local folder"

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory).expanduser()

    def dispatch(self, artifact: GeneratedArtifact) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with (self.directory / artifact.filename).open("wb") as stream:
                stream.write(artifact.binary)
        except OSError as exc:
            raise DispatchError(
                f"could not save {artifact.filename}, check folder permissions: {exc}"
            ) from exc


class ForcedDownloadSink(OutputSink):
    """Hands each artifact to the browser as a one-shot ``data:`` URL.

    ``trigger(filename, href, mime_type)`` is supplied by the page and must
    start the browser download synchronously; the URL is dropped right after.
    """

    label = "browser download"

    def __init__(self, trigger: DownloadTrigger) -> None:
        self.trigger = trigger

    def dispatch(self, artifact: GeneratedArtifact) -> None:
        encoded = base64.b64encode(artifact.binary).decode("ascii")
        href = f"data:{artifact.mime_type};base64,{encoded}"
        try:
            self.trigger(artifact.filename, href, artifact.mime_type)
        except Exception as exc:  # noqa: BLE001
            raise DispatchError(f"could not start download of {artifact.filename}: {exc}") from exc
        finally:
            del href, encoded


class RemoteFolderSink(OutputSink):
    label = "Google Drive"

    def __init__(self, client: DriveClient, folder_id: str) -> None:
        self.client = client
        self.folder_id = folder_id

    def dispatch(self, artifact: GeneratedArtifact) -> None:
        try:
            self.client.upload_file(
                artifact.binary,
                artifact.filename,
                self.folder_id,
                mime_type=artifact.mime_type,
            )
        except DriveError as exc:
            raise DispatchError(str(exc)) from exc


def dispatch_all(
    artifacts: Iterable[GeneratedArtifact],
    sink: OutputSink,
    log_cb: LogCallback | None = None,
    on_dispatched: Callable[[DispatchRecord], None] | None = None,
) -> list[DispatchRecord]:
    """Send artifacts to ``sink`` one at a time; a failed file never stops the rest."""
    records: list[DispatchRecord] = []
    saved_count = 0

    for index, artifact in enumerate(artifacts):
        started_at = time.monotonic()
        try:
            sink.dispatch(artifact)
        except DispatchError as exc:
            record = _record(index, artifact, "FAILED", str(exc), started_at)
        except Exception as exc:  # noqa: BLE001
            record = _record(index, artifact, "FAILED", f"unexpected error: {exc}", started_at)
        else:
            record = _record(index, artifact, "SUCCESS", "", started_at)
            saved_count += 1

        if record.status == "SUCCESS":
            _log(log_cb, f"[{index + 1}] {record.filename} -> {sink.label}")
        else:
            _log(log_cb, f"[{index + 1}] {record.filename} failed -> {record.error}", "error")

        del artifact
        records.append(record)
        if on_dispatched:
            on_dispatched(record)

    _log(log_cb, f"Done! Saved {saved_count} file(s) to {sink.label}.", "success")
    return records


def _record(
    index: int,
    artifact: GeneratedArtifact,
    status: str,
    error: str,
    started_at: float,
) -> DispatchRecord:
    return DispatchRecord(
        index=index,
        filename=artifact.filename,
        status=status,
        error=error,
        size_bytes=len(artifact.binary),
        duration_sec=time.monotonic() - started_at,
    )


def _log(log_cb: LogCallback | None, message: str, level: str = "info") -> None:
    if log_cb:
        log_cb(message, level)
