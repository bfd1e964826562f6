from __future__ import annotations

import html

import pandas as pd
import streamlit as st
import streamlit.components.v1 as components

from video_slicer.config import load_config, missing_drive_credentials, resolve_drive_credentials, validate_runtime
from video_slicer.models import DispatchRecord, FileSource, LogMessage, ProcessingMode, ProcessingOptions, RunState
from video_slicer.report import build_result_csv, report_filename, summarize
from video_slicer.session import Session
from video_slicer.sinks import ForcedDownloadSink


LEVEL_ICONS = {"info": "·", "success": "✔", "warning": "!", "error": "✖"}


def _format_log(message: LogMessage) -> str:
    ts = message.timestamp.strftime("%H:%M:%S")
    return f"[{ts}] {LEVEL_ICONS.get(message.level, '·')} {message.text}"


def _trigger_browser_download(filename: str, href: str, mime_type: str) -> None:
    safe_name = html.escape(filename, quote=True)
    components.html(
        f'<a id="dl" href="{href}" download="{safe_name}" type="{mime_type}"></a>'
        '<script>document.getElementById("dl").click();</script>',
        height=0,
    )


st.set_page_config(page_title="Video Slicer", layout="wide")
st.title("Video Cutter & Frame Extractor")

config = load_config()

if "vs_session" not in st.session_state:
    st.session_state["vs_session"] = Session(config)
if "vs_drive" not in st.session_state:
    st.session_state["vs_drive"] = {"client_id": "", "api_key": "", "app_id": "", "token": ""}
if "vs_folders" not in st.session_state:
    st.session_state["vs_folders"] = []

session: Session = st.session_state["vs_session"]
drive_values: dict[str, str] = st.session_state["vs_drive"]

st.caption(
    "Current config: "
    f"max_video_mb={config.max_video_mb} | "
    f"min_media_bytes={config.min_media_bytes} | "
    f"task_timeout_sec={config.task_timeout_sec} | "
    f"extractor={config.extractor_api_url}"
)

runtime_errors = validate_runtime(config)
if runtime_errors:
    st.error("Runtime checks failed:\n- " + "\n- ".join(runtime_errors))

st.subheader("1. Input video")
input_type = st.radio("Source", ["Upload a file", "Paste a link"], horizontal=True)

if input_type == "Upload a file":
    uploaded_file = st.file_uploader("Video file", type=["mp4", "mkv", "mov", "webm", "m4v"])
    if uploaded_file is not None:
        current = session.source
        if session.source_url is not None or getattr(current, "name", None) != uploaded_file.name:
            session.set_file(uploaded_file.getvalue(), uploaded_file.name)
    elif session.source is not None and not session.is_busy:
        session.clear_source()
else:
    url_input = st.text_input(
        "Video link (direct file, YouTube, TikTok, Facebook, Instagram, X...)",
        placeholder="https://www.youtube.com/watch?v=...",
    )
    if st.button("Fetch video", disabled=session.is_busy):
        with st.spinner("Resolving link..."):
            session.resolve_input(url_input)

from_link = session.source_url is not None
if isinstance(session.source, FileSource) and from_link == (input_type == "Paste a link"):
    st.info(f"Ready: {session.source.name} ({session.source.size_mb:.2f} MB)")

st.subheader("2. Mode")
mode_label = st.radio("Processing mode", ["Extract frames (1 per second)", "Cut into segments"], horizontal=True)
mode = ProcessingMode.EXTRACT_FRAMES if mode_label.startswith("Extract") else ProcessingMode.CUT_SEGMENTS
segment_seconds = int(
    st.number_input(
        "Seconds per segment",
        min_value=1,
        value=config.default_segment_seconds,
        step=1,
        disabled=mode is ProcessingMode.EXTRACT_FRAMES,
    )
)

st.subheader("3. Destination")
destination = st.radio("Save to", ["Local folder", "Browser download", "Google Drive"], horizontal=True)

local_dir = ""
folder_id = ""
if destination == "Local folder":
    local_dir = st.text_input(
        "Output folder",
        value=str(config.output_dir) if config.output_dir else "",
        placeholder="/Users/me/Videos/slices",
    )
elif destination == "Google Drive":
    credentials = resolve_drive_credentials(drive_values)
    missing = missing_drive_credentials(credentials)
    with st.expander("Google Drive settings", expanded=bool(missing)):
        drive_values["client_id"] = st.text_input("Client ID", value=drive_values["client_id"])
        drive_values["api_key"] = st.text_input("API key", value=drive_values["api_key"], type="password")
        drive_values["app_id"] = st.text_input("App ID", value=drive_values["app_id"])
        drive_values["token"] = st.text_input("Access token", value=drive_values["token"], type="password")
    if missing:
        st.warning("Google Drive is not configured: " + ", ".join(missing))
    if st.button("Load Drive folders", disabled=bool(missing)):
        st.session_state["vs_folders"] = session.list_drive_folders(drive_values["token"], drive_values)
    folders = st.session_state["vs_folders"]
    if folders:
        chosen = st.selectbox("Drive folder", folders, format_func=lambda folder: folder.name)
        folder_id = chosen.id if chosen else ""

start_clicked = st.button("Start processing", type="primary", disabled=not session.can_start())

if start_clicked:
    progress_box = st.progress(0)
    log_box = st.empty()
    live_logs: list[str] = []

    def log_listener(message: LogMessage) -> None:
        live_logs.append(_format_log(message))
        log_box.code("\n".join(live_logs[-200:]))

    def progress_listener(value: int) -> None:
        progress_box.progress(min(max(value, 0), 100))

    session.log_listener = log_listener
    session.progress_listener = progress_listener

    # A link that differs from the current source is resolved as part of the run.
    if input_type == "Paste a link":
        if not url_input.strip():
            session.clear_source()
        elif not session.source_matches_link(url_input):
            session.set_url(url_input)

    if destination == "Local folder":
        sink = session.make_local_sink(local_dir)
    elif destination == "Browser download":
        sink = ForcedDownloadSink(_trigger_browser_download)
    elif folder_id:
        sink = session.make_remote_sink(drive_values["token"], folder_id, drive_values)
    else:
        sink = None

    try:
        session.run(ProcessingOptions(mode=mode, segment_seconds=segment_seconds), sink)
    finally:
        session.log_listener = None
        session.progress_listener = None

if session.state in (RunState.COMPLETED, RunState.ERROR) or session.logs:
    records: list[DispatchRecord] = session.records

    if records:
        succeeded, failed = summarize(records)
        st.subheader(f"Results: {succeeded} saved, {failed} failed")
        table_rows = [
            {
                "filename": item.filename,
                "status": item.status,
                "error": item.error,
                "size_kb": round(item.size_bytes / 1024, 1),
                "duration_sec": round(item.duration_sec, 3),
            }
            for item in records
        ]
        st.dataframe(pd.DataFrame(table_rows), use_container_width=True)
        st.download_button(
            label="Download report (CSV)",
            data=build_result_csv(records),
            file_name=report_filename(),
            mime="text/csv",
        )

    st.subheader("Log")
    st.code("\n".join(_format_log(item) for item in session.logs[-500:]) if session.logs else "(no log)")
