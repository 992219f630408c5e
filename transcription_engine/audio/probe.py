"""Audio file inspection using ffprobe.

Reads duration and container format for upload descriptors and harness
previews. Probing is best-effort at the call sites: callers catch
AudioProbeError and continue without a duration.
"""

from __future__ import annotations

import json
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from transcription_engine.recording.models import SUPPORTED_FORMATS
from transcription_engine.utils.errors import AudioProbeError

FFPROBE_TIMEOUT_SECONDS = 10

# ffprobe reports container names; map them back to upload formats.
FORMAT_ALIASES = {
    "mov,mp4,m4a,3gp,3g2,mj2": "m4a",
    "matroska,webm": "webm",
    "mp3": "mp3",
    "wav": "wav",
    "ogg": "ogg",
    "flac": "flac",
}

CONTENT_TYPES = {
    "mp3": "audio/mpeg",
    "mpeg": "audio/mpeg",
    "wav": "audio/wav",
    "webm": "audio/webm",
    "m4a": "audio/mp4",
    "mp4": "audio/mp4",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}


@dataclass
class ProbeResult:
    """What ffprobe reported about an audio file."""

    path: str
    duration_seconds: float | None
    format: str | None
    size_bytes: int


def format_from_filename(filename: str | None) -> str | None:
    """Return the upload format implied by a filename extension, if supported."""
    if not filename:
        return None
    suffix = Path(filename).suffix.lower().lstrip(".")
    return suffix if suffix in SUPPORTED_FORMATS else None


def content_type_for(audio_format: str | None) -> str:
    return CONTENT_TYPES.get(audio_format or "", "application/octet-stream")


def probe_audio(input_path: str) -> ProbeResult:
    """Read duration and format of an audio file with ffprobe.

    Args:
        input_path: Path to the audio file.

    Returns:
        ProbeResult with duration (None when the container has none),
        format and size.

    Raises:
        AudioProbeError: If the file is missing, ffprobe is unavailable,
            times out, or cannot parse the file.
    """
    if not os.path.exists(input_path):
        raise AudioProbeError(
            f"Input file does not exist: {input_path}", input_path=input_path
        )

    ffprobe_path = shutil.which("ffprobe")
    if ffprobe_path is None:
        raise AudioProbeError("ffprobe binary not found on PATH", input_path=input_path)

    cmd = [
        ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        input_path,
    ]

    try:
        completed = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=FFPROBE_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else "unknown error"
        raise AudioProbeError(
            f"Audio file is corrupt or unreadable (ffprobe): {stderr}",
            input_path=input_path,
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise AudioProbeError(
            f"ffprobe timed out after {FFPROBE_TIMEOUT_SECONDS}s",
            input_path=input_path,
        ) from exc

    try:
        info = json.loads(completed.stdout or "{}").get("format", {})
    except ValueError as exc:
        raise AudioProbeError(
            "ffprobe returned invalid JSON", input_path=input_path
        ) from exc

    duration = info.get("duration")
    format_name = info.get("format_name")
    return ProbeResult(
        path=input_path,
        duration_seconds=round(float(duration), 3) if duration else None,
        format=FORMAT_ALIASES.get(format_name) or format_from_filename(input_path),
        size_bytes=os.path.getsize(input_path),
    )
