"""Media file information parsed from FFprobe JSON output."""

import json
from dataclasses import dataclass


@dataclass
class MediaInfo:
    """Media file information."""

    duration_s: float | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    format_name: str | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    sample_rate: int | None = None
    channels: int | None = None
    size_bytes: int | None = None
    has_video: bool = False
    has_audio: bool = False

    @property
    def dimensions(self) -> tuple[int, int] | None:
        if self.width and self.height:
            return self.width, self.height
        return None


def probe_args(file_path: str) -> list[str]:
    """ffprobe arguments (without the binary) that ``parse_probe_output`` understands."""
    return [
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        file_path,
    ]


def _to_float(value) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_fps(rate: str | None) -> float | None:
    if not rate or "/" not in rate:
        return None
    num, den = rate.split("/", 1)
    try:
        if int(den) > 0:
            return round(int(num) / int(den), 3)
    except ValueError:
        return None
    return None


def parse_probe_output(raw: str | bytes) -> MediaInfo:
    """
    Parse ``ffprobe -show_format -show_streams`` JSON.

    Only the first video and first audio stream are considered.

    Raises:
        ValueError: If the output is not valid JSON
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse ffprobe output: {e}") from e

    info = MediaInfo()

    format_info = data.get("format", {})
    info.duration_s = _to_float(format_info.get("duration"))
    if format_info.get("format_name"):
        info.format_name = format_info["format_name"].split(",")[0]
    if format_info.get("size"):
        info.size_bytes = _to_int(format_info["size"])

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.fps = _parse_fps(stream.get("r_frame_rate"))
            if info.duration_s is None:
                info.duration_s = _to_float(stream.get("duration"))

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")
            info.sample_rate = _to_int(stream.get("sample_rate")) or None
            info.channels = stream.get("channels")
            if info.duration_s is None:
                info.duration_s = _to_float(stream.get("duration"))

    return info
