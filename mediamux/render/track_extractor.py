"""Video-only / audio-only track extraction."""

import logging
from pathlib import Path
from typing import Callable, Optional

from mediamux.exceptions import EngineError, ExtractionError
from mediamux.render.engine import ProgressObserver, TranscodeCommand, TranscodingEngine
from mediamux.utils.file_utils import cleanup_temp_file, temp_file_path

logger = logging.getLogger(__name__)

# Container that can hold each audio codec without re-encoding
COPY_CONTAINERS = {
    "aac": ".m4a",
    "alac": ".m4a",
    "mp3": ".mp3",
    "opus": ".ogg",
    "vorbis": ".ogg",
    "flac": ".flac",
    "ac3": ".ac3",
    "eac3": ".eac3",
    "pcm_s16le": ".wav",
    "pcm_s24le": ".wav",
}
DEFAULT_COPY_CONTAINER = ".m4a"

# Output container for the transcoding fallback, by encoder
FALLBACK_CONTAINERS = {
    "libmp3lame": ".mp3",
    "aac": ".m4a",
    "libopus": ".ogg",
    "libvorbis": ".ogg",
    "flac": ".flac",
}

# stderr fragments ffmpeg emits when a stream cannot be copied into a container
CODEC_INCOMPATIBLE_MARKERS = (
    "codec not currently supported in container",
    "could not find tag for codec",
    "incorrect codec parameters",
    "could not write header",
    "unsupported codec",
    "not supported by the",
)


def is_codec_incompatibility(error: EngineError) -> bool:
    """True if ``error`` looks like a stream-copy/container mismatch."""
    stderr = error.stderr.lower()
    return any(marker in stderr for marker in CODEC_INCOMPATIBLE_MARKERS)


class TrackExtractor:
    """Produce video-only and audio-only derivatives of a local media file.

    ``on_output`` is called with every output path *before* the engine
    writes to it, so the owning job can track the file even if the engine
    fails halfway.
    """

    def __init__(
        self,
        engine: TranscodingEngine,
        temp_dir: str | Path,
        *,
        fallback_audio_codec: str = "libmp3lame",
        fallback_audio_bitrate: str = "192k",
    ):
        self.engine = engine
        self.temp_dir = Path(temp_dir)
        self.fallback_audio_codec = fallback_audio_codec
        self.fallback_audio_bitrate = fallback_audio_bitrate

    async def extract_video_only(
        self,
        input_path: str | Path,
        *,
        on_output: Optional[Callable[[Path], None]] = None,
        progress: Optional[ProgressObserver] = None,
    ) -> Path:
        """Strip audio and stream-copy the video (no re-encode)."""
        output_path = temp_file_path(self.temp_dir, "video_only", ".mp4")
        if on_output:
            on_output(output_path)
        command = TranscodeCommand(
            inputs=[str(input_path)],
            output_path=str(output_path),
            output_args=["-map", "0:v:0", "-an", "-c:v", "copy", "-movflags", "+faststart"],
        )
        try:
            return await self.engine.run(command, progress)
        except EngineError as e:
            raise ExtractionError(f"Video extraction failed: {e.message}", detail=e.detail) from e

    async def extract_audio_only(
        self,
        input_path: str | Path,
        *,
        on_output: Optional[Callable[[Path], None]] = None,
        progress: Optional[ProgressObserver] = None,
    ) -> Path:
        """
        Extract the audio stream.

        A lossless stream copy into a container matching the source codec is
        tried first; if the engine reports a codec/container mismatch the
        audio is transcoded once with the fallback codec.

        Raises:
            ExtractionError: If extraction fails (after the fallback)
        """
        try:
            info = await self.engine.probe(input_path)
        except EngineError as e:
            raise ExtractionError(f"Audio extraction failed: {e.message}", detail=e.detail) from e
        if not info.has_audio:
            raise ExtractionError(f"No audio track in video: {Path(input_path).name}")

        ext = COPY_CONTAINERS.get(info.audio_codec or "", DEFAULT_COPY_CONTAINER)
        copy_path = temp_file_path(self.temp_dir, "audio_only", ext)
        if on_output:
            on_output(copy_path)
        copy_command = TranscodeCommand(
            inputs=[str(input_path)],
            output_path=str(copy_path),
            output_args=["-map", "0:a:0", "-vn", "-c:a", "copy"],
        )
        try:
            return await self.engine.run(copy_command, progress)
        except EngineError as e:
            if not is_codec_incompatibility(e):
                raise ExtractionError(
                    f"Audio extraction failed: {e.message}", detail=e.detail
                ) from e
            logger.info(
                f"Stream copy of {info.audio_codec} into {ext} failed, falling back to transcoding"
            )
            cleanup_temp_file(copy_path)

        transcode_path = temp_file_path(
            self.temp_dir,
            "audio_only",
            FALLBACK_CONTAINERS.get(self.fallback_audio_codec, ".mka"),
        )
        if on_output:
            on_output(transcode_path)
        transcode_command = TranscodeCommand(
            inputs=[str(input_path)],
            output_path=str(transcode_path),
            output_args=[
                "-map", "0:a:0",
                "-vn",
                "-c:a", self.fallback_audio_codec,
                "-b:a", self.fallback_audio_bitrate,
            ],
        )
        try:
            return await self.engine.run(transcode_command, progress)
        except EngineError as e:
            raise ExtractionError(f"Audio extraction failed: {e.message}", detail=e.detail) from e
