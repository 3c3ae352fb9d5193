"""
Job orchestration for merge, separate and single-file processing.

Each public operation runs as one Job:
1. Resolve remote references into the shared temp namespace
2. Compose video / mix audio (or extract tracks)
3. Mux composed video and audio
4. Publish the final artifact(s)

Every local path a Job creates is recorded in ``Job.temp_artifacts`` and
deleted when the Job reaches a terminal state, whether it succeeded or not.
"""

import asyncio
import logging
from collections import deque
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Iterator, Optional, Sequence
from uuid import uuid4

from mediamux.config import Settings, get_settings
from mediamux.exceptions import (
    CompositionError,
    EngineError,
    FilesystemError,
    InputValidationError,
    MediaMuxError,
    MuxError,
    PublishError,
    ResolutionError,
)
from mediamux.render.audio_mixer import build_audio_composition
from mediamux.render.engine import ProgressObserver, TranscodeCommand, TranscodingEngine
from mediamux.render.timeline import Layer, flatten_layers
from mediamux.render.track_extractor import TrackExtractor
from mediamux.render.video_compositor import build_video_composition
from mediamux.schemas.video import ProcessOptions, PublishResult
from mediamux.services.asset_resolver import AssetResolver, MediaReference
from mediamux.services.publisher import Publisher
from mediamux.utils.file_utils import cleanup_temp_file, ensure_dir, temp_file_path
from mediamux.utils.media_info import MediaInfo

logger = logging.getLogger(__name__)

# Publisher folders
PROCESSED_FOLDER = "processed"
MERGED_FOLDER = "merged"
SEPARATED_VIDEO_FOLDER = "separated/videos"
SEPARATED_AUDIO_FOLDER = "separated/audio"

# Number of finished jobs kept for inspection
_RECENT_JOBS = 100


# ============================================================================
# Enums
# ============================================================================


class JobKind(str, Enum):
    """Orchestrated operation."""

    MERGE = "merge"
    SEPARATE = "separate"
    PROCESS = "process"


class JobStatus(str, Enum):
    """Job lifecycle. ``failed`` is reachable from any non-terminal state."""

    CREATED = "created"
    RESOLVING = "resolving"
    COMPOSING = "composing"
    MUXING = "muxing"
    PUBLISHING = "publishing"
    DONE = "done"
    FAILED = "failed"


# Error class used for foreign exceptions raised inside each stage
_STAGE_ERRORS: dict[JobStatus, type[MediaMuxError]] = {
    JobStatus.RESOLVING: ResolutionError,
    JobStatus.COMPOSING: CompositionError,
    JobStatus.MUXING: MuxError,
    JobStatus.PUBLISHING: PublishError,
}


# ============================================================================
# Job
# ============================================================================


@dataclass
class Job:
    """One orchestration unit and the temp files it owns."""

    kind: JobKind
    id: str = field(default_factory=lambda: str(uuid4()))
    status: JobStatus = JobStatus.CREATED
    # Ordered set: dict keys keep insertion order
    temp_artifacts: dict[Path, None] = field(default_factory=dict)
    final_output_path: Optional[Path] = None
    failed_stage: Optional[JobStatus] = None
    error_message: Optional[str] = None

    @property
    def short_id(self) -> str:
        return self.id[:8]

    def track(self, path: str | Path) -> Path:
        """Record ``path`` as owned by this job."""
        path = Path(path)
        self.temp_artifacts[path] = None
        return path

    def allocate(self, temp_dir: str | Path, kind: str, ext: str) -> Path:
        """Reserve a unique temp path and track it before anything writes to it."""
        return self.track(temp_file_path(temp_dir, kind, ext))

    def cleanup(self) -> int:
        """Delete every tracked artifact. Never raises; returns the number removed."""
        removed = 0
        for path in self.temp_artifacts:
            if cleanup_temp_file(path):
                removed += 1
        return removed


def _log_progress(position_s: float) -> None:
    logger.debug(f"FFmpeg progress: {position_s:.2f}s")


def scale_filter(resolution: str | None) -> str | None:
    """
    Turn ``"WxH"`` into an ffmpeg scale filter.

    A ``?`` side keeps the aspect ratio (``-2`` keeps it divisible by 2);
    ``"?x?"`` means no scaling.
    """
    if not resolution:
        return None
    width, _, height = resolution.partition("x")
    if width == "?" and height == "?":
        return None
    width = "-2" if width == "?" else width
    height = "-2" if height == "?" else height
    return f"scale={width}:{height}"


def _bind_sources(layers: Sequence[Layer], paths: Sequence[str]) -> list[Layer]:
    """Replace each layer's references with resolved local paths (same order)."""
    bound = []
    offset = 0
    for layer in layers:
        count = len(layer.sources)
        bound.append(layer.with_sources(list(paths[offset:offset + count])))
        offset += count
    return bound


# ============================================================================
# Pipeline
# ============================================================================


class MediaPipeline:
    """
    Coordinates resolution, composition, muxing and publication.

    Handles:
    - merge: multi-layer video compositing + audio mixing + mux
    - separate: video-only / audio-only extraction
    - process: single-file transcode (remote reference or uploaded file)
    """

    def __init__(
        self,
        engine: TranscodingEngine,
        resolver: AssetResolver,
        publisher: Publisher,
        temp_dir: str | Path,
        settings: Optional[Settings] = None,
        progress_observer: Optional[ProgressObserver] = None,
        extractor: Optional[TrackExtractor] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine
        self.resolver = resolver
        self.publisher = publisher
        self.temp_dir = ensure_dir(temp_dir)
        self.progress_observer = progress_observer or _log_progress
        self.extractor = extractor or TrackExtractor(
            engine,
            self.temp_dir,
            fallback_audio_codec=self.settings.fallback_audio_codec,
            fallback_audio_bitrate=self.settings.fallback_audio_bitrate,
        )
        self.recent_jobs: deque[Job] = deque(maxlen=_RECENT_JOBS)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _job(self, kind: JobKind) -> AsyncIterator[Job]:
        job = Job(kind=kind)
        self.recent_jobs.append(job)
        logger.info(f"[JOB {job.short_id}] {kind.value} created")
        try:
            yield job
        except BaseException as e:
            job.failed_stage = job.status
            job.status = JobStatus.FAILED
            job.error_message = str(e)
            logger.warning(
                f"[JOB {job.short_id}] failed during {job.failed_stage.value}: {e}"
            )
            raise
        else:
            job.status = JobStatus.DONE
            logger.info(f"[JOB {job.short_id}] {kind.value} done")
        finally:
            removed = job.cleanup()
            logger.debug(f"[JOB {job.short_id}] removed {removed} temp file(s)")

    @contextmanager
    def _stage(self, job: Job, status: JobStatus) -> Iterator[None]:
        """Move ``job`` into ``status``; errors raised inside are tagged with it."""
        job.status = status
        logger.info(f"[JOB {job.short_id}] {status.value}")
        try:
            yield
        except EngineError as e:
            error = _STAGE_ERRORS[status](e.message, detail=e.detail)
            error.stage = status.value
            raise error from e
        except MediaMuxError as e:
            if e.stage is None:
                e.stage = status.value
            raise
        except OSError as e:
            error = FilesystemError(f"Local file operation failed: {e}")
            error.stage = status.value
            raise error from e
        except Exception as e:
            error_cls = _STAGE_ERRORS[status]
            error = error_cls(f"{error_cls.message}: {e}")
            error.stage = status.value
            raise error from e

    # ------------------------------------------------------------------
    # Output options
    # ------------------------------------------------------------------

    def _encode_args(self) -> list[str]:
        s = self.settings
        return [
            "-c:v", s.video_codec,
            "-preset", s.video_preset,
            "-crf", str(s.video_crf),
            "-c:a", s.audio_codec,
            "-b:a", s.audio_bitrate,
            "-movflags", "+faststart",
        ]

    def process_args(self, options: Optional[ProcessOptions] = None) -> list[str]:
        """Output options for a single-file transcode."""
        args: list[str] = []
        scale = scale_filter(options.resolution) if options else None
        if scale:
            args.extend(["-vf", scale])
        args.extend(self._encode_args())
        if options and options.duration:
            args.extend(["-t", f"{options.duration:g}"])
        return args

    def mux_args(self) -> list[str]:
        """Copy video, encode audio, one stream from each input, stop at the shorter."""
        return [
            "-c:v", "copy",
            "-c:a", self.settings.audio_codec,
            "-map", "0:v:0",
            "-map", "1:a:0",
            "-shortest",
            "-movflags", "+faststart",
        ]

    # ------------------------------------------------------------------
    # Single-file processing
    # ------------------------------------------------------------------

    async def process(
        self,
        reference: MediaReference | str,
        options: Optional[ProcessOptions] = None,
    ) -> PublishResult:
        """Resolve one reference, transcode it and publish the result."""
        async with self._job(JobKind.PROCESS) as job:
            with self._stage(job, JobStatus.RESOLVING):
                asset = await self.resolver.resolve(reference)
                job.track(asset.local_path)
            return await self._transcode_and_publish(job, asset.local_path, options)

    async def process_upload(
        self,
        local_path: str | Path,
        options: Optional[ProcessOptions] = None,
    ) -> PublishResult:
        """Same as ``process`` for a file already in the temp namespace.

        The job adopts ``local_path`` and deletes it when finished.
        """
        async with self._job(JobKind.PROCESS) as job:
            source = job.track(local_path)
            return await self._transcode_and_publish(job, source, options)

    async def _transcode_and_publish(
        self,
        job: Job,
        source: Path,
        options: Optional[ProcessOptions],
    ) -> PublishResult:
        with self._stage(job, JobStatus.COMPOSING):
            output = job.allocate(self.temp_dir, "processed", ".mp4")
            command = TranscodeCommand(
                inputs=[str(source)],
                output_path=str(output),
                output_args=self.process_args(options),
            )
            await self.engine.run(command, self.progress_observer)

        with self._stage(job, JobStatus.PUBLISHING):
            job.final_output_path = output
            return await self.publisher.publish(output, PROCESSED_FOLDER)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    async def merge(
        self,
        video_layers: Optional[Sequence[Layer]] = None,
        audio_layers: Optional[Sequence[Layer]] = None,
    ) -> PublishResult:
        """
        Compose video layers and mix audio layers into one published file.

        Raises:
            InputValidationError: If neither set holds a source (before any I/O)
            MediaMuxError: Any stage failure, tagged with the stage
        """
        video_layers = [layer for layer in (video_layers or []) if layer.sources]
        audio_layers = [layer for layer in (audio_layers or []) if layer.sources]
        if not video_layers and not audio_layers:
            raise InputValidationError("At least one video or audio layer is required")

        async with self._job(JobKind.MERGE) as job:
            video_sources = flatten_layers(video_layers)
            audio_sources = flatten_layers(audio_layers)

            with self._stage(job, JobStatus.RESOLVING):
                assets = await self.resolver.resolve_many(
                    [source.source for source in [*video_sources, *audio_sources]]
                )
                for asset in assets:
                    job.track(asset.local_path)

            paths = [str(asset.local_path) for asset in assets]
            video_layers = _bind_sources(video_layers, paths[:len(video_sources)])
            audio_layers = _bind_sources(audio_layers, paths[len(video_sources):])

            video_path: Optional[Path] = None
            audio_path: Optional[Path] = None
            with self._stage(job, JobStatus.COMPOSING):
                if video_layers:
                    video_path = await self._compose_video(job, video_layers)
                if audio_layers:
                    duration_s = await self._video_duration(video_path)
                    audio_path = await self._mix_audio(job, audio_layers, duration_s)

            if video_path and audio_path:
                with self._stage(job, JobStatus.MUXING):
                    final_path = job.allocate(self.temp_dir, "final", ".mp4")
                    command = TranscodeCommand(
                        inputs=[str(video_path), str(audio_path)],
                        output_path=str(final_path),
                        output_args=self.mux_args(),
                    )
                    await self.engine.run(command, self.progress_observer)
            else:
                final_path = video_path or audio_path

            with self._stage(job, JobStatus.PUBLISHING):
                job.final_output_path = final_path
                return await self.publisher.publish(final_path, MERGED_FOLDER)

    async def _probe_or_none(self, path: str | Path) -> Optional[MediaInfo]:
        try:
            return await self.engine.probe(path)
        except EngineError as e:
            logger.warning(f"Could not probe {Path(path).name}: {e.message}")
            return None

    async def _compose_video(self, job: Job, layers: Sequence[Layer]) -> Path:
        sources = flatten_layers(layers)
        probes = await asyncio.gather(*(self._probe_or_none(s.source) for s in sources))
        plan = build_video_composition(
            layers,
            probes,
            default_canvas=(
                self.settings.default_canvas_width,
                self.settings.default_canvas_height,
            ),
        )

        output = job.allocate(self.temp_dir, "merged", ".mp4")
        if plan.is_passthrough:
            output_args = self.process_args()
        else:
            output_args = self._encode_args()
            if plan.duration_s:
                output_args.extend(["-t", f"{plan.duration_s:.3f}"])
        await self.engine.run(plan.to_command(str(output), output_args), self.progress_observer)
        return output

    async def _video_duration(self, video_path: Optional[Path]) -> float:
        """Duration of the composed video, or the configured fallback."""
        fallback = self.settings.default_timeline_duration_s
        if video_path is None:
            return fallback
        info = await self._probe_or_none(video_path)
        if info is None or not info.duration_s:
            logger.info(f"Video duration unavailable, using {fallback:g}s")
            return fallback
        return info.duration_s

    async def _mix_audio(
        self,
        job: Job,
        layers: Sequence[Layer],
        duration_s: float,
    ) -> Optional[Path]:
        plan = build_audio_composition(
            layers,
            duration_s,
            dropout_transition_s=self.settings.audio_dropout_transition_s,
        )
        if plan is None:
            return None
        output = job.allocate(self.temp_dir, "audio", ".m4a")
        output_args = ["-c:a", self.settings.audio_codec, "-b:a", self.settings.audio_bitrate]
        await self.engine.run(plan.to_command(str(output), output_args), self.progress_observer)
        return output

    # ------------------------------------------------------------------
    # Separate
    # ------------------------------------------------------------------

    async def separate(self, reference: MediaReference | str) -> dict[str, PublishResult]:
        """
        Publish the video-only and audio-only tracks of one reference.

        Returns:
            ``{"video": PublishResult, "audio": PublishResult}``
        """
        async with self._job(JobKind.SEPARATE) as job:
            with self._stage(job, JobStatus.RESOLVING):
                asset = await self.resolver.resolve(reference)
                job.track(asset.local_path)

            with self._stage(job, JobStatus.COMPOSING):
                video_path = await self.extractor.extract_video_only(
                    asset.local_path, on_output=job.track, progress=self.progress_observer
                )
                audio_path = await self.extractor.extract_audio_only(
                    asset.local_path, on_output=job.track, progress=self.progress_observer
                )

            with self._stage(job, JobStatus.PUBLISHING):
                video = await self.publisher.publish(video_path, SEPARATED_VIDEO_FOLDER)
                try:
                    audio = await self.publisher.publish(audio_path, SEPARATED_AUDIO_FOLDER)
                except BaseException:
                    await self._unpublish(video.public_id)
                    raise
                job.final_output_path = audio_path

            return {"video": video, "audio": audio}

    async def _unpublish(self, public_id: str) -> None:
        """Best-effort removal of an already published track."""
        try:
            await self.publisher.delete(public_id)
        except Exception as e:
            logger.warning(f"Failed to remove published {public_id}: {e}")
