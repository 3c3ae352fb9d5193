"""Video merge / separate / upload endpoints."""

import logging
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

from fastapi import APIRouter, File, Form, UploadFile, status
from pydantic import ValidationError

from mediamux.api.deps import AppSettings, MediaPublisher, Pipeline
from mediamux.exceptions import (
    FilesystemError,
    InputValidationError,
    MediaNotFoundError,
    PayloadTooLargeError,
)
from mediamux.render.timeline import Layer
from mediamux.schemas.video import LayerRequest, MergeRequest, ProcessOptions, SeparateRequest
from mediamux.utils.file_utils import (
    cleanup_temp_file,
    format_file_size,
    normalize_extension,
    temp_file_path,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_UPLOAD_CHUNK_SIZE = 1024 * 1024


def _to_layers(requests: Optional[list[LayerRequest]]) -> list[Layer]:
    return [
        Layer.from_lists(layer.files, layer.starting_timestamps, layer.decibels)
        for layer in requests or []
    ]


def _is_http_url(url: str) -> bool:
    parts = urlsplit(url)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


@router.post("/merge")
async def merge_videos(body: MergeRequest, pipeline: Pipeline) -> dict[str, Any]:
    """Compose video layers and mix audio layers into one published video."""
    if not body.video_layers and not body.audio_layers:
        raise InputValidationError("At least one of videoLayers or audioLayers is required")

    result = await pipeline.merge(_to_layers(body.video_layers), _to_layers(body.audio_layers))
    return {
        "success": True,
        "message": "Videos merged successfully",
        "data": result.model_dump(by_alias=True),
    }


@router.post("/separate")
async def separate_video(body: SeparateRequest, pipeline: Pipeline) -> dict[str, Any]:
    """Publish the video-only and audio-only tracks of one video."""
    if not _is_http_url(body.video_url):
        raise InputValidationError("videoUrl must be a valid http(s) URL")

    results = await pipeline.separate(body.video_url)
    return {
        "success": True,
        "message": "Video and audio separated successfully",
        "data": {key: value.model_dump(by_alias=True) for key, value in results.items()},
    }


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def upload_video(
    pipeline: Pipeline,
    settings: AppSettings,
    video: Optional[UploadFile] = File(None),
    resolution: Optional[str] = Form(None),
    duration: Optional[float] = Form(None),
) -> dict[str, Any]:
    """Transcode an uploaded video and publish it.

    The upload is streamed into the temp namespace; the processing job takes
    ownership of that file and removes it when it finishes.
    """
    if video is None:
        raise InputValidationError("No video file provided")
    if video.content_type not in settings.allowed_video_types:
        raise InputValidationError("Invalid file type. Only video files are allowed.")

    try:
        options = ProcessOptions(resolution=resolution, duration=duration)
    except ValidationError as e:
        raise InputValidationError(f"Invalid processing options: {e.errors()[0]['msg']}") from e

    ext = normalize_extension(Path(video.filename or "").suffix) or ".mp4"
    upload_path = temp_file_path(settings.temp_dir, "upload", ext)
    max_bytes = settings.max_upload_size_mb * 1024 * 1024
    size = 0
    try:
        with open(upload_path, "wb") as fh:
            while chunk := await video.read(_UPLOAD_CHUNK_SIZE):
                size += len(chunk)
                if size > max_bytes:
                    raise PayloadTooLargeError(settings.max_upload_size_mb)
                fh.write(chunk)
    except PayloadTooLargeError:
        cleanup_temp_file(upload_path)
        raise
    except OSError as e:
        cleanup_temp_file(upload_path)
        raise FilesystemError(f"Failed to store upload: {e}") from e

    logger.info(f"Received upload {video.filename} ({format_file_size(size)})")
    result = await pipeline.process_upload(upload_path, options)
    return {
        "success": True,
        "message": "Video uploaded successfully",
        "data": result.model_dump(by_alias=True),
    }


@router.get("/{public_id:path}")
async def get_video(public_id: str, publisher: MediaPublisher) -> dict[str, Any]:
    media = await publisher.get(public_id)
    return {"success": True, "data": media.model_dump(by_alias=True)}


@router.delete("/{public_id:path}")
async def delete_video(public_id: str, publisher: MediaPublisher) -> dict[str, Any]:
    if not await publisher.delete(public_id):
        raise MediaNotFoundError(public_id)
    return {"success": True, "message": "Video deleted successfully"}
