import asyncio
import logging
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from mediamux.exceptions import EngineError, MediaNotFoundError, PublishError
from mediamux.render.engine import TranscodingEngine
from mediamux.schemas.video import PublishedMedia, PublishResult
from mediamux.utils.media_info import MediaInfo

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    async def publish(self, local_path: Path, folder: str) -> PublishResult: ...

    async def get(self, public_id: str) -> PublishedMedia: ...

    async def delete(self, public_id: str) -> bool: ...


def _format_for(path: Path, info: MediaInfo | None) -> str | None:
    ext = path.suffix.lstrip(".").lower()
    if ext:
        return ext
    return info.format_name if info else None


async def _probe_or_none(engine: TranscodingEngine, path: Path) -> MediaInfo | None:
    try:
        return await engine.probe(path)
    except EngineError as e:
        logger.warning(f"Could not probe {path.name} before publishing: {e}")
        return None


class LocalPublisher:
    """Local file storage for development without GCS."""

    def __init__(self, engine: TranscodingEngine, base_path: str | Path, public_base_url: str):
        self.engine = engine
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _find(self, public_id: str) -> Path | None:
        candidate = (self.base_path / public_id).resolve()
        if self.base_path.resolve() not in candidate.parents:
            return None
        matches = sorted(candidate.parent.glob(f"{candidate.name}.*")) if candidate.parent.exists() else []
        return matches[0] if matches else None

    async def publish(self, local_path: Path, folder: str) -> PublishResult:
        local_path = Path(local_path)
        info = await _probe_or_none(self.engine, local_path)
        public_id = f"{folder}/{uuid.uuid4()}"
        target = self.base_path / f"{public_id}{local_path.suffix}"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy, local_path, target)
        except OSError as e:
            raise PublishError(f"Local storage upload failed: {e}") from e

        logger.info(f"Published {local_path.name} as {public_id}")
        return PublishResult(
            public_id=public_id,
            url=f"{self.public_base_url}/{public_id}{local_path.suffix}",
            format=_format_for(local_path, info),
            duration=info.duration_s if info else None,
            width=info.width if info else None,
            height=info.height if info else None,
            byte_size=target.stat().st_size,
        )

    async def get(self, public_id: str) -> PublishedMedia:
        path = self._find(public_id)
        if path is None:
            raise MediaNotFoundError(public_id)
        info = await _probe_or_none(self.engine, path)
        stat = path.stat()
        return PublishedMedia(
            public_id=public_id,
            url=f"{self.public_base_url}/{public_id}{path.suffix}",
            format=_format_for(path, info),
            duration=info.duration_s if info else None,
            width=info.width if info else None,
            height=info.height if info else None,
            byte_size=stat.st_size,
            created_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    async def delete(self, public_id: str) -> bool:
        path = self._find(public_id)
        if path is None:
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise PublishError(f"Failed to delete video: {e}") from e
        return True


class GCSPublisher:
    """Google Cloud Storage publisher for production."""

    def __init__(
        self,
        engine: TranscodingEngine,
        bucket_name: str,
        project_id: str = "",
    ) -> None:
        from google.cloud import storage

        self.engine = engine
        self.bucket_name = bucket_name
        self._storage = storage
        self._project_id = project_id
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self):
        if self._client is None:
            if self._project_id:
                self._client = self._storage.Client(project=self._project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    def _public_url(self, storage_key: str) -> str:
        return f"https://storage.googleapis.com/{self.bucket_name}/{storage_key}"

    def _find_blob(self, public_id: str):
        blobs = list(self.client.list_blobs(self.bucket_name, prefix=f"{public_id}.", max_results=1))
        return blobs[0] if blobs else None

    async def publish(self, local_path: Path, folder: str) -> PublishResult:
        local_path = Path(local_path)
        info = await _probe_or_none(self.engine, local_path)
        public_id = f"{folder}/{uuid.uuid4()}"
        storage_key = f"{public_id}{local_path.suffix}"
        fmt = _format_for(local_path, info)
        metadata = {
            "format": fmt or "",
            "duration": "" if not info or info.duration_s is None else str(info.duration_s),
            "width": "" if not info or info.width is None else str(info.width),
            "height": "" if not info or info.height is None else str(info.height),
        }

        def _upload() -> int:
            blob = self.bucket.blob(storage_key)
            blob.metadata = metadata
            blob.upload_from_filename(str(local_path))
            return local_path.stat().st_size

        try:
            size = await asyncio.to_thread(_upload)
        except Exception as e:
            raise PublishError(f"GCS upload failed: {e}") from e

        logger.info(f"Published {local_path.name} to gs://{self.bucket_name}/{storage_key}")
        return PublishResult(
            public_id=public_id,
            url=self._public_url(storage_key),
            format=fmt,
            duration=info.duration_s if info else None,
            width=info.width if info else None,
            height=info.height if info else None,
            byte_size=size,
        )

    async def get(self, public_id: str) -> PublishedMedia:
        try:
            blob = await asyncio.to_thread(self._find_blob, public_id)
        except Exception as e:
            raise PublishError(f"Failed to get video info: {e}") from e
        if blob is None:
            raise MediaNotFoundError(public_id)
        metadata = blob.metadata or {}
        return PublishedMedia(
            public_id=public_id,
            url=self._public_url(blob.name),
            format=metadata.get("format") or None,
            duration=float(metadata["duration"]) if metadata.get("duration") else None,
            width=int(metadata["width"]) if metadata.get("width") else None,
            height=int(metadata["height"]) if metadata.get("height") else None,
            byte_size=blob.size or 0,
            created_at=blob.time_created,
        )

    async def delete(self, public_id: str) -> bool:
        def _delete() -> bool:
            blob = self._find_blob(public_id)
            if blob is None:
                return False
            blob.delete()
            return True

        try:
            return await asyncio.to_thread(_delete)
        except Exception as e:
            raise PublishError(f"Failed to delete video: {e}") from e


def create_publisher(engine: TranscodingEngine, settings) -> Publisher:
    """LocalPublisher or GCSPublisher depending on ``settings.use_local_storage``."""
    if settings.use_local_storage:
        return LocalPublisher(engine, settings.local_storage_path, settings.public_base_url)
    return GCSPublisher(engine, settings.gcs_bucket_name, settings.gcs_project_id)
