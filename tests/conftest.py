"""
Pytest fixtures for mediamux tests.

Nothing here needs a real ffmpeg or network access: the engine, resolver and
publisher are replaced with in-memory fakes that still create and check real
files under a per-test temp directory, so cleanup behaviour is observable.
"""

from pathlib import Path
from typing import Optional

import pytest

from mediamux.config import Settings
from mediamux.exceptions import EngineError, MediaNotFoundError, PublishError, ResolutionError
from mediamux.render.engine import TranscodeCommand
from mediamux.render.pipeline import MediaPipeline
from mediamux.schemas.video import PublishedMedia, PublishResult
from mediamux.services.asset_resolver import MediaReference, OriginKind, ResolvedAsset
from mediamux.utils.file_utils import temp_file_path
from mediamux.utils.media_info import MediaInfo


class FakeEngine:
    """Records commands and writes a placeholder output file for each run."""

    def __init__(self, probes: Optional[dict[str, MediaInfo]] = None):
        self.commands: list[TranscodeCommand] = []
        self.probes = probes or {}
        self.default_probe = MediaInfo(
            duration_s=10.0, width=1280, height=720,
            has_video=True, has_audio=True, audio_codec="aac",
        )
        # 1-based index of the run that should fail, and the stderr to fail with
        self.fail_on_run: Optional[int] = None
        self.fail_stderr = "Error while filtering"

    async def run(self, command: TranscodeCommand, progress=None) -> Path:
        self.commands.append(command)
        output = Path(command.output_path)
        if self.fail_on_run == len(self.commands):
            output.write_bytes(b"partial")
            raise EngineError(1, self.fail_stderr)
        output.write_bytes(b"media")
        if progress is not None:
            progress(1.0)
        return output

    async def probe(self, file_path) -> MediaInfo:
        name = Path(file_path).name
        for key, info in self.probes.items():
            if key in name:
                return info
        return self.default_probe


class FakeResolver:
    """Creates a small file in ``temp_dir`` per reference."""

    def __init__(self, temp_dir: Path):
        self.temp_dir = temp_dir
        self.resolved: list[str] = []
        self.fail_for: Optional[str] = None

    async def resolve(self, reference) -> ResolvedAsset:
        url = reference.url if isinstance(reference, MediaReference) else reference
        if self.fail_for and self.fail_for in url:
            raise ResolutionError("Failed to download: HTTP 404", url=url, http_status=404)
        # Keep the original basename so FakeEngine.probe can key on it
        stem = Path(url).stem
        path = temp_file_path(self.temp_dir, f"download_{stem}", ".mp4")
        path.write_bytes(b"downloaded")
        self.resolved.append(url)
        return ResolvedAsset(
            local_path=path,
            origin_kind=OriginKind.DIRECT,
            byte_size=path.stat().st_size,
            source_url=url,
        )

    async def resolve_many(self, references) -> list[ResolvedAsset]:
        assets: list[ResolvedAsset] = []
        try:
            for ref in references:
                assets.append(await self.resolve(ref))
        except ResolutionError:
            for asset in assets:
                asset.local_path.unlink(missing_ok=True)
            raise
        return assets


class FakePublisher:
    """Remembers what was published; the file must exist at publish time."""

    def __init__(self):
        self.published: list[tuple[Path, str]] = []
        self.deleted: list[str] = []
        self.fail_for_folder: Optional[str] = None

    async def publish(self, local_path: Path, folder: str) -> PublishResult:
        assert Path(local_path).exists(), "published file must exist"
        if self.fail_for_folder == folder:
            raise PublishError("Cloud storage service error")
        self.published.append((Path(local_path), folder))
        return PublishResult(
            public_id=f"{folder}/id{len(self.published)}",
            url=f"https://cdn.example.com/{folder}/id{len(self.published)}{Path(local_path).suffix}",
            format=Path(local_path).suffix.lstrip("."),
            duration=10.0,
            width=1280,
            height=720,
            byte_size=Path(local_path).stat().st_size,
        )

    async def get(self, public_id: str) -> PublishedMedia:
        for index, (path, folder) in enumerate(self.published):
            if public_id == f"{folder}/id{index + 1}":
                return PublishedMedia(
                    public_id=public_id,
                    url=f"https://cdn.example.com/{public_id}{path.suffix}",
                    format=path.suffix.lstrip("."),
                    byte_size=5,
                )
        raise MediaNotFoundError(public_id)

    async def delete(self, public_id: str) -> bool:
        self.deleted.append(public_id)
        return True


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def settings(temp_dir: Path, tmp_path: Path) -> Settings:
    return Settings(
        temp_dir=str(temp_dir),
        local_storage_path=str(tmp_path / "storage"),
        environment="development",
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def fake_resolver(temp_dir: Path) -> FakeResolver:
    return FakeResolver(temp_dir)


@pytest.fixture
def fake_publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def pipeline(fake_engine, fake_resolver, fake_publisher, temp_dir, settings) -> MediaPipeline:
    return MediaPipeline(fake_engine, fake_resolver, fake_publisher, temp_dir, settings)
