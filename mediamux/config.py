from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "MediaMux API"
    app_version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # CORS - comma-separated origins
    cors_origins_raw: str = "*"

    # Shared temp namespace for downloads and intermediates
    temp_dir: str = "/tmp/mediamux"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    # Number of ffmpeg processes allowed to run at once
    engine_max_processes: int = 2
    # 0 = let ffmpeg decide
    engine_threads: int = 0

    # Encoding defaults
    video_codec: str = "libx264"
    video_preset: str = "medium"
    video_crf: int = 23
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    fallback_audio_codec: str = "libmp3lame"
    fallback_audio_bitrate: str = "192k"

    # Composition defaults
    default_canvas_width: int = 1920
    default_canvas_height: int = 1080
    default_timeline_duration_s: float = 60.0
    audio_dropout_transition_s: float = 2.0

    # Asset download
    download_timeout_s: float = 120.0
    download_max_hops: int = 10
    download_chunk_size: int = 1024 * 1024
    download_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
    )

    # Publishing (local storage for development, GCS otherwise)
    use_local_storage: bool = True
    local_storage_path: str = "/tmp/mediamux-storage"
    public_base_url: str = "http://localhost:8000/media"
    gcs_bucket_name: str = "mediamux-assets"
    gcs_project_id: str = ""

    # File Upload
    max_upload_size_mb: int = 100
    allowed_video_types: list[str] = [
        "video/mp4",
        "video/mpeg",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-ms-wmv",
        "video/webm",
        "video/x-matroska",
    ]

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins_raw.split(",") if origin.strip()]

    @computed_field
    @property
    def expose_error_details(self) -> bool:
        """Whether error responses may carry internal detail."""
        return self.debug or self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    return Settings()
