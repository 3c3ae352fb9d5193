from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PublishResult(CamelModel):
    """What survives a job: where the published file lives and what it is."""

    public_id: str
    url: str
    format: str | None = None
    duration: float | None = None
    width: int | None = None
    height: int | None = None
    byte_size: int = Field(alias="bytes")


class PublishedMedia(PublishResult):
    """A previously published file, as returned by a lookup."""

    created_at: datetime | None = None


class LayerRequest(CamelModel):
    files: list[str] = Field(min_length=1)
    starting_timestamps: list[float] | None = None
    decibels: list[float] | None = None

    @field_validator("starting_timestamps")
    @classmethod
    def _non_negative(cls, v: list[float] | None) -> list[float] | None:
        if v and any(t < 0 for t in v):
            raise ValueError("startingTimestamps must not be negative")
        return v


class MergeRequest(CamelModel):
    video_layers: list[LayerRequest] | None = None
    audio_layers: list[LayerRequest] | None = None


class SeparateRequest(CamelModel):
    video_url: str


class ProcessOptions(CamelModel):
    """Optional single-file transcode settings."""

    # "1280x720", "1280x?" or "?x720"
    resolution: str | None = Field(default=None, pattern=r"^(\d+|\?)x(\d+|\?)$")
    duration: float | None = Field(default=None, gt=0)

