from typing import Annotated

from fastapi import Depends, Request

from mediamux.config import Settings, get_settings
from mediamux.render.pipeline import MediaPipeline
from mediamux.services.publisher import Publisher


def get_pipeline(request: Request) -> MediaPipeline:
    """The application's MediaPipeline (created in the lifespan)."""
    return request.app.state.pipeline


def get_publisher(request: Request) -> Publisher:
    return request.app.state.publisher


Pipeline = Annotated[MediaPipeline, Depends(get_pipeline)]
MediaPublisher = Annotated[Publisher, Depends(get_publisher)]
AppSettings = Annotated[Settings, Depends(get_settings)]
