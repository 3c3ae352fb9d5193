import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from mediamux.api import videos
from mediamux.config import get_settings
from mediamux.exceptions import InputValidationError, MediaMuxError
from mediamux.render.engine import TranscodingEngine
from mediamux.render.pipeline import MediaPipeline
from mediamux.services.asset_resolver import AssetResolver
from mediamux.services.publisher import create_publisher
from mediamux.utils.file_utils import ensure_dir

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

_started_at = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    temp_dir = ensure_dir(settings.temp_dir)
    engine = TranscodingEngine(
        ffmpeg_path=settings.ffmpeg_path,
        ffprobe_path=settings.ffprobe_path,
        max_processes=settings.engine_max_processes,
        threads=settings.engine_threads,
    )
    resolver = AssetResolver(
        temp_dir,
        timeout_s=settings.download_timeout_s,
        max_hops=settings.download_max_hops,
        user_agent=settings.download_user_agent,
        chunk_size=settings.download_chunk_size,
    )
    publisher = create_publisher(engine, settings)
    app.state.publisher = publisher
    app.state.pipeline = MediaPipeline(engine, resolver, publisher, temp_dir, settings)
    logger.info(f"{settings.app_name} started ({settings.environment}), temp dir {temp_dir}")
    yield
    # Shutdown
    await resolver.aclose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MediaMuxError)
async def mediamux_exception_handler(request: Request, exc: MediaMuxError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(include_detail=settings.expose_error_details),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request shape errors are answered with 400, like every other input error."""
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=InputValidationError(message).to_dict(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
    )


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    error = MediaMuxError("Internal server error")
    payload = error.to_dict()
    if settings.expose_error_details:
        payload["error"] = str(exc)
    return JSONResponse(status_code=500, content=payload)


# Routers
app.include_router(videos.router, prefix="/api/videos", tags=["videos"])


@app.get("/")
async def root() -> dict[str, Any]:
    return {
        "message": f"{settings.app_name} is running",
        "version": settings.app_version,
        "endpoints": {
            "health": "GET /health",
            "merge": "POST /api/videos/merge",
            "separate": "POST /api/videos/separate",
            "upload": "POST /api/videos/upload",
            "get": "GET /api/videos/{publicId}",
            "delete": "DELETE /api/videos/{publicId}",
        },
    }


@app.get("/health")
async def health_check() -> dict[str, Any]:
    return {
        "status": "ok",
        "uptime_s": round(time.monotonic() - _started_at, 3),
        "environment": settings.environment,
        "version": settings.app_version,
    }


@app.get("/media/{file_path:path}")
async def get_media_file(file_path: str) -> FileResponse:
    """Serve files published by the local publisher."""
    if not settings.use_local_storage:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    base_path = Path(settings.local_storage_path).resolve()
    target = (base_path / file_path).resolve()
    if base_path not in target.parents or not target.is_file():
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )
    return FileResponse(target)
