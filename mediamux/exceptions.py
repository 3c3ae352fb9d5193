"""Custom exceptions for the mediamux service.

Every error raised by a pipeline stage is a ``MediaMuxError``. The class
decides the HTTP status the boundary layer answers with; the instance carries
the pipeline stage it happened in so callers can tell a failed download from
a failed encode.
"""

from typing import Any

from mediamux.constants.error_codes import get_error_spec


class MediaMuxError(Exception):
    """Base exception for all mediamux errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        stage: str | None = None,
        detail: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        self.stage = stage
        self.detail = detail
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return get_error_spec(self.code).get("retryable", False)

    def to_dict(self, *, include_detail: bool = False) -> dict[str, Any]:
        """Serialize for an API error response."""
        spec = get_error_spec(self.code)
        payload: dict[str, Any] = {
            "success": False,
            "message": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        if self.stage:
            payload["stage"] = self.stage
        if spec.get("suggested_fix"):
            payload["suggested_fix"] = spec["suggested_fix"]
        if include_detail:
            cause = self.detail or (str(self.__cause__) if self.__cause__ else None)
            if cause:
                payload["error"] = cause
        return payload


# =============================================================================
# Caller errors (400)
# =============================================================================


class InputValidationError(MediaMuxError):
    """Malformed or incomplete request."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid request"


class PayloadTooLargeError(InputValidationError):
    """Uploaded file exceeds the configured limit."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413
    message = "File too large"

    def __init__(self, max_mb: int | None = None):
        message = f"File too large. Maximum size is {max_mb}MB." if max_mb else self.message
        super().__init__(message)


# =============================================================================
# Processing errors (422)
# =============================================================================


class ResolutionError(MediaMuxError):
    """A remote reference could not be turned into a local media file."""

    code = "RESOLUTION_FAILED"
    status_code = 422
    message = "Failed to download media"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        url: str | None = None,
        http_status: int | None = None,
        detail: str | None = None,
    ):
        self.url = url
        self.http_status = http_status
        super().__init__(message, code=code, detail=detail)


class EngineError(MediaMuxError):
    """The transcoding engine exited unsuccessfully."""

    code = "ENGINE_FAILED"
    status_code = 422
    message = "FFmpeg processing failed"

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        message = f"FFmpeg exited with code {returncode}"
        if tail:
            message += f": {tail}"
        super().__init__(message, detail=stderr[-2000:] or None)


class CompositionError(MediaMuxError):
    """The engine failed to execute a composition plan."""

    code = "COMPOSITION_FAILED"
    status_code = 422
    message = "Video processing failed"


class ExtractionError(CompositionError):
    """A video-only or audio-only derivative could not be produced."""

    code = "EXTRACTION_FAILED"
    message = "Track extraction failed"


class MuxError(MediaMuxError):
    """Combining composed video and audio failed."""

    code = "MUX_FAILED"
    status_code = 422
    message = "Failed to combine video and audio"


# =============================================================================
# Storage errors (5xx / 404)
# =============================================================================


class PublishError(MediaMuxError):
    """The publishing service failed."""

    code = "PUBLISH_FAILED"
    status_code = 502
    message = "Cloud storage service error"


class MediaNotFoundError(PublishError):
    """No published media exists under the given id."""

    code = "MEDIA_NOT_FOUND"
    status_code = 404
    message = "Video not found"

    def __init__(self, public_id: str | None = None):
        message = f"Video not found: {public_id}" if public_id else self.message
        super().__init__(message)


class FilesystemError(MediaMuxError):
    """Local temp storage could not be written or read."""

    code = "FILESYSTEM_ERROR"
    status_code = 500
    message = "Local file operation failed"
