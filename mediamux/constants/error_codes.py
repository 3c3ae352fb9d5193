"""Error codes dictionary.

Single source of truth for every error code the service emits, whether it is
worth retrying, and a human-readable hint for the caller. Used by
``MediaMuxError.to_dict`` and the FastAPI exception handlers.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Caller errors
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Provide at least one video or audio layer, each with a non-empty files array",
    },
    "PAYLOAD_TOO_LARGE": {
        "retryable": False,
        "suggested_fix": "Upload a smaller file",
    },
    # ==========================================================================
    # Remote asset errors
    # ==========================================================================
    "RESOLUTION_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that every URL is publicly reachable and points to a media file",
    },
    "RESOLUTION_TIMEOUT": {
        "retryable": True,
        "suggested_fix": "Retry the request; the remote host was slow to respond",
    },
    "TOO_MANY_REDIRECTS": {
        "retryable": True,
        "suggested_fix": "Use a direct download URL instead of a redirecting link",
    },
    "NOT_PUBLICLY_ACCESSIBLE": {
        "retryable": False,
        "suggested_fix": "Share the file publicly (anyone with the link) and try again",
    },
    # ==========================================================================
    # Processing errors
    # ==========================================================================
    "ENGINE_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that the input files are valid, decodable media",
    },
    "COMPOSITION_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that the layer files are valid video/audio media",
    },
    "EXTRACTION_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that the source video contains both a video and an audio stream",
    },
    "MUX_FAILED": {
        "retryable": False,
        "suggested_fix": "Check that the composed video and audio tracks are compatible",
    },
    # ==========================================================================
    # Storage errors
    # ==========================================================================
    "PUBLISH_FAILED": {
        "retryable": True,
        "suggested_fix": "Retry later; the storage service rejected or failed the request",
    },
    "MEDIA_NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "Check the public id returned by a previous merge/separate/upload call",
    },
    "FILESYSTEM_ERROR": {
        "retryable": True,
    },
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Return the spec for ``code``, falling back to INTERNAL_ERROR."""
    return ERROR_CODES.get(code, ERROR_CODES["INTERNAL_ERROR"])
