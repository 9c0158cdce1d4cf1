"""Error codes dictionary for the composition API.

Single source of truth for error codes, their retryability and a
human-readable recovery hint. Used by the exception handlers in main.py.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str


ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request errors
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Fix the request payload and resubmit",
    },
    "NO_SEGMENTS": {
        "retryable": False,
        "suggested_fix": "Submit at least one segment",
    },
    "NO_VALID_CLIPS": {
        "retryable": False,
        "suggested_fix": "Reference at least one video/audio asset with a source url or data_base64",
    },
    "UNSUPPORTED_FORMAT": {
        "retryable": False,
    },
    "COMPOSITION_NOT_FOUND": {
        "retryable": False,
    },
    # ==========================================================================
    # Processing errors
    # ==========================================================================
    "SEGMENT_PROCESSING_ERROR": {
        "retryable": False,
        "suggested_fix": "Check that every base_64 payload is valid media",
    },
    "TRANSCODE_ERROR": {
        "retryable": False,
    },
    "TRANSCODE_TIMEOUT": {
        "retryable": True,
        "suggested_fix": "Retry with shorter segments",
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "JOB_STORE_ERROR": {
        "retryable": True,
    },
    "CLEANUP_ERROR": {
        "retryable": True,
    },
    "INTERNAL_ERROR": {
        "retryable": False,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
