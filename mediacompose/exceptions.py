"""Custom exceptions for the composition service.

Every error carries a machine-readable code (see constants/error_codes.py)
and the HTTP status the API layer maps it to.
"""

from mediacompose.constants.error_codes import get_error_spec
from mediacompose.schemas.envelope import ErrorInfo


class MediaComposeError(Exception):
    """Base exception for all composition service errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
        )


# =============================================================================
# Client Errors (400/404)
# =============================================================================


class ValidationError(MediaComposeError):
    """Malformed or empty input, unresolved references."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Invalid composition request"


class JobNotFoundError(MediaComposeError):
    """Composition job not found."""

    code = "COMPOSITION_NOT_FOUND"
    status_code = 404
    message = "Composition not found"

    def __init__(self, job_id: str | None = None):
        message = f"Composition not found: {job_id}" if job_id else self.message
        super().__init__(message)
        self.job_id = job_id


# =============================================================================
# Processing Errors (500/504)
# =============================================================================


class SegmentProcessingError(MediaComposeError):
    """A single segment could not be decoded or written."""

    code = "SEGMENT_PROCESSING_ERROR"
    status_code = 500
    message = "Segment processing failed"

    def __init__(self, message: str | None = None, *, order_key: int | None = None):
        super().__init__(message)
        self.order_key = order_key


class TranscodeError(MediaComposeError):
    """The transcoding engine reported a failure.

    ``diagnostic`` holds the engine's stderr exactly as emitted.
    """

    code = "TRANSCODE_ERROR"
    status_code = 500
    message = "Transcoding failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        diagnostic: str = "",
        returncode: int | None = None,
    ):
        msg = message or self.message
        if diagnostic:
            msg = f"{msg}: {diagnostic}"
        super().__init__(msg)
        self.diagnostic = diagnostic
        self.returncode = returncode


class TranscodeTimeoutError(MediaComposeError):
    """The transcoding engine did not finish within its deadline.

    Not a TranscodeError subclass; the engine process is killed, so there is
    no engine diagnostic to carry.
    """

    code = "TRANSCODE_TIMEOUT"
    status_code = 504
    message = "Transcoding timed out"

    def __init__(self, timeout_s: float | None = None, *, operation: str | None = None):
        if timeout_s is not None:
            label = operation or "Transcode"
            message = f"{label} timed out after {timeout_s:g}s"
        else:
            message = self.message
        super().__init__(message)
        self.timeout_s = timeout_s
        self.operation = operation


# =============================================================================
# System Errors
# =============================================================================


class JobStoreError(MediaComposeError):
    """Composition job persistence failed."""

    code = "JOB_STORE_ERROR"
    status_code = 500
    message = "Composition record could not be persisted"


class CleanupError(MediaComposeError):
    """Reclaiming an expired artifact failed. Never fatal."""

    code = "CLEANUP_ERROR"
    status_code = 500
    message = "Cleanup failed"
