"""Music Ingest Pipeline - Error taxonomy.

Four error families shared by the pipeline, the ingest service and the
library operations. Each carries an error_code for the HTTP layer and a
human-readable message that is what ends up in Track.error_message.
"""

from __future__ import annotations

from enum import StrEnum


class PipelineErrorCode(StrEnum):
    """Error codes for the ingest pipeline."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXTERNAL_TOOL_FAILED = "EXTERNAL_TOOL_FAILED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    def __init__(self, error_code: str, message: str):
        self.error_code = error_code
        self.message = message
        super().__init__(f"{error_code}: {message}")


class ValidationError(PipelineError):
    """Bad input format, size limit exceeded, or path outside the storage root."""

    def __init__(self, message: str):
        super().__init__(PipelineErrorCode.VALIDATION_FAILED, message)


class ExternalToolError(PipelineError):
    """A media tool exited non-zero, timed out, or produced unusable output."""

    def __init__(
        self,
        tool: str,
        message: str,
        returncode: int | None = None,
        stderr: str | None = None,
    ):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(PipelineErrorCode.EXTERNAL_TOOL_FAILED, message)


class NotFoundError(PipelineError):
    """Referenced track or collection does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(PipelineErrorCode.NOT_FOUND, f"{entity} not found: {entity_id}")


class ConflictError(PipelineError):
    """Slug candidates exhausted, or a uniqueness rule was violated."""

    def __init__(self, message: str):
        super().__init__(PipelineErrorCode.CONFLICT, message)


def error_message(exc: BaseException) -> str:
    """Human-readable message for an exception, as recorded on a failed track."""
    if isinstance(exc, PipelineError):
        return exc.message
    return str(exc) or exc.__class__.__name__


__all__ = [
    "PipelineErrorCode",
    "PipelineError",
    "ValidationError",
    "ExternalToolError",
    "NotFoundError",
    "ConflictError",
    "error_message",
]
