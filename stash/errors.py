"""Exception hierarchy for the Stash server."""
from typing import Dict, Optional


class StashError(Exception):
    """Base exception for all Stash-specific errors."""

    def __init__(self, message: str, details: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class PathEscape(StashError):
    """Raised when a request path resolves outside the storage root."""

    def __init__(self, request_path: str):
        super().__init__(f"Jailbreak for path: {request_path}", {"path": request_path})
        self.request_path = request_path


class QuotaExceeded(StashError):
    """Raised when a chunk would push the write counter past its budget."""

    def __init__(self, chunk_length: int, written_bytes: int, max_bytes: int):
        super().__init__(
            "No space left on device. Wait for cleanup.",
            {
                "chunk_length": str(chunk_length),
                "written_bytes": str(written_bytes),
                "max_bytes": str(max_bytes),
            },
        )


class FilesystemConflict(StashError):
    """Raised when a file blocks directory creation and cannot be removed."""
    pass


class IngestionError(StashError):
    """Base class for failed uploads."""
    pass


class NoDataError(IngestionError):
    """Raised when a multipart body carries no payload part."""
    pass


class WriteError(IngestionError):
    """Raised when streaming the payload to disk fails."""
    pass


class SweepFailure(StashError):
    """Raised by a filesystem sweep when the walk or a deletion fails."""
    pass
