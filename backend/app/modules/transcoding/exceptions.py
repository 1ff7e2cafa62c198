"""Exceptions raised by the transcoding pipeline and its boundaries."""

from typing import Optional


class TranscodingError(Exception):
    """Base exception for transcoding errors."""
    pass


class ProbeError(TranscodingError):
    """Source file is unreadable or has no decodable video stream."""
    pass


class EncodeError(TranscodingError):
    """External encoder failed for a variant or left no output behind."""

    def __init__(self, message: str, variant_name: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(message)
        self.variant_name = variant_name
        self.stderr = stderr


class ManifestError(TranscodingError):
    """Master manifest could not be assembled from the given variants."""
    pass


class JobNotFoundError(TranscodingError):
    """Job id is unknown to the tracker."""
    pass


class InvalidJobTransitionError(TranscodingError):
    """Update would change a terminal job or violate a write-once field."""
    pass


class InvalidUploadError(TranscodingError):
    """Upload is malformed or missing the video file."""
    pass


class QueueFullError(TranscodingError):
    """Worker queue is saturated; the job was not accepted."""
    pass


class DuplicateJobError(TranscodingError):
    """A pipeline for this job id is already queued or running."""
    pass
