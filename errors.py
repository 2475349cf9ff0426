"""
Exception types shared by the pipeline and the HTTP layer.
Each carries the HTTP status it should surface as.
"""

from typing import Any, Optional


class StorybookError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationFailed(StorybookError):
    status_code = 400


class Unauthorized(StorybookError):
    status_code = 401


class Forbidden(StorybookError):
    status_code = 403


class NotFound(StorybookError):
    status_code = 404


class Conflict(StorybookError):
    status_code = 409


class UpstreamError(StorybookError):
    """A model, storage, or parsing failure inside the generation pipeline."""
    status_code = 500


class TextGenerationError(UpstreamError):
    pass


class ImageGenerationError(UpstreamError):
    pass


class StorageError(UpstreamError):
    pass


class NoUsableContentError(UpstreamError):
    pass


class JobStateError(StorybookError):
    """Raised when a completed or failed job is asked to transition again."""
    status_code = 500
