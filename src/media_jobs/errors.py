"""Error taxonomy for the media job pipeline."""

from __future__ import annotations


class PipelineError(Exception):
    """
    Base class for failures that end a job attempt.

    kind is persisted on the job next to the message; retryable tells the
    queue whether another attempt may succeed.
    """

    retryable = False

    def __init__(self, message: str, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    @property
    def kind(self) -> str:
        return type(self).__name__


class FetchError(PipelineError):
    """Source media could not be downloaded."""

    retryable = True


class PayloadTooLarge(PipelineError):
    """Compressed media still exceeds the upload ceiling."""


class EngineError(PipelineError):
    """The transcription/translation engine rejected or failed the request."""

    def __init__(self, message: str, retryable: bool = False, status_code: int | None = None):
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class CaptionsUnavailable(PipelineError):
    """No caption track exists for the requested language."""


class SubprocessError(PipelineError):
    """ffmpeg exited nonzero, crashed or timed out."""

    retryable = True

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class MalformedSubtitle(PipelineError):
    """Subtitle text could not be decoded."""


class StorageError(PipelineError):
    """Object store or document store I/O failed."""

    retryable = True


class VideoNotFound(LookupError):
    """No video record with the given id."""


class JobNotFound(LookupError):
    """No job record with the given id."""


class InvalidTransition(ValueError):
    """A job status change the state machine does not allow."""
