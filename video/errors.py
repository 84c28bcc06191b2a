"""
Error kinds raised by the video pipeline.

Adapters raise these; views catch VideoError at the route boundary and turn it
into a JSON body (or an ``error`` status event on streaming routes) carrying
``status_code``.
"""


class VideoError(Exception):
    status_code = 500
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message())

    def default_message(self) -> str:
        return self.kind

    @property
    def message(self) -> str:
        return str(self)


class InvalidInput(VideoError):
    """Malformed or disallowed URL, missing query parameters, unsafe identifiers."""
    status_code = 400
    kind = "invalid_input"


class DependencyMissing(VideoError):
    """An external binary (yt-dlp, ffmpeg, ffprobe) is not on the execution path."""
    kind = "dependency_missing"

    def __init__(self, binary: str, message: str = ""):
        self.binary = binary
        super().__init__(message or f"{binary} is not installed")


class DownloadFailed(VideoError):
    kind = "download_failed"

    def __init__(self, exit_code: int | None, message: str = ""):
        self.exit_code = exit_code
        super().__init__(message or f"yt-dlp exited with code {exit_code}")


class TranscodeFailed(VideoError):
    kind = "transcode_failed"

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(cause)


class OutputNotProduced(VideoError):
    """The tool reported success but the expected artifact is not on disk."""
    kind = "output_not_produced"


class ResourceNotFound(VideoError):
    status_code = 404
    kind = "not_found"
