class VencError(Exception):
    """Base class for errors raised by venc infrastructure."""


class StorageError(VencError):
    """Raw input could not be resolved or an output could not be published."""


class FFmpegError(VencError):
    """An ffmpeg/ffprobe invocation failed or timed out."""

    def __init__(self, label: str, message: str):
        super().__init__(f"FFmpeg {label} {message}")
        self.label = label


class RecordNotFoundError(VencError):
    """No video record exists for the given video id."""

    def __init__(self, video_id: str):
        super().__init__(f"Video record not found: {video_id}")
        self.video_id = video_id


class InvalidInputError(VencError):
    """The raw upload is not a decodable video (corrupt or no video stream)."""
