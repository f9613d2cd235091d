import subprocess
import json
from pathlib import Path
from typing import Dict, Any
from venc.domain.errors import FFmpegError, InvalidInputError

class FFprobeAdapter:
    """Wrapper around ffprobe to validate raw uploads before encoding."""

    def __init__(self, ffprobe_path: str = "ffprobe", timeout_s: float = 10.0):
        self.ffprobe_path = ffprobe_path
        self.timeout_s = timeout_s

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def get_stream_info(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and parses JSON output.

        Raises InvalidInputError when the file cannot be decoded or carries
        no video stream, FFmpegError when ffprobe itself cannot be run.
        """
        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-show_format",
            str(file_path)
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout_s)
        except subprocess.TimeoutExpired:
            raise FFmpegError("probe", f"timed out after {self.timeout_s:g}s")
        except OSError as e:
            raise FFmpegError("probe", f"could not start: {e}") from e

        if result.returncode != 0:
            raise InvalidInputError(f"ffprobe failed for {file_path.name}: {(result.stderr or '').strip()[-500:]}")

        try:
            data = json.loads(result.stdout or "")
        except json.JSONDecodeError as e:
            raise InvalidInputError(f"ffprobe returned unreadable output for {file_path.name}") from e

        streams = data.get("streams", [])
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        if not video_stream:
            raise InvalidInputError(f"No video stream found in {file_path.name}")

        fmt = data.get("format", {})
        duration = self._to_float(fmt.get("duration"))
        if duration <= 0:
            duration = self._to_float(video_stream.get("duration"))

        return {
            "width": int(video_stream.get("width", 0) or 0),
            "height": int(video_stream.get("height", 0) or 0),
            "codec": video_stream.get("codec_name", "unknown"),
            "duration": duration,
            "has_audio": any(s.get("codec_type") == "audio" for s in streams),
        }
