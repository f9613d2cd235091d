"""FFmpeg encoder adapter.

Turns one raw upload into the serving layout:

    <serving>/<video_id>/
        manifest.m3u8          master HLS playlist
        <preset>/playlist.m3u8 one variant per preset
        <preset>/seg_NNN.ts
        fallback.mp4           progressive rendition
        thumbnail.jpg
"""

import logging
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import List, Optional
from venc.config.models import EncoderConfig, EncodingPreset
from venc.domain.errors import FFmpegError, InvalidInputError, VencError
from venc.domain.models import EncodingOutputs, EncodingResult
from venc.infrastructure.ffprobe import FFprobeAdapter
from venc.infrastructure.storage import LocalObjectStorage

MASTER_MANIFEST = "manifest.m3u8"
PROGRESSIVE_FILE = "fallback.mp4"
THUMBNAIL_FILE = "thumbnail.jpg"


def _scale_filter(preset: EncodingPreset) -> str:
    w, h = preset.width, preset.height
    return (
        f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2"
    )


def build_master_manifest(presets: List[EncodingPreset]) -> str:
    lines = ["#EXTM3U", "#EXT-X-VERSION:3"]
    for preset in presets:
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={preset.bandwidth},RESOLUTION={preset.width}x{preset.height}"
        )
        lines.append(f"{preset.name}/playlist.m3u8")
    return "\n".join(lines) + "\n"


class FFmpegEncoder:
    """Wrapper around ffmpeg producing an HLS ladder plus a progressive MP4."""

    def __init__(self, config: EncoderConfig, storage: LocalObjectStorage, prober: Optional[FFprobeAdapter] = None):
        self.config = config
        self.storage = storage
        self.prober = prober or FFprobeAdapter(config.ffprobe_path, timeout_s=config.probe_timeout_s)
        self.logger = logging.getLogger(__name__)

    def is_available(self) -> bool:
        """Cheap probe: `ffmpeg -version` must exit 0."""
        try:
            result = subprocess.run(
                [self.config.ffmpeg_path, "-version"],
                capture_output=True,
                timeout=self.config.probe_timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self.logger.debug(f"FFMPEG_PROBE: unavailable ({e})")
            return False
        return result.returncode == 0

    def _base_command(self) -> List[str]:
        return [self.config.ffmpeg_path, "-y", "-hide_banner", "-loglevel", "warning"]

    @staticmethod
    def _audio_args(preset: EncodingPreset, has_audio: bool) -> List[str]:
        if not has_audio:
            return ["-an"]
        return ["-c:a", "aac", "-b:a", f"{preset.audio_bitrate_k}k"]

    def _build_hls_command(
        self, input_path: Path, preset: EncodingPreset, out_dir: Path, has_audio: bool = True
    ) -> List[str]:
        video_k = preset.video_bitrate_k
        cmd = self._base_command()
        cmd.extend([
            "-i", str(input_path),
            "-vf", _scale_filter(preset),
            "-c:v", "libx264",
            "-preset", self.config.x264_preset,
            "-crf", str(self.config.crf),
            "-b:v", f"{video_k}k",
            "-maxrate", f"{video_k}k",
            "-bufsize", f"{video_k * 2}k",
            *self._audio_args(preset, has_audio),
            "-hls_time", str(self.config.hls_segment_s),
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(out_dir / "seg_%03d.ts"),
            "-f", "hls",
            str(out_dir / "playlist.m3u8"),
        ])
        return cmd

    def _build_progressive_command(self, input_path: Path, output_path: Path, has_audio: bool = True) -> List[str]:
        preset = self.config.preset(self.config.progressive_preset)
        cmd = self._base_command()
        cmd.extend([
            "-i", str(input_path),
            "-vf", _scale_filter(preset),
            "-c:v", "libx264",
            "-preset", self.config.x264_preset,
            "-crf", str(self.config.crf),
            *self._audio_args(preset, has_audio),
            "-movflags", "+faststart",
            str(output_path),
        ])
        return cmd

    def _build_thumbnail_command(self, input_path: Path, output_path: Path, duration: float) -> List[str]:
        at = self.config.thumbnail_at_s
        if duration > 0:
            at = min(at, duration / 2)
        cmd = self._base_command()
        cmd.extend([
            "-ss", f"{at:.3f}",
            "-i", str(input_path),
            "-frames:v", "1",
            "-q:v", "3",
            str(output_path),
        ])
        return cmd

    def _run(self, cmd: List[str], label: str) -> None:
        """Runs one ffmpeg invocation; raises FFmpegError on failure or timeout."""
        self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.config.timeout_s)
        except subprocess.TimeoutExpired:
            raise FFmpegError(label, f"timed out after {self.config.timeout_s:g}s")
        except OSError as e:
            raise FFmpegError(label, f"error: {e}") from e
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise FFmpegError(label, f"failed with code {result.returncode}: {stderr[-500:]}")

    def encode(self, video_id: str, input_locator: str) -> EncodingResult:
        """Encodes a raw upload and publishes every rendition.

        Never raises for encoding problems; failures come back as
        `success=False`, with `permanent=True` when the source is unreadable.
        """
        start_time = time.monotonic()
        base_dir = self.config.work_dir
        work_dir: Optional[Path] = None

        try:
            if base_dir is not None:
                Path(base_dir).mkdir(parents=True, exist_ok=True)
            work_dir = Path(tempfile.mkdtemp(prefix=f"venc-{video_id}-", dir=base_dir))
            input_path = self.storage.resolve_raw(input_locator)
            info = self.prober.get_stream_info(input_path)
            self.logger.info(
                f"FFMPEG_START: video_id={video_id} codec={info['codec']} "
                f"size={info['width']}x{info['height']} duration={info['duration']:.1f}s "
                f"audio={info['has_audio']}"
            )

            has_audio = info["has_audio"]
            for preset in self.config.presets:
                out_dir = work_dir / preset.name
                out_dir.mkdir(parents=True, exist_ok=True)
                self._run(self._build_hls_command(input_path, preset, out_dir, has_audio), f"HLS {preset.name}")
                self.logger.info(f"HLS_VARIANT: video_id={video_id} preset={preset.name}")

            (work_dir / MASTER_MANIFEST).write_text(build_master_manifest(self.config.presets), encoding="utf-8")
            self._run(
                self._build_progressive_command(input_path, work_dir / PROGRESSIVE_FILE, has_audio),
                "MP4 progressive",
            )
            self._run(
                self._build_thumbnail_command(input_path, work_dir / THUMBNAIL_FILE, info["duration"]),
                "thumbnail",
            )

            published = self.storage.publish_tree(video_id, work_dir)
            outputs = EncodingOutputs(
                adaptive_manifest_url=self.storage.url_for(video_id, MASTER_MANIFEST),
                progressive_url=self.storage.url_for(video_id, PROGRESSIVE_FILE),
                thumbnail_url=self.storage.url_for(video_id, THUMBNAIL_FILE),
            )
            elapsed = time.monotonic() - start_time
            self.logger.info(f"FFMPEG_END: video_id={video_id} status=completed files={published} elapsed={elapsed:.2f}s")
            return EncodingResult(success=True, outputs=outputs)

        except InvalidInputError as e:
            self.logger.error(f"FFMPEG_END: video_id={video_id} status=invalid_input error={e}")
            return EncodingResult(success=False, error=str(e), permanent=True)
        except (VencError, OSError) as e:
            elapsed = time.monotonic() - start_time
            self.logger.error(f"FFMPEG_END: video_id={video_id} status=failed elapsed={elapsed:.2f}s error={e}")
            return EncodingResult(success=False, error=str(e))
        finally:
            if work_dir is not None:
                shutil.rmtree(work_dir, ignore_errors=True)
