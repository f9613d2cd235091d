from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

class QueueConfig(BaseModel):
    """Job queue retry and retention settings."""
    max_attempts: int = Field(default=3, ge=1)
    retention_s: float = Field(default=3600.0, ge=0.0)  # 1 hour

class WorkerConfig(BaseModel):
    """Encoding worker timers and shutdown behaviour."""
    poll_interval_s: float = Field(default=5.0, gt=0)
    stats_interval_s: float = Field(default=60.0, gt=0)
    cleanup_interval_s: float = Field(default=3600.0, gt=0)
    shutdown_timeout_s: float = Field(default=60.0, ge=0)
    shutdown_poll_interval_s: float = Field(default=2.0, gt=0)
    honor_permanent_failures: bool = False

class EncodingPreset(BaseModel):
    name: str
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    video_bitrate_k: int = Field(gt=0)
    audio_bitrate_k: int = Field(gt=0)

    @property
    def bandwidth(self) -> int:
        """Peak bandwidth advertised in the HLS master playlist (bits/s)."""
        return (self.video_bitrate_k + self.audio_bitrate_k) * 1000

def _default_presets() -> List[EncodingPreset]:
    return [
        EncodingPreset(name="720p", width=1280, height=720, video_bitrate_k=2500, audio_bitrate_k=128),
        EncodingPreset(name="480p", width=854, height=480, video_bitrate_k=1200, audio_bitrate_k=96),
        EncodingPreset(name="360p", width=640, height=360, video_bitrate_k=600, audio_bitrate_k=64),
    ]

class EncoderConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    presets: List[EncodingPreset] = Field(default_factory=_default_presets)
    progressive_preset: str = "720p"
    hls_segment_s: int = Field(default=6, ge=1)
    crf: int = Field(default=23, ge=0, le=51)
    x264_preset: str = "fast"
    thumbnail_at_s: float = Field(default=1.0, ge=0.0)
    timeout_s: Optional[float] = Field(default=600.0, gt=0)  # per ffmpeg invocation
    probe_timeout_s: float = Field(default=10.0, gt=0)
    work_dir: Optional[Path] = None  # defaults to the system temp dir

    @field_validator("presets")
    @classmethod
    def validate_presets(cls, v: List[EncodingPreset]) -> List[EncodingPreset]:
        if not v:
            raise ValueError("At least one encoding preset is required.")
        names = [p.name for p in v]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate preset names: {names}")
        return v

    @model_validator(mode="after")
    def validate_progressive_preset(self):
        if self.progressive_preset not in {p.name for p in self.presets}:
            raise ValueError(f"progressive_preset '{self.progressive_preset}' is not one of the presets")
        return self

    def preset(self, name: str) -> EncodingPreset:
        for p in self.presets:
            if p.name == name:
                return p
        raise KeyError(name)

class StorageConfig(BaseModel):
    raw_dir: Path = Path("storage/videos-raw")
    serving_dir: Path = Path("storage/videos-encoded")
    public_base_url: str = "http://localhost:8080/videos-encoded"

    @field_validator("public_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

class GeneralConfig(BaseModel):
    debug: bool = False
    log_path: Optional[Path] = None

class AppConfig(BaseModel):
    general: GeneralConfig = Field(default_factory=GeneralConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    encoder: EncoderConfig = Field(default_factory=EncoderConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
