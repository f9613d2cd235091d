import pytest
import threading
import yaml
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from venc.config.models import AppConfig, QueueConfig, StorageConfig, WorkerConfig
from venc.domain.models import EncodingOutputs, EncodingResult
from venc.infrastructure.event_bus import EventBus
from venc.infrastructure.fallback import FallbackAdapter
from venc.infrastructure.storage import LocalObjectStorage
from venc.infrastructure.video_records import InMemoryVideoRecordStore
from venc.pipeline.job_queue import EncodingJobQueue
from venc.pipeline.worker import EncodingWorker

# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Manually advanced clock for retention tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class FakeEncoder:
    """Encoder double returning scripted results.

    `results` is consumed one per encode() call; once exhausted every call
    succeeds. `gate`, when set, blocks encode() until released.
    """

    def __init__(self, available: bool = True, results: Optional[List[EncodingResult]] = None):
        self.available = available
        self.results = list(results or [])
        self.calls: List[tuple] = []
        self.availability_checks = 0
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()

    def is_available(self) -> bool:
        self.availability_checks += 1
        return self.available

    def encode(self, video_id: str, input_locator: str) -> EncodingResult:
        self.calls.append((video_id, input_locator))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        if self.results:
            return self.results.pop(0)
        return _success_result(video_id)


def _success_result(video_id: str) -> EncodingResult:
    base = f"http://cdn.test/{video_id}"
    return EncodingResult(
        success=True,
        outputs=EncodingOutputs(
            adaptive_manifest_url=f"{base}/manifest.m3u8",
            progressive_url=f"{base}/fallback.mp4",
            thumbnail_url=f"{base}/thumbnail.jpg",
        ),
    )


def _failure_result(error: str = "ffmpeg exited with code 1", permanent: bool = False) -> EncodingResult:
    return EncodingResult(success=False, error=error, permanent=permanent)

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def fast_worker_config():
    """Worker timers short enough for threaded tests."""
    return WorkerConfig(
        poll_interval_s=0.05,
        stats_interval_s=60,
        cleanup_interval_s=3600,
        shutdown_timeout_s=1.0,
        shutdown_poll_interval_s=0.05,
    )

@pytest.fixture
def storage_config(tmp_path):
    raw_dir = tmp_path / "videos-raw"
    serving_dir = tmp_path / "videos-encoded"
    raw_dir.mkdir()
    return StorageConfig(raw_dir=raw_dir, serving_dir=serving_dir, public_base_url="http://cdn.test/")

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "venc.yaml"

    content = {
        'general': {'debug': True},
        'queue': {'max_attempts': 5, 'retention_s': 120},
        'worker': {'poll_interval_s': 1, 'shutdown_timeout_s': 10},
        'encoder': {
            'presets': [
                {'name': '480p', 'width': 854, 'height': 480, 'video_bitrate_k': 1200, 'audio_bitrate_k': 96},
            ],
            'progressive_preset': '480p',
        },
        'storage': {'raw_dir': 'raw', 'serving_dir': '/srv/encoded'},
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# Component Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def job_queue(event_bus, clock):
    return EncodingJobQueue(event_bus, QueueConfig(max_attempts=3, retention_s=3600), clock=clock)

@pytest.fixture
def storage(storage_config):
    return LocalObjectStorage(storage_config)

@pytest.fixture
def records():
    return InMemoryVideoRecordStore()

@pytest.fixture
def encoder():
    return FakeEncoder()

@pytest.fixture
def fallback(storage):
    return FallbackAdapter(storage)

@pytest.fixture
def worker(job_queue, encoder, fallback, records, event_bus, fast_worker_config):
    w = EncodingWorker(
        queue=job_queue,
        encoder=encoder,
        fallback=fallback,
        records=records,
        event_bus=event_bus,
        config=fast_worker_config,
    )
    yield w
    if encoder.gate is not None:
        encoder.gate.set()
    w.stop(timeout_s=2.0)

@pytest.fixture
def raw_upload(storage_config):
    """Writes a fake raw upload and returns its locator."""
    def _make(name: str = "upload.mp4", content: bytes = b"raw video bytes " * 64) -> str:
        path = storage_config.raw_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return name
    return _make

@pytest.fixture
def app_config(storage_config, fast_worker_config):
    return AppConfig(storage=storage_config, worker=fast_worker_config)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )

@pytest.fixture
def success_result():
    """Factory for successful EncodingResult values."""
    return _success_result

@pytest.fixture
def failure_result():
    """Factory for failed EncodingResult values."""
    return _failure_result
