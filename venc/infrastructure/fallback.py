import logging
from venc.domain.models import FallbackResult
from venc.infrastructure.storage import LocalObjectStorage

class FallbackAdapter:
    """Serves the raw upload untranscoded when ffmpeg is unavailable.

    Produces a single progressive rendition; the caller marks the video
    record as degraded.
    """

    def __init__(self, storage: LocalObjectStorage):
        self.storage = storage
        self.logger = logging.getLogger(__name__)

    def copy_raw_to_serving(self, video_id: str, input_locator: str) -> FallbackResult:
        url = self.storage.copy_raw_to_serving(video_id, input_locator)
        self.logger.info(f"FALLBACK_COPY: video_id={video_id} url={url}")
        return FallbackResult(url=url)
