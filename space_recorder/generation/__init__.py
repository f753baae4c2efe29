"""AI overlay clip generation: fal.ai client, disk cache and worker."""

from .cache import VideoCache, CacheEntry
from .client import FalClient, GenerationState, GenerationStatus
from .generator import VideoGenerator, VideoReady, GenerationFailed

__all__ = [
    "VideoCache",
    "CacheEntry",
    "FalClient",
    "GenerationState",
    "GenerationStatus",
    "VideoGenerator",
    "VideoReady",
    "GenerationFailed",
]
