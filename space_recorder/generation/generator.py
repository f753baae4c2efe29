"""Prompt-to-clip generation with caching, run off the supervisor thread."""

import logging
import queue
import threading
from dataclasses import dataclass
from typing import Optional

from ..errors import GenerationError
from .cache import VideoCache
from .client import DEFAULT_MODEL, GENERATION_TIMEOUT, FalClient, validate_prompt

logger = logging.getLogger("space_recorder")

DEFAULT_CACHE_MAX_MB = 500


@dataclass(frozen=True)
class VideoReady:
    """A generated (or cached) clip is ready to be queued."""
    prompt: str
    path: str
    cached: bool = False


@dataclass(frozen=True)
class GenerationFailed:
    prompt: str
    error: str


class VideoGenerator:
    """Turns prompts into local clip paths, hitting the cache first."""

    def __init__(
        self,
        client: Optional[FalClient] = None,
        cache: Optional[VideoCache] = None,
        max_cache_mb: int = DEFAULT_CACHE_MAX_MB,
        timeout: float = GENERATION_TIMEOUT,
        model: str = DEFAULT_MODEL,
    ):
        self._client = client
        self.model = model
        self.cache = cache or VideoCache()
        self.max_cache_mb = max_cache_mb
        self.timeout = timeout
        self._threads: list[threading.Thread] = []

    @property
    def client(self) -> FalClient:
        # Created lazily so cached prompts work without an API key
        if self._client is None:
            self._client = FalClient(model=self.model)
        return self._client

    def generate(self, prompt: str) -> VideoReady:
        """Return a clip for ``prompt``, generating it on a cache miss.

        Raises:
            GenerationError: If the prompt is empty or generation fails.
        """
        prompt = validate_prompt(prompt)
        hit = self.cache.get(prompt)
        if hit is not None:
            logger.info("Using cached clip for '%s'", prompt)
            return VideoReady(prompt=prompt, path=str(hit), cached=True)

        logger.info("Generating clip for '%s'", prompt)
        dest = self.cache.path_for(prompt)
        self.client.generate(prompt, dest, timeout=self.timeout)
        path = self.cache.store(prompt, dest)
        try:
            self.cache.cleanup_if_needed(self.max_cache_mb)
        except OSError as e:
            logger.warning("Cache cleanup failed: %s", e)
        return VideoReady(prompt=prompt, path=str(path))

    def submit(self, prompt: str, results: "queue.Queue") -> threading.Thread:
        """Generate on a worker thread, posting the outcome to ``results``.

        The outcome is a :class:`VideoReady` or :class:`GenerationFailed`.
        """
        def work():
            try:
                results.put(self.generate(prompt))
            except GenerationError as e:
                logger.error("Generation failed for '%s': %s", prompt, e)
                results.put(GenerationFailed(prompt=prompt, error=str(e)))
            except OSError as e:
                logger.error("Could not store clip for '%s': %s", prompt, e)
                results.put(GenerationFailed(prompt=prompt, error=str(e)))

        thread = threading.Thread(target=work, name="generate", daemon=True)
        thread.start()
        self._threads = [t for t in self._threads if t.is_alive()] + [thread]
        return thread

    @property
    def busy(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()