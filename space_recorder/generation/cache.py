"""Disk cache of generated overlay clips keyed by prompt."""

import hashlib
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger("space_recorder")

VIDEO_SUFFIX = ".mp4"
PROMPT_SUFFIX = ".prompt"


def default_cache_dir() -> Path:
    """``$XDG_CACHE_HOME/space-recorder/fal-videos`` (``~/.cache`` by default)."""
    base = os.environ.get("XDG_CACHE_HOME") or os.path.join(Path.home(), ".cache")
    return Path(base) / "space-recorder" / "fal-videos"


@dataclass
class CacheEntry:
    hash: str
    path: Path
    size_bytes: int
    prompt: Optional[str] = None


class VideoCache:
    """Stores clips as ``<sha256(prompt)[:32]>.mp4`` with a ``.prompt`` sidecar."""

    def __init__(self, cache_dir: Optional[str | Path] = None):
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()

    @staticmethod
    def hash_prompt(prompt: str) -> str:
        """First 16 bytes of the prompt's SHA-256, hex encoded."""
        return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:32]

    def path_for(self, prompt: str) -> Path:
        return self.cache_dir / f"{self.hash_prompt(prompt)}{VIDEO_SUFFIX}"

    def ensure_dir(self) -> Path:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        return self.cache_dir

    def get(self, prompt: str) -> Optional[Path]:
        path = self.path_for(prompt)
        return path if path.is_file() else None

    def store(self, prompt: str, video_path: str | Path) -> Path:
        """Copy a clip into the cache and record its prompt."""
        self.ensure_dir()
        cached = self.path_for(prompt)
        if Path(video_path).resolve() != cached.resolve():
            shutil.copyfile(video_path, cached)
        cached.with_suffix(PROMPT_SUFFIX).write_text(prompt, encoding="utf-8")
        return cached

    def get_prompt(self, hash_: str) -> Optional[str]:
        meta = self.cache_dir / f"{hash_}{PROMPT_SUFFIX}"
        try:
            return meta.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _videos(self) -> list[Path]:
        if not self.cache_dir.is_dir():
            return []
        return [p for p in self.cache_dir.iterdir() if p.suffix == VIDEO_SUFFIX and p.is_file()]

    def list_entries(self) -> list[CacheEntry]:
        entries = [
            CacheEntry(
                hash=path.stem,
                path=path,
                size_bytes=path.stat().st_size,
                prompt=self.get_prompt(path.stem),
            )
            for path in self._videos()
        ]
        return sorted(entries, key=lambda e: e.hash)

    def total_size_bytes(self) -> int:
        return sum(path.stat().st_size for path in self._videos())

    def remove(self, hash_: str) -> bool:
        """Remove one clip and its sidecar. Returns True if a clip was removed."""
        video = self.cache_dir / f"{hash_}{VIDEO_SUFFIX}"
        removed = False
        if video.exists():
            video.unlink()
            removed = True
        (self.cache_dir / f"{hash_}{PROMPT_SUFFIX}").unlink(missing_ok=True)
        return removed

    def clear_all(self) -> int:
        """Remove every clip and sidecar. Returns the number of clips removed."""
        count = 0
        for path in self._videos():
            if self.remove(path.stem):
                count += 1
        return count

    def cleanup_if_needed(self, max_size_mb: int) -> int:
        """Delete oldest clips until the cache fits in ``max_size_mb``.

        Returns:
            Number of clips removed.
        """
        limit = max_size_mb * 1024 * 1024
        videos = [(path, path.stat()) for path in self._videos()]
        total = sum(stat.st_size for _, stat in videos)
        if total <= limit:
            return 0

        removed = 0
        for path, stat in sorted(videos, key=lambda item: item[1].st_mtime):
            if total <= limit:
                break
            try:
                self.remove(path.stem)
            except OSError as e:
                logger.warning("Could not evict %s from cache: %s", path.name, e)
                continue
            total -= stat.st_size
            removed += 1
        logger.debug("Evicted %d clip(s) from cache", removed)
        return removed
