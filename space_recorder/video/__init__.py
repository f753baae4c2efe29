"""Overlay clip inspection."""

from .analyzer import VideoAnalyzer, ClipMetadata, VideoStreamInfo

__all__ = ["VideoAnalyzer", "ClipMetadata", "VideoStreamInfo"]
