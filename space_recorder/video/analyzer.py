"""Overlay clip inspection using ffprobe."""

import json
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from ..errors import ProcessSpawnError

# Codecs the engine decodes without a conversion pass worth mentioning
NATIVE_CODECS = {"h264", "hevc", "vp9", "av1"}


class VideoStreamInfo(BaseModel):
    """Video stream information."""
    index: int
    codec_name: str
    width: int
    height: int
    pixel_format: Optional[str] = None
    frame_rate: Optional[float] = None
    duration: Optional[float] = None


class ClipMetadata(BaseModel):
    """What the supervisor needs to know about an overlay clip."""
    file_path: str
    format_name: str
    duration: Optional[float] = None
    video_streams: list[VideoStreamInfo] = []

    @property
    def primary_video(self) -> Optional[VideoStreamInfo]:
        """Get the primary video stream."""
        return self.video_streams[0] if self.video_streams else None

    @property
    def resolution(self) -> Optional[tuple[int, int]]:
        if self.primary_video:
            return (self.primary_video.width, self.primary_video.height)
        return None

    def needs_conversion(self, target: tuple[int, int]) -> bool:
        """True if the clip differs from ``target`` or uses an uncommon codec."""
        video = self.primary_video
        if video is None:
            return True
        if (video.width, video.height) != tuple(target):
            return True
        return video.codec_name.lower() not in NATIVE_CODECS

    def describe(self) -> str:
        video = self.primary_video
        if video is None:
            return f"{Path(self.file_path).name}: no video stream"
        fps = f" @ {video.frame_rate:.2f} fps" if video.frame_rate else ""
        return f"{Path(self.file_path).name}: {video.codec_name} {video.width}x{video.height}{fps}"


class VideoAnalyzer:
    """Analyzes clips using ffprobe."""

    def __init__(self, ffprobe_path: Optional[str] = None):
        """Initialize the analyzer.

        Args:
            ffprobe_path: Path to ffprobe executable. If None, will search PATH.
        """
        self.ffprobe_path = ffprobe_path or shutil.which("ffprobe")
        if not self.ffprobe_path:
            raise ProcessSpawnError("ffprobe not found. Install with: brew install ffmpeg")

    def analyze(self, video_path: str | Path, timeout: float = 10.0) -> ClipMetadata:
        """Probe a clip.

        Raises:
            FileNotFoundError: If the clip doesn't exist.
            RuntimeError: If ffprobe fails to analyze the file.
        """
        video_path = Path(video_path)
        if not video_path.exists():
            raise FileNotFoundError(f"Video file not found: {video_path}")

        cmd = [
            self.ffprobe_path,
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(video_path),
        ]

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise RuntimeError(f"ffprobe timed out on {video_path}") from None
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed: {result.stderr}")

        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise RuntimeError(f"ffprobe returned invalid JSON: {e}") from e
        return self.parse_probe_data(str(video_path), data)

    def parse_probe_data(self, file_path: str, data: dict) -> ClipMetadata:
        """Parse ffprobe JSON output into ClipMetadata."""
        format_info = data.get("format", {})
        video_streams = [
            self._parse_video_stream(stream)
            for stream in data.get("streams", [])
            if stream.get("codec_type") == "video"
        ]
        duration = format_info.get("duration")
        return ClipMetadata(
            file_path=file_path,
            format_name=format_info.get("format_name", "unknown"),
            duration=float(duration) if duration else None,
            video_streams=video_streams,
        )

    def _parse_video_stream(self, stream: dict) -> VideoStreamInfo:
        frame_rate = None
        if stream.get("r_frame_rate"):
            try:
                num, den = map(int, stream["r_frame_rate"].split("/"))
                frame_rate = num / den if den != 0 else None
            except ValueError:
                pass

        return VideoStreamInfo(
            index=stream.get("index", 0),
            codec_name=stream.get("codec_name", "unknown"),
            width=stream.get("width", 0),
            height=stream.get("height", 0),
            pixel_format=stream.get("pix_fmt"),
            frame_rate=frame_rate,
            duration=float(stream["duration"]) if stream.get("duration") else None,
        )
