"""Error types raised by space-recorder."""

import re
from typing import Optional


class SpaceRecorderError(Exception):
    """Base class for all space-recorder errors."""


class ConfigurationError(SpaceRecorderError):
    """Invalid resolution, framerate, opacity or config file."""


class ProcessSpawnError(SpaceRecorderError):
    """The engine or preview player is missing or failed to start."""

    @classmethod
    def ffmpeg_not_found(cls) -> "ProcessSpawnError":
        return cls("FFmpeg not found. Install with: brew install ffmpeg")


class ProcessRuntimeError(SpaceRecorderError):
    """The engine exited with a non-zero status."""

    def __init__(self, return_code: Optional[int], stderr: str = ""):
        self.return_code = return_code
        self.stderr = stderr
        self.summary = summarize_stderr(stderr)
        super().__init__(
            f"FFmpeg exited with code {return_code}: {self.summary}"
        )


class RestartError(SpaceRecorderError):
    """Respawn after a parameter change failed, including the recovery attempt."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


_ERROR_PATTERNS = [
    r"Error.*",
    r"Invalid.*",
    r"No such file.*",
    r".*not found.*",
    r"Permission denied.*",
    r"Discarding.*",
]


def summarize_stderr(stderr: str) -> str:
    """Extract the most meaningful line from engine stderr."""
    lines = (stderr or "").strip().split("\n")

    for line in reversed(lines):
        for pattern in _ERROR_PATTERNS:
            if re.search(pattern, line, re.IGNORECASE):
                return line.strip()

    for line in reversed(lines):
        if line.strip():
            return line.strip()

    return "Unknown error"


class GenerationError(SpaceRecorderError):
    """Video generation request failed."""


class MissingApiKeyError(GenerationError):
    """No API key configured for the generation service."""

    def __init__(self, env_var: str = "FAL_API_KEY"):
        super().__init__(f"API key not configured (set {env_var})")


class EmptyPromptError(GenerationError):
    """Prompt was empty or whitespace only."""

    def __init__(self):
        super().__init__("Empty prompt")


class RateLimitError(GenerationError):
    """The generation service answered 429."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(f"Rate limited: {message}")


class ContentPolicyError(GenerationError):
    """The prompt was rejected by the service's content policy."""

    def __init__(self, message: str):
        super().__init__(f"Content policy violation: {message}")


class GenerationTimeoutError(GenerationError):
    """Generation did not complete within the allotted time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Generation timed out after {timeout:.0f}s")
