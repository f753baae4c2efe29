"""Input validation utilities for space-recorder.

Provides validation for file paths and device names that end up in
ffmpeg arguments, parsing of resolution/bounds strings from the CLI,
and redaction of API keys before they reach logs or error messages.
"""

import os
import re
from pathlib import Path

# Overlay clips the engine can loop
OVERLAY_EXTENSIONS = {'.mp4', '.mov', '.m4v', '.webm', '.mkv'}

# Containers the recording output may use
RECORDING_EXTENSIONS = {'.mp4', '.mov', '.mkv'}

# Critical system directories that should be protected from write operations
UNSAFE_DIRECTORIES = {
    "/bin", "/boot", "/dev", "/etc", "/lib", "/lib64", "/proc",
    "/run", "/sbin", "/sys", "/usr", "/var", "/System",
}

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_RESOLUTION = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*$")


def _check_unsafe_path(path: Path) -> None:
    """Check if the path targets a sensitive system directory.

    Raises:
        ValueError: If path is unsafe.
    """
    path_str = str(path)
    for unsafe in UNSAFE_DIRECTORIES:
        if path_str == unsafe or path_str.startswith(f"{unsafe}{os.sep}"):
            raise ValueError(f"Path targets unsafe system directory: {path}")


def validate_path(path: str, allowed_extensions: set[str], must_exist: bool = True) -> str:
    """Generic path validator for file inputs.

    Args:
        path: The path string to validate.
        allowed_extensions: Set of allowed file extensions (e.g. {'.mp4'}).
        must_exist: If True, raises ValueError when the file doesn't exist.

    Returns:
        The resolved, absolute path string.

    Raises:
        ValueError: If path is invalid, contains traversal, has invalid extension,
                    or file doesn't exist (when must_exist=True).
    """
    if not path or not str(path).strip():
        raise ValueError("Path cannot be empty")

    path = os.path.expanduser(str(path))

    if ".." in Path(path).parts:
        raise ValueError(
            f"Path contains directory traversal (..): {path}"
        )

    resolved = Path(path).resolve()

    if resolved.suffix.lower() not in allowed_extensions:
        raise ValueError(
            f"Invalid file extension: {resolved.suffix}. "
            f"Allowed: {sorted(allowed_extensions)}"
        )

    if must_exist:
        if not resolved.exists():
            raise ValueError(f"File not found: {resolved}")
        if not resolved.is_file():
            raise ValueError(f"Path is not a file: {resolved}")

    return str(resolved)


def validate_overlay_path(path: str, must_exist: bool = True) -> str:
    """Validate and resolve an AI overlay clip path."""
    return validate_path(path, OVERLAY_EXTENSIONS, must_exist=must_exist)


def validate_recording_path(path: str) -> str:
    """Validate a recording output path.

    The file does not need to exist, but it must carry a container
    extension and must not point into a protected system directory.

    Args:
        path: The output file path string to validate.

    Returns:
        The resolved, absolute path string.

    Raises:
        ValueError: If the path is empty, contains traversal, has no or a
                    disallowed extension, or targets a system directory.
    """
    if not path or not str(path).strip():
        raise ValueError("Output path cannot be empty")

    resolved = Path(os.path.expanduser(str(path))).resolve()
    if not resolved.suffix:
        raise ValueError(
            f"Output file path must have an extension: {path}"
        )
    _check_unsafe_path(resolved)

    return validate_path(str(path), RECORDING_EXTENSIONS, must_exist=False)


def validate_device_name(name: str) -> str:
    """Validate a capture device identifier.

    Device names are passed to avfoundation verbatim, so they must be
    non-empty and free of control characters.
    """
    if name is None or not str(name).strip():
        raise ValueError("Device name cannot be empty")
    if _CONTROL_CHARS.search(name):
        raise ValueError(f"Device name contains control characters: {name!r}")
    return name.strip()


def parse_resolution(value: str) -> tuple[int, int]:
    """Parse a ``WIDTHxHEIGHT`` string.

    Raises:
        ValueError: If the string is malformed or either side is zero.
    """
    match = _RESOLUTION.match(value or "")
    if not match:
        raise ValueError(f"Invalid resolution '{value}', expected WIDTHxHEIGHT")
    width, height = int(match.group(1)), int(match.group(2))
    if width == 0 or height == 0:
        raise ValueError(f"Resolution must be non-zero: {value}")
    return width, height


def parse_window_bounds(value: str) -> tuple[int, int, int, int]:
    """Parse an ``x,y,width,height`` string into integers."""
    parts = [p.strip() for p in (value or "").split(",")]
    if len(parts) != 4:
        raise ValueError(f"Invalid window bounds '{value}', expected x,y,w,h")
    try:
        x, y, w, h = (int(p) for p in parts)
    except ValueError:
        raise ValueError(f"Window bounds must be integers: {value}") from None
    if x < 0 or y < 0 or w <= 0 or h <= 0:
        raise ValueError(f"Window bounds out of range: {value}")
    return x, y, w, h


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


def redact_secret(secret: str, visible_chars: int = 4) -> str:
    """Redact a secret string, showing only the last few characters.

    Returns:
        Redacted string like '****abcd', or '****' if too short.
    """
    if not secret:
        return ""
    if len(secret) <= visible_chars:
        return "****"
    return "****" + secret[-visible_chars:]


def sanitize_api_key(text: str, api_key: str) -> str:
    """Remove all occurrences of an API key from a text string."""
    if not text or not api_key:
        return text or ""
    if api_key not in text:
        return text
    return text.replace(api_key, redact_secret(api_key))
