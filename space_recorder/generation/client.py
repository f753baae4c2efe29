"""HTTP client for the fal.ai queue API."""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import httpx
from pydantic import BaseModel, ValidationError

from ..errors import (
    ContentPolicyError,
    EmptyPromptError,
    GenerationError,
    GenerationTimeoutError,
    MissingApiKeyError,
    RateLimitError,
)
from ..sanitize import sanitize_api_key

logger = logging.getLogger("space_recorder")

FAL_API_KEY_ENV = "FAL_API_KEY"
FAL_API_BASE_URL = "https://queue.fal.run"
DEFAULT_MODEL = "fal-ai/fast-svd-lcm"

REQUEST_TIMEOUT = 30.0
CONNECT_TIMEOUT = 10.0
GENERATION_TIMEOUT = 120.0
POLL_INTERVAL = 2.0

MAX_RETRIES = 5
BACKOFF_BASE = 1.0
BACKOFF_MAX = 60.0

CONTENT_POLICY_KEYWORDS = (
    "content policy",
    "policy violation",
    "inappropriate",
    "not allowed",
    "prohibited",
    "blocked",
    "unsafe",
    "violates",
    "moderation",
    "nsfw",
)

_PENDING = {"PENDING", "IN_QUEUE"}
_IN_PROGRESS = {"PROCESSING", "IN_PROGRESS"}
_COMPLETED = {"COMPLETED", "OK"}
_FAILED = {"FAILED", "ERROR"}


class QueueResponse(BaseModel):
    """Response from queue submission."""
    request_id: str
    status_url: Optional[str] = None


class VideoOutput(BaseModel):
    url: str


class StatusResponse(BaseModel):
    """Response from the status endpoint."""
    status: str
    response_url: Optional[str] = None
    video: Optional[VideoOutput] = None
    error: Optional[str] = None


class ResultResponse(BaseModel):
    video: VideoOutput


class GenerationState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationStatus:
    state: GenerationState
    video_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state in (GenerationState.COMPLETED, GenerationState.FAILED)


def validate_prompt(prompt: str) -> str:
    """Return the trimmed prompt.

    Raises:
        EmptyPromptError: If nothing is left after trimming.
    """
    trimmed = (prompt or "").strip()
    if not trimmed:
        raise EmptyPromptError()
    return trimmed


def is_content_policy_error(text: str) -> bool:
    lower = (text or "").lower()
    return any(keyword in lower for keyword in CONTENT_POLICY_KEYWORDS)


def calculate_backoff(attempt: int, base: float = BACKOFF_BASE, maximum: float = BACKOFF_MAX) -> float:
    """Exponential backoff in seconds: ``base * 2**attempt`` plus a fixed jitter, capped."""
    jitter = min(base, 1.0) / 2
    return min(base * (2 ** attempt) + jitter, maximum)


def parse_status(data: StatusResponse) -> GenerationStatus:
    status = data.status.upper()
    if status in _COMPLETED:
        url = data.video.url if data.video else data.response_url
        if not url:
            raise GenerationError("Generation completed but no video URL was returned")
        return GenerationStatus(GenerationState.COMPLETED, video_url=url)
    if status in _FAILED:
        return GenerationStatus(
            GenerationState.FAILED,
            error=data.error or "Unknown error",
        )
    if status in _IN_PROGRESS:
        return GenerationStatus(GenerationState.IN_PROGRESS)
    if status not in _PENDING:
        logger.debug("Unknown generation status '%s', treating as pending", data.status)
    return GenerationStatus(GenerationState.PENDING)


class FalClient:
    """Client for the fal.ai queue API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = FAL_API_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the client.

        Args:
            api_key: API key. Falls back to the ``FAL_API_KEY`` environment variable.
            base_url: Queue API base URL.
            model: Model path, e.g. ``fal-ai/fast-svd-lcm``.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
            sleep: Sleep function used between polls and retries.

        Raises:
            MissingApiKeyError: If no API key is available.
        """
        self.api_key = api_key or os.environ.get(FAL_API_KEY_ENV)
        if not self.api_key:
            raise MissingApiKeyError(FAL_API_KEY_ENV)
        self.base_url = base_url.rstrip("/")
        self.model = model.strip("/")
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                headers={"Authorization": f"Key {self.api_key}"},
                timeout=httpx.Timeout(self.timeout, connect=CONNECT_TIMEOUT),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "FalClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"FalClient(base_url={self.base_url!r}, model={self.model!r})"

    # ------------------------------------------------------------------ #
    #  Requests                                                            #
    # ------------------------------------------------------------------ #

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            msg = sanitize_api_key(str(e), self.api_key)
            raise GenerationError(f"HTTP request failed: {msg}") from None

    def _error_text(self, response: httpx.Response) -> str:
        return sanitize_api_key(response.text, self.api_key) or response.reason_phrase

    def submit(self, prompt: str) -> QueueResponse:
        """Submit a generation request.

        Raises:
            EmptyPromptError: If the prompt is blank.
            RateLimitError: On HTTP 429.
            ContentPolicyError: If the prompt is rejected by moderation.
            GenerationError: On any other failure.
        """
        prompt = validate_prompt(prompt)
        response = self._request("POST", f"/{self.model}", json={"prompt": prompt})

        if response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            try:
                retry_after = float(retry_after) if retry_after else None
            except ValueError:
                retry_after = None
            logger.warning("Rate limited by fal.ai. Retry-After: %s", retry_after)
            raise RateLimitError(self._error_text(response), retry_after)

        if response.is_error:
            text = self._error_text(response)
            if response.status_code in (400, 403) and is_content_policy_error(text):
                logger.warning("Prompt rejected by content policy: %s", text)
                raise ContentPolicyError(text)
            raise GenerationError(
                f"API request failed with status {response.status_code}: {text}"
            )

        try:
            return QueueResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise GenerationError(f"Unexpected submit response: {e}") from None

    def submit_with_retry(
        self,
        prompt: str,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE,
        backoff_max: float = BACKOFF_MAX,
    ) -> QueueResponse:
        """Submit, retrying rate-limited attempts with exponential backoff."""
        attempt = 0
        while True:
            try:
                return self.submit(prompt)
            except RateLimitError as e:
                if attempt >= max_retries:
                    logger.error("Rate limit exceeded after %d attempts", attempt + 1)
                    raise
                if e.retry_after is not None:
                    delay = min(e.retry_after, backoff_max)
                else:
                    delay = calculate_backoff(attempt, backoff_base, backoff_max)
                logger.info(
                    "Rate limited (attempt %d/%d), retrying in %.1fs",
                    attempt + 1, max_retries + 1, delay,
                )
                self._sleep(delay)
                attempt += 1

    def status(self, request_id: str) -> GenerationStatus:
        """Fetch the status of a queued request."""
        response = self._request(
            "GET", f"/{self.model}/requests/{request_id}/status"
        )
        if response.is_error:
            raise GenerationError(
                f"Status check failed with status {response.status_code}: "
                f"{self._error_text(response)}"
            )
        try:
            data = StatusResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise GenerationError(f"Unexpected status response: {e}") from None
        return parse_status(data)

    def wait_for_video(
        self,
        request_id: str,
        timeout: float = GENERATION_TIMEOUT,
        poll_interval: float = POLL_INTERVAL,
    ) -> str:
        """Poll until the request completes and return the video URL.

        Raises:
            GenerationTimeoutError: If ``timeout`` seconds pass first.
            GenerationError: If the generation failed.
        """
        deadline = time.monotonic() + timeout
        while True:
            status = self.status(request_id)
            if status.state == GenerationState.COMPLETED:
                return self.resolve_video_url(status.video_url)
            if status.state == GenerationState.FAILED:
                raise GenerationError(f"Generation failed: {status.error}")
            if time.monotonic() + poll_interval > deadline:
                raise GenerationTimeoutError(timeout)
            logger.debug("Request %s is %s", request_id, status.state.value)
            self._sleep(poll_interval)

    def resolve_video_url(self, url: str) -> str:
        """Follow a queue result URL to the clip URL.

        Some endpoints return a ``response_url`` pointing at a JSON result
        rather than the clip itself.
        """
        if "/requests/" not in url:
            return url
        response = self._request("GET", url)
        if response.is_error:
            raise GenerationError(
                f"Result fetch failed with status {response.status_code}: "
                f"{self._error_text(response)}"
            )
        if "json" not in response.headers.get("content-type", ""):
            return url
        try:
            return ResultResponse.model_validate(response.json()).video.url
        except (ValueError, ValidationError) as e:
            raise GenerationError(f"Unexpected result response: {e}") from None

    def download(self, url: str, dest: str | Path) -> Path:
        """Stream a clip to ``dest`` and return the path."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_suffix(dest.suffix + ".part")
        try:
            with self.client.stream("GET", url) as response:
                if response.is_error:
                    raise GenerationError(
                        f"Download failed with status {response.status_code}"
                    )
                with open(partial, "wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
        except httpx.HTTPError as e:
            partial.unlink(missing_ok=True)
            msg = sanitize_api_key(str(e), self.api_key)
            raise GenerationError(f"Download failed: {msg}") from None
        except GenerationError:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(dest)
        return dest

    def generate(self, prompt: str, dest: str | Path, timeout: float = GENERATION_TIMEOUT) -> Path:
        """Submit, wait and download in one call."""
        queued = self.submit_with_retry(prompt)
        logger.info("Generation queued as %s", queued.request_id)
        url = self.wait_for_video(queued.request_id, timeout=timeout)
        return self.download(url, dest)
