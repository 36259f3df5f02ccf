# devpulse/http/fetch_client.py
"""
HTTP fetch client shared by all collectors.

Every request is paced by the platform's rate limiter, bounded by a timeout and
retried with exponential backoff on 429/5xx/transport errors. Failures come back
as classified errors inside a Result instead of being raised.
"""

from typing import Any, Callable, Dict, Optional
import time
import logging

import httpx
from pydantic import BaseModel, Field

from devpulse.config.settings import Settings
from devpulse.http.rate_limiter import RateLimiter
from devpulse.models.errors import (
    NetworkError,
    NotFoundError,
    ParseError,
    RateLimitError,
    Result,
)
from devpulse.models.schemas import Platform
from devpulse.utils.retry import exponential_backoff, retry_with_backoff

logger = logging.getLogger(__name__)


class FetchRequest(BaseModel):
    """A single GET request against one platform."""
    platform: Platform
    url: str
    params: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class FetchClient:
    """Paced, retrying JSON GET client."""

    def __init__(
        self,
        config: Settings,
        http_client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.max_retries = config.http_max_retries
        self.sleep = sleep
        self.client = http_client or httpx.Client(
            timeout=config.http_timeout_seconds,
            headers={
                "Accept": "application/json",
                "User-Agent": config.http_user_agent,
            },
            follow_redirects=True,
        )
        self.backoff = exponential_backoff(
            config.http_backoff_base_seconds, config.http_backoff_cap_seconds
        )
        pacing = {
            Platform.FORUM: config.forum_pacing_seconds,
            Platform.SOCIAL: config.social_pacing_seconds,
            Platform.TECHNEWS: config.technews_pacing_seconds,
            Platform.ARTICLES: config.articles_pacing_seconds,
            Platform.NEWS: 1.0,
        }
        self.rate_limiters = {
            platform: RateLimiter(interval, clock=clock, sleep=sleep)
            for platform, interval in pacing.items()
        }

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.client.close()

    def fetch(self, request: FetchRequest) -> Result:
        """
        Execute a GET request and decode its JSON body.

        Args:
            request: Request to execute

        Returns:
            Result holding the decoded JSON body, or a classified error
        """
        return retry_with_backoff(
            lambda: self._attempt(request),
            max_attempts=self.max_retries + 1,
            delay_for=self.backoff,
            sleep=self.sleep,
            label=f"GET {request.url}",
        )

    def _attempt(self, request: FetchRequest) -> Result:
        self.rate_limiters[Platform(request.platform)].acquire()
        try:
            response = self.client.get(
                request.url, params=request.params or None, headers=request.headers or None
            )
        except httpx.TimeoutException as e:
            return Result.failure(NetworkError(f"Timeout fetching {request.url}: {e}"))
        except httpx.HTTPError as e:
            return Result.failure(NetworkError(f"Transport error fetching {request.url}: {e}"))
        except RuntimeError as e:
            # httpx refuses requests once the client is closed
            return Result.failure(
                NetworkError(f"Client closed before fetching {request.url}: {e}", retryable=False)
            )

        status = response.status_code
        if status == 429:
            return Result.failure(
                RateLimitError(f"HTTP 429 from {request.url}", retry_after=_retry_after(response))
            )
        if status == 404:
            return Result.failure(NotFoundError(f"HTTP 404 from {request.url}"))
        if status >= 500:
            return Result.failure(NetworkError(f"HTTP {status} from {request.url}"))
        if status >= 400:
            return Result.failure(NetworkError(f"HTTP {status} from {request.url}", retryable=False))

        try:
            return Result.success(response.json())
        except ValueError as e:
            return Result.failure(ParseError(f"Invalid JSON from {request.url}: {e}"))
