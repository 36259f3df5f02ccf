"""Unit tests for the HTTP fetch client and rate limiter."""
import httpx
import pytest
from unittest.mock import Mock
from devpulse.http.fetch_client import FetchClient, FetchRequest
from devpulse.http.rate_limiter import RateLimiter
from devpulse.models.errors import NetworkError, NotFoundError, ParseError, RateLimitError
from devpulse.models.schemas import Platform


class FakeClock:
    """Monotonic clock advanced only by sleep()."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _client(mock_config, handler, clock=None):
    clock = clock or FakeClock()
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return FetchClient(mock_config, http_client=http_client, sleep=clock.sleep, clock=clock), clock


def _request(url="https://example.com/data.json", platform=Platform.FORUM):
    return FetchRequest(platform=platform, url=url)


class TestFetchClient:
    """Test FetchClient."""

    def test_success(self, mock_config):
        """Test a 200 response returns the decoded body."""
        client, _ = _client(mock_config, lambda request: httpx.Response(200, json={"ok": True}))

        result = client.fetch(_request())

        assert result.ok
        assert result.value == {"ok": True}

    def test_params_sent(self, mock_config):
        """Test query parameters reach the server."""
        seen = []

        def handler(request):
            seen.append(request.url.params.get("limit"))
            return httpx.Response(200, json=[])

        client, _ = _client(mock_config, handler)
        client.fetch(FetchRequest(platform=Platform.SOCIAL, url="https://example.com/r/x/hot.json", params={"limit": 25}))

        assert seen == ["25"]

    def test_429_retried_with_backoff(self, mock_config):
        """Test a 429 is retried and the next success returned."""
        responses = iter([httpx.Response(429), httpx.Response(200, json=[1])])
        client, clock = _client(mock_config, lambda request: next(responses))

        result = client.fetch(_request())

        assert result.value == [1]
        assert clock.sleeps == [1.0]

    def test_retry_after_honoured(self, mock_config):
        """Test a larger Retry-After header overrides the computed delay."""
        responses = iter([httpx.Response(429, headers={"Retry-After": "5"}), httpx.Response(200, json={})])
        client, clock = _client(mock_config, lambda request: next(responses))

        client.fetch(_request())

        assert clock.sleeps == [5.0]

    def test_5xx_exhausts_retries(self, mock_config):
        """Test repeated 5xx responses end in a NetworkError after max retries."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        client, clock = _client(mock_config, handler)
        result = client.fetch(_request())

        assert isinstance(result.error, NetworkError)
        assert len(calls) == mock_config.http_max_retries + 1
        assert clock.sleeps == [1.0, 2.0, 4.0]

    def test_exhausted_429_is_network_error(self, mock_config):
        """Test an exhausted rate limit surfaces as a (retryable) NetworkError."""
        client, _ = _client(mock_config, lambda request: httpx.Response(429))

        result = client.fetch(_request())

        assert isinstance(result.error, RateLimitError)
        assert isinstance(result.error, NetworkError)
        assert result.error.retryable

    def test_404_not_retried(self, mock_config):
        """Test a 404 returns NotFoundError without retrying."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        client, clock = _client(mock_config, handler)
        result = client.fetch(_request())

        assert isinstance(result.error, NotFoundError)
        assert len(calls) == 1
        assert clock.sleeps == []

    def test_403_not_retried(self, mock_config):
        """Test other 4xx responses are non-retryable network errors."""
        client, clock = _client(mock_config, lambda request: httpx.Response(403))

        result = client.fetch(_request())

        assert isinstance(result.error, NetworkError)
        assert not result.error.retryable
        assert clock.sleeps == []

    def test_timeout_is_network_error(self, mock_config):
        """Test transport timeouts are classified as NetworkError."""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, _ = _client(mock_config, handler)
        result = client.fetch(_request())

        assert isinstance(result.error, NetworkError)

    def test_invalid_json_is_parse_error(self, mock_config):
        """Test an undecodable body is a ParseError and not retried."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, text="<html>oops</html>")

        client, _ = _client(mock_config, handler)
        result = client.fetch(_request())

        assert isinstance(result.error, ParseError)
        assert len(calls) == 1

    def test_requests_paced_per_platform(self, config_factory):
        """Test successive requests to one platform respect its minimum interval."""
        config = config_factory(forum_pacing_seconds=1.0, social_pacing_seconds=2.0)
        client, clock = _client(config, lambda request: httpx.Response(200, json={}))

        client.fetch(_request(platform=Platform.FORUM))
        client.fetch(_request(platform=Platform.SOCIAL))
        client.fetch(_request(platform=Platform.FORUM))

        assert clock.sleeps == [1.0]

    def test_fetch_after_close(self, mock_config):
        """Test a request on a closed client is a non-retryable NetworkError, not an exception."""
        client, clock = _client(mock_config, lambda request: httpx.Response(200, json={}))
        client.close()

        result = client.fetch(_request())

        assert isinstance(result.error, NetworkError)
        assert not result.error.retryable
        assert clock.sleeps == []

    def test_close(self, mock_config):
        """Test close() closes the underlying client."""
        http_client = Mock(spec=httpx.Client)
        client = FetchClient(mock_config, http_client=http_client)

        client.close()

        http_client.close.assert_called_once()


class TestRateLimiter:
    """Test RateLimiter."""

    def test_first_call_does_not_wait(self):
        """Test the first acquire is immediate."""
        clock = FakeClock()
        limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

        assert limiter.acquire() == 0.0

    def test_waits_remaining_interval(self):
        """Test acquire waits only for the remaining part of the interval."""
        clock = FakeClock()
        limiter = RateLimiter(2.0, clock=clock, sleep=clock.sleep)

        limiter.acquire()
        clock.now += 0.5
        waited = limiter.acquire()

        assert waited == pytest.approx(1.5)
        assert clock.sleeps == [pytest.approx(1.5)]

    def test_no_wait_after_interval(self):
        """Test no wait once the interval has passed."""
        clock = FakeClock()
        limiter = RateLimiter(1.0, clock=clock, sleep=clock.sleep)

        limiter.acquire()
        clock.now += 3
        assert limiter.acquire() == 0.0
