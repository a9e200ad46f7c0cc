"""Sliding-window rate limiter tests."""

from calmnotes.core.rate_limiter import RateLimiter


class TestRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = RateLimiter(limit=3, window_s=60)
        assert [limiter.check("ip", now=t) for t in (0, 1, 2)] == [None, None, None]
        assert limiter.check("ip", now=3) is not None

    def test_retry_after_counts_down_to_oldest_event(self):
        limiter = RateLimiter(limit=1, window_s=60)
        limiter.check("ip", now=100)
        assert limiter.check("ip", now=130) == 30

    def test_window_slides(self):
        limiter = RateLimiter(limit=1, window_s=60)
        assert limiter.check("ip", now=0) is None
        assert limiter.check("ip", now=59) is not None
        assert limiter.check("ip", now=61) is None

    def test_keys_are_independent(self):
        limiter = RateLimiter(limit=1, window_s=60)
        assert limiter.check("a", now=0) is None
        assert limiter.check("b", now=0) is None

    def test_denied_requests_do_not_extend_window(self):
        limiter = RateLimiter(limit=1, window_s=10)
        limiter.check("ip", now=0)
        for t in range(1, 10):
            limiter.check("ip", now=t)
        assert limiter.check("ip", now=11) is None


class TestMiddleware:
    def test_api_requests_limited(self, client, monkeypatch):
        from calmnotes.core import rate_limiter

        monkeypatch.setattr(rate_limiter.api_rate_limiter, "limit", 2)
        assert client.get("/api/health").status_code == 200
        assert client.get("/api/health").status_code == 200
        response = client.get("/api/health")
        assert response.status_code == 429
        assert response.json()["error"]["code"] == "RATE_LIMITED"
        assert "Retry-After" in response.headers
