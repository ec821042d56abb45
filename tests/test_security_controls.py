"""
Tests for request-level security controls: rate limiting, headers, audit trail.
"""

import pytest
from fastapi.testclient import TestClient

from listing_pictures.app.api import app
from listing_pictures.services.security_service import AuditLogger, RateLimiter, security_service


class TestRateLimiting:
    def test_allows_requests_within_budget(self):
        rate_limiter = RateLimiter(max_requests=5, time_window=60, enabled=True)
        for _ in range(5):
            decision = rate_limiter.check("127.0.0.1", now=1000.0)
            assert decision.allowed is True
            assert decision.retry_after is None

    def test_blocks_requests_over_budget(self):
        rate_limiter = RateLimiter(max_requests=2, time_window=60, enabled=True)
        assert rate_limiter.check("127.0.0.1", now=1000.0).allowed is True
        assert rate_limiter.check("127.0.0.1", now=1010.0).allowed is True

        decision = rate_limiter.check("127.0.0.1", now=1020.0)

        assert decision.allowed is False
        assert decision.retry_after == pytest.approx(40.0)

    def test_window_resets(self):
        rate_limiter = RateLimiter(max_requests=1, time_window=60, enabled=True)
        assert rate_limiter.check("127.0.0.1", now=1000.0).allowed is True
        assert rate_limiter.check("127.0.0.1", now=1059.0).allowed is False
        assert rate_limiter.check("127.0.0.1", now=1060.0).allowed is True

    def test_clients_are_counted_separately(self):
        rate_limiter = RateLimiter(max_requests=1, time_window=60, enabled=True)
        assert rate_limiter.check("10.0.0.1", now=1000.0).allowed is True
        assert rate_limiter.check("10.0.0.2", now=1000.0).allowed is True
        assert rate_limiter.check("10.0.0.1", now=1001.0).allowed is False

    def test_disabled_limiter_allows_everything(self):
        rate_limiter = RateLimiter(max_requests=1, time_window=60, enabled=False)
        for _ in range(10):
            assert rate_limiter.check("127.0.0.1").allowed is True
        assert rate_limiter.windows == {}

    def test_middleware_returns_429(self, monkeypatch):
        monkeypatch.setattr(security_service, "rate_limiter", RateLimiter(max_requests=1, time_window=60))
        with TestClient(app) as client:
            assert client.get("/health").status_code == 200
            response = client.get("/health")

        assert response.status_code == 429
        assert response.headers["content-type"].startswith("application/problem+json")
        assert int(response.headers["Retry-After"]) >= 1
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.json()["code"] == "rate_limit_exceeded"


class TestAuditLogger:
    def test_records_event(self):
        audit_logger = AuditLogger()
        audit_logger.log_security_event("PATH_TRAVERSAL_ATTEMPT", {"filename": "../x"})

        (entry,) = audit_logger.get_logs()
        assert entry["event_type"] == "PATH_TRAVERSAL_ATTEMPT"
        assert entry["details"] == {"filename": "../x"}
        assert "timestamp" in entry

    def test_limit_returns_most_recent(self):
        audit_logger = AuditLogger()
        for idx in range(5):
            audit_logger.log_security_event("EVENT", {"idx": idx})
        assert [entry["details"]["idx"] for entry in audit_logger.get_logs(limit=2)] == [3, 4]


class TestSecurityHeaders:
    def test_headers_are_copied(self):
        headers = security_service.get_security_headers()
        headers["X-Frame-Options"] = "ALLOW"
        assert security_service.get_security_headers()["X-Frame-Options"] == "DENY"

    def test_headers_present_on_errors(self):
        with TestClient(app) as client:
            response = client.get("/api/pictures/not-a-number")
        assert response.status_code == 422
        assert response.headers["Content-Security-Policy"] == "default-src 'self'"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
