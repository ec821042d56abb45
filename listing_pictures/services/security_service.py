"""
Request-level security controls: rate limiting, response headers, audit trail.
"""

import logging
import math
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request

from listing_pictures.config import settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RateLimitDecision:
    """Outcome of rate limit evaluation."""

    allowed: bool
    retry_after: Optional[float] = None


class RateLimiter:
    """Fixed-window request limit per client address."""

    def __init__(self, max_requests: int = 100, time_window: int = 60, enabled: bool = True):
        self.max_requests = max_requests
        self.time_window = time_window
        self.enabled = enabled
        self.windows: Dict[str, Tuple[float, int]] = {}  # client -> (window start, count)

    def check(self, client_id: str, now: Optional[float] = None) -> RateLimitDecision:
        """Count a request and say whether it fits in the current window."""
        if not self.enabled:
            return RateLimitDecision(True, None)

        now = time.time() if now is None else now
        started, count = self.windows.get(client_id, (now, 0))
        if now - started >= self.time_window:
            started, count = now, 0

        if count >= self.max_requests:
            retry_after = max(0.0, self.time_window - (now - started))
            logger.warning(
                "Rate limit exceeded for client %s (max=%s/window=%ss)",
                client_id,
                self.max_requests,
                self.time_window,
            )
            return RateLimitDecision(False, retry_after)

        self.windows[client_id] = (started, count + 1)
        return RateLimitDecision(True, None)


class AuditLogger:
    """Keeps security-relevant events in memory and mirrors them to the log."""

    def __init__(self):
        self.logs = []

    def log_security_event(self, event_type: str, details: Dict, request: Optional[Request] = None):
        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "event_type": event_type,
            "details": details,
        }
        if request is not None:
            log_entry.update(
                {
                    "client_ip": request.client.host if request.client else "unknown",
                    "path": str(request.url.path),
                    "method": request.method,
                }
            )
        self.logs.append(log_entry)
        logger.info(f"SECURITY_EVENT: {log_entry}")

    def get_logs(self, limit: int = 100) -> list:
        """Get recent audit logs."""
        return list(self.logs)[-limit:]


class SecurityService:
    """Aggregates the security controls applied around every request."""

    def __init__(self, rate_limiting_enabled: bool = True, max_requests: int = 100, time_window: int = 60):
        self.rate_limiter = RateLimiter(
            max_requests=max_requests,
            time_window=time_window,
            enabled=rate_limiting_enabled,
        )
        self.audit_logger = AuditLogger()
        self.security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Content-Security-Policy": "default-src 'self'",
        }

    def process_request(self, request: Request):
        """Apply rate limiting; raise 429 when the client is over its budget."""
        client_id = request.client.host if request.client else "unknown"
        decision = self.rate_limiter.check(client_id)
        if not decision.allowed:
            retry_after = decision.retry_after or self.rate_limiter.time_window
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
                headers={"Retry-After": str(max(1, math.ceil(retry_after)))},
            )

    def get_security_headers(self) -> Dict[str, str]:
        return dict(self.security_headers)

    def get_audit_logs(self, limit: int = 100) -> list:
        return self.audit_logger.get_logs(limit)


# Global security service instance
# Disable rate limiting in test environment
rate_limiting_enabled = settings.rate_limiting_enabled
if "pytest" in sys.modules:
    rate_limiting_enabled = False
security_service = SecurityService(
    rate_limiting_enabled=rate_limiting_enabled,
    max_requests=settings.rate_limit_max_requests,
    time_window=settings.rate_limit_window_seconds,
)
