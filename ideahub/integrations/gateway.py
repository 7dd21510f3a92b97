"""
Outbound webhook gateway for chat integrations.

All outbound HTTP calls to Slack, Teams and generic webhooks go through this
class. Senders build the payload; the gateway owns transport concerns:

  - Timeout: INTEGRATION_TIMEOUT_SECONDS (per call)
  - Retry: INTEGRATION_RETRY_MAX extra attempts, exponential backoff (1 s → 4 s)
  - 4xx responses other than 408/429 are not retried
  - Structured result returned to the caller; the caller writes IntegrationLog

Without an injected `session`, each thread gets its own requests.Session so
the async dispatcher workers never share a connection pool. Tests pass a mock
`session` instead.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from typing import Any

import requests
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10
_DEFAULT_RETRY_MAX = 2
_RETRY_BACKOFF_SECONDS = [1, 4]
_RETRYABLE_4XX = (408, 429)


class GatewayResult:
    """Structured return value from gateway calls.

    Attributes:
        ok:             True if the call succeeded (HTTP 2xx + no exception).
        status_code:    HTTP status code (None if network-level failure).
        data:           Parsed JSON response body, raw text, or None.
        error:          Human-readable error message or None.
        duration_ms:    Round-trip latency of the last attempt in milliseconds.
        attempts:       Number of HTTP attempts made.
        payload_hash:   SHA-256 of the serialised request payload (hex).
    """

    def __init__(
        self,
        ok: bool,
        status_code: int | None,
        data: Any,
        error: str | None,
        duration_ms: int,
        attempts: int = 1,
        payload_hash: str | None = None,
    ) -> None:
        self.ok = ok
        self.status_code = status_code
        self.data = data
        self.error = error
        self.duration_ms = duration_ms
        self.attempts = attempts
        self.payload_hash = payload_hash

    @classmethod
    def failure(cls, error: str) -> GatewayResult:
        return cls(ok=False, status_code=None, data=None, error=error, duration_ms=0, attempts=0)

    def to_log_dict(self) -> dict:
        """Return fields suitable for IntegrationLog creation."""
        return {
            "status": "success" if self.ok else "failed",
            "response_status": self.status_code,
            "error_message": self.error,
            "duration_ms": self.duration_ms,
        }


class WebhookGateway:
    """POSTs JSON to webhook endpoints with retry/backoff.

    Usage:
        from ideahub.integrations.gateway import gateway
        result = gateway.post_json(url, {"text": "hi"})
    """

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session: requests.Session | None = session
        self._local = threading.local()

    @property
    def session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    @session.setter
    def session(self, value: requests.Session | None) -> None:
        self._session = value

    @staticmethod
    def _settings() -> tuple[float, int]:
        if not has_app_context():
            return _DEFAULT_TIMEOUT, _DEFAULT_RETRY_MAX
        cfg = current_app.config
        return (
            cfg.get("INTEGRATION_TIMEOUT_SECONDS", _DEFAULT_TIMEOUT),
            cfg.get("INTEGRATION_RETRY_MAX", _DEFAULT_RETRY_MAX),
        )

    @staticmethod
    def payload_hash(body: bytes) -> str:
        return hashlib.sha256(body).hexdigest()

    def post_json(
        self,
        url: str,
        payload: dict,
        *,
        headers: dict | None = None,
        body: bytes | None = None,
    ) -> GatewayResult:
        """POST ``payload`` to ``url``. Always returns, never raises.

        ``body`` may carry pre-serialised bytes when the caller signs them;
        otherwise ``payload`` is serialised here.
        """
        if not url:
            return GatewayResult.failure("Webhook URL not configured")

        timeout, retry_max = self._settings()
        if body is None:
            body = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
        send_headers = {"Content-Type": "application/json"}
        send_headers.update(headers or {})
        digest = self.payload_hash(body)

        last_error = "Unknown error"
        last_status: int | None = None
        duration_ms = 0
        attempts = 0

        for attempt in range(retry_max + 1):
            attempts = attempt + 1
            retryable = True
            try:
                t0 = time.perf_counter()
                resp = self.session.post(url, data=body, headers=send_headers, timeout=timeout)
                duration_ms = int((time.perf_counter() - t0) * 1000)
                last_status = resp.status_code

                if resp.ok:
                    try:
                        data = resp.json() if resp.content else None
                    except ValueError:
                        data = resp.text
                    return GatewayResult(
                        ok=True, status_code=resp.status_code, data=data, error=None,
                        duration_ms=duration_ms, attempts=attempts, payload_hash=digest,
                    )

                last_error = f"HTTP {resp.status_code}: {resp.text[:500]}"
                retryable = resp.status_code >= 500 or resp.status_code in _RETRYABLE_4XX
                logger.warning(
                    "Webhook failed attempt=%d/%d status=%d url=%s",
                    attempts, retry_max + 1, resp.status_code, url,
                )

            except requests.Timeout:
                duration_ms = int(timeout * 1000)
                last_error = f"Request timed out after {timeout}s"
                logger.warning("Webhook timed out attempt=%d/%d url=%s", attempts, retry_max + 1, url)

            except requests.RequestException as exc:
                duration_ms = 0
                last_error = str(exc)[:500]
                logger.warning(
                    "Webhook network error attempt=%d/%d url=%s error=%s",
                    attempts, retry_max + 1, url, last_error,
                )

            if not retryable:
                break
            if attempt < retry_max:
                sleep_s = _RETRY_BACKOFF_SECONDS[min(attempt, len(_RETRY_BACKOFF_SECONDS) - 1)]
                time.sleep(sleep_s)

        return GatewayResult(
            ok=False, status_code=last_status, data=None, error=last_error,
            duration_ms=duration_ms, attempts=attempts, payload_hash=digest,
        )


gateway = WebhookGateway()
