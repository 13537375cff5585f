"""Resilient HTTP plumbing shared by outbound integration clients."""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from portal_events.config import ResilienceConfig, ServiceConfig

logger = logging.getLogger(__name__)


class IntegrationError(RuntimeError):
    """Raised when a downstream call fails irrecoverably."""


class CircuitOpenError(IntegrationError):
    """Raised when the circuit breaker prevents further calls."""


@dataclass
class _CircuitBreakerState:
    failures: int = 0
    open_until: float = 0.0


class CircuitBreaker:
    """Opens after consecutive failures and lets calls through again after a cool-down."""

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self.state = _CircuitBreakerState()

    @property
    def is_open(self) -> bool:
        return bool(self.state.open_until) and time.monotonic() < self.state.open_until

    def allow(self) -> None:
        if self.is_open:
            raise CircuitOpenError("Circuit breaker is open; skipping call.")
        if self.state.open_until:
            self.state = _CircuitBreakerState()

    def record_success(self) -> None:
        self.state = _CircuitBreakerState()

    def record_failure(self) -> None:
        self.state.failures += 1
        if self.state.failures >= self.config.circuit_breaker_failure_threshold:
            self.state.open_until = time.monotonic() + self.config.circuit_breaker_reset_timeout


class HttpClient:
    """JSON-over-HTTP client with retry, exponential backoff and a circuit breaker."""

    def __init__(self, config: ServiceConfig, session: Optional[requests.Session] = None) -> None:
        self.config = config
        self.breaker = CircuitBreaker(config.resilience)
        self.session = session or requests.Session()

    def request(
        self,
        method: str,
        path: str,
        *,
        json_payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        url = self._build_url(path)

        def _call() -> Dict[str, Any]:
            response = self.session.request(
                method,
                url,
                json=json_payload,
                params=params,
                headers=self._headers(headers),
                timeout=self.config.timeout,
            )
            if response.status_code >= 400:
                raise IntegrationError(
                    f"HTTP {response.status_code} error calling {url}: {response.text}"
                )
            if not response.content:
                return {}
            try:
                return response.json()
            except json.JSONDecodeError as exc:
                raise IntegrationError(
                    f"Invalid JSON payload received from {url}: {response.text}"
                ) from exc

        return self._execute(_call)

    def _execute(self, operation: Callable[[], Any]) -> Any:
        attempts = 0
        delay = self.config.resilience.backoff_factor
        max_attempts = max(1, self.config.resilience.max_attempts)
        max_backoff = max(delay, self.config.resilience.max_backoff)

        while True:
            self.breaker.allow()
            try:
                result = operation()
            except (IntegrationError, requests.RequestException) as exc:
                self.breaker.record_failure()
                attempts += 1
                if attempts >= max_attempts:
                    raise IntegrationError(str(exc)) from exc
                logger.debug(
                    "%s call failed (attempt %s/%s): %s",
                    self.config.name,
                    attempts,
                    max_attempts,
                    exc,
                )
                time.sleep(delay)
                delay = min(delay * 2, max_backoff)
            else:
                self.breaker.record_success()
                return result

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.secret:
            headers["Authorization"] = f"Bearer {self.config.secret}"
        if extra:
            headers.update(extra)
        return headers

    def _build_url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"
