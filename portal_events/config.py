"""Centralised configuration management for the registration service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional


@dataclass(frozen=True)
class ResilienceConfig:
    """Retry and circuit breaker settings for outbound integrations."""

    max_attempts: int = 3
    backoff_factor: float = 0.5
    max_backoff: float = 5.0
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_reset_timeout: float = 30.0


@dataclass(frozen=True)
class ServiceConfig:
    """Configuration for a downstream dependency."""

    name: str
    base_url: str
    timeout: float = 5.0
    secret: Optional[str] = None
    resilience: ResilienceConfig = field(default_factory=ResilienceConfig)


@dataclass(frozen=True)
class AppConfig:
    """Aggregate application configuration."""

    services: Dict[str, ServiceConfig]
    log_level: str = "INFO"
    notifications_enabled: bool = True
    waitlist_sweep_enabled: bool = True
    waitlist_sweep_minutes: int = 30
    default_page_size: int = 50
    max_page_size: int = 200

    def service(self, name: str) -> ServiceConfig:
        try:
            return self.services[name]
        except KeyError as exc:
            raise KeyError(f"Unknown service configuration requested: {name}") from exc


def _get_env_name(service_name: str, key: str) -> str:
    return f"{service_name.upper()}_{key.upper()}"


def _get_int(var: str, default: int) -> int:
    value = os.getenv(var)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(var: str, default: float) -> float:
    value = os.getenv(var)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_bool(var: str, default: bool) -> bool:
    value = os.getenv(var)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _load_resilience(service_name: str) -> ResilienceConfig:
    def env(key: str) -> str:
        return _get_env_name(service_name, key)

    return ResilienceConfig(
        max_attempts=_get_int(env("MAX_ATTEMPTS"), 3),
        backoff_factor=_get_float(env("BACKOFF_FACTOR"), 0.5),
        max_backoff=_get_float(env("MAX_BACKOFF"), 5.0),
        circuit_breaker_failure_threshold=_get_int(env("CB_FAILURE_THRESHOLD"), 5),
        circuit_breaker_reset_timeout=_get_float(env("CB_RESET_TIMEOUT"), 30.0),
    )


def _load_service_config(
    service_name: str,
    *,
    default_url: str,
    default_timeout: float = 5.0,
) -> ServiceConfig:
    base_url = os.getenv(_get_env_name(service_name, "URL"), default_url)
    secret = os.getenv(_get_env_name(service_name, "SECRET"))

    return ServiceConfig(
        name=service_name,
        base_url=base_url,
        timeout=_get_float(_get_env_name(service_name, "TIMEOUT"), default_timeout),
        secret=secret,
        resilience=_load_resilience(service_name),
    )


@lru_cache()
def get_config() -> AppConfig:
    """Return the lazily initialised application configuration."""

    services = {
        "notification_service": _load_service_config(
            "notification_service",
            default_url="http://notification-service.local/api",
        ),
    }
    return AppConfig(
        services=services,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        notifications_enabled=_get_bool("NOTIFICATIONS_ENABLED", True),
        waitlist_sweep_enabled=_get_bool("WAITLIST_SWEEP_ENABLED", True),
        waitlist_sweep_minutes=max(1, _get_int("WAITLIST_SWEEP_MINUTES", 30)),
        default_page_size=max(1, _get_int("DEFAULT_PAGE_SIZE", 50)),
        max_page_size=max(1, _get_int("MAX_PAGE_SIZE", 200)),
    )


def get_service_config(service_name: str) -> ServiceConfig:
    """Shortcut to retrieve an individual service configuration."""

    config = get_config()
    return config.service(service_name)
