"""Clients for communicating with external portal services."""

from .base import CircuitOpenError, HttpClient, IntegrationError
from .notification_service import NotificationServiceClient

__all__ = [
    "CircuitOpenError",
    "HttpClient",
    "IntegrationError",
    "NotificationServiceClient",
]
