"""Outbound message transport (chat gateway)."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from outreach_engine.config import settings
from outreach_engine.logging_config import get_logger

logger = get_logger("transport")


class TransportError(Exception):
    pass


class Transport(ABC):
    @abstractmethod
    def send(self, phone: str, text: str) -> Optional[str]:
        """Deliver text; returns the gateway message id if it gives one."""


class HttpTransport(Transport):
    """Posts messages to an HTTP chat gateway."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout_seconds: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout_seconds = timeout_seconds

    def send(self, phone: str, text: str) -> Optional[str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    f"{self.base_url}/messages",
                    headers=headers,
                    json={"phone": phone, "text": text},
                )
        except httpx.HTTPError as exc:
            raise TransportError(f"Gateway request failed: {exc}") from exc

        if response.status_code >= 300:
            raise TransportError(f"Gateway error: {response.status_code} - {response.text[:200]}")
        try:
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        message_id = data.get("id") or data.get("message_id")
        return str(message_id) if message_id else None


def get_transport() -> Optional[Transport]:
    if not settings.transport_url:
        return None
    return HttpTransport(
        settings.transport_url,
        token=settings.transport_token,
        timeout_seconds=settings.transport_timeout_seconds,
    )
