"""Email delivery client.

This module provides the EmailClient class that sends transactional email
through a Postmark-compatible HTTP API, and the ``EmailSender`` protocol the
publisher and the delivery worker depend on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from newsletter_stage.core.settings import settings
from newsletter_stage.services.subscribers import SubscriberEmail

# Configure logger for this module
logger = logging.getLogger(__name__)


class EmailSendError(RuntimeError):
    """Raised when an email could not be handed over to the delivery API."""


class EmailSender(Protocol):
    """Capability to send one email; raises ``EmailSendError`` on failure."""

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None: ...


@dataclass(frozen=True)
class EmailClientConfig:
    """Immutable configuration for the email API client."""

    base_url: str
    sender: SubscriberEmail
    authorization_token: str
    timeout_seconds: float


def load_email_client_config() -> EmailClientConfig:
    """Build configuration object from global settings."""

    return EmailClientConfig(
        base_url=settings.email_base_url,
        sender=SubscriberEmail.parse(settings.email_sender),
        authorization_token=settings.email_authorization_token,
        timeout_seconds=settings.email_timeout_seconds,
    )


class EmailClient:
    """HTTP client wrapper for the email delivery API."""

    def __init__(
        self,
        config: EmailClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_email_client_config()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        """Send one email.

        Raises:
            EmailSendError: On network failure, timeout or a non-2xx answer.
        """
        client = await self._ensure_client()
        payload = {
            "From": str(self.config.sender),
            "To": str(recipient),
            "Subject": subject,
            "HtmlBody": html_content,
            "TextBody": text_content,
        }
        try:
            response = await client.post(
                "/email",
                json=payload,
                headers={"X-Postmark-Server-Token": self.config.authorization_token},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise EmailSendError(
                f"Email API responded with {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EmailSendError(f"Email API request failed: {exc}") from exc

        logger.debug("Email to %s accepted by the delivery API", recipient)

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _EmailClientSingleton:
    """Singleton wrapper for EmailClient."""

    _instance: EmailClient | None = None

    @classmethod
    def get_instance(cls) -> EmailClient:
        """Get or create the singleton EmailClient instance."""
        if cls._instance is None:
            cls._instance = EmailClient()
        return cls._instance


def get_email_client() -> EmailClient:
    """Return a singleton email client instance."""
    return _EmailClientSingleton.get_instance()


async def close_email_client() -> None:
    """Close the singleton email client if anything created it."""
    client = _EmailClientSingleton._instance
    if client is not None:
        await client.close()
        _EmailClientSingleton._instance = None
