"""
Email Client

Sends one email through the Postmark-compatible HTTP API of the email
service. Every call is bounded by the client timeout; a timeout is a
failure like any other.
"""

import logging
from typing import Optional

import httpx

from ..errors import DeliveryTransportError
from .address import SubscriberEmail

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Postmark-Server-Token"


class EmailClient:
    """
    Thin async client for the email service.

    Usage:
        client = EmailClient(base_url, SubscriberEmail.parse(sender), token, timeout=10.0)
        await client.send_email(recipient, "Subject", "<p>html</p>", "text")
        await client.aclose()
    """

    def __init__(
        self,
        base_url: str,
        sender: SubscriberEmail,
        authorization_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.sender = sender
        self._authorization_token = authorization_token
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> "EmailClient":
        return cls(
            base_url=settings.EMAIL_BASE_URL,
            sender=SubscriberEmail.parse(settings.EMAIL_SENDER),
            authorization_token=settings.EMAIL_AUTHORIZATION_TOKEN,
            timeout=settings.email_timeout_seconds,
        )

    async def send_email(
        self,
        recipient: SubscriberEmail,
        subject: str,
        html_content: str,
        text_content: str,
    ) -> None:
        """
        Send one email.

        Raises:
            DeliveryTransportError: non-2xx response, network failure or timeout
        """
        payload = {
            "From": self.sender.value,
            "To": recipient.value,
            "Subject": subject,
            "HtmlBody": html_content,
            "TextBody": text_content,
        }

        try:
            response = await self._http.post(
                "/email",
                json=payload,
                headers={AUTH_HEADER: self._authorization_token},
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise DeliveryTransportError(f"Email service timed out sending to {recipient}") from e
        except httpx.HTTPStatusError as e:
            raise DeliveryTransportError(
                f"Email service returned {e.response.status_code} for {recipient}",
                status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryTransportError(f"Email service request failed for {recipient}: {e}") from e

        logger.debug(f"Email accepted by service for {recipient}")

    async def aclose(self) -> None:
        await self._http.aclose()
