from abc import ABC, abstractmethod
from typing import Optional

import httpx

from certwatch.config.settings import settings
from certwatch.utils.errors import EmailTransportError
from certwatch.utils.logging import get_logger

logger = get_logger()


class EmailTransport(ABC):
    """Outbound email channel used by the reminder dispatcher"""

    @abstractmethod
    async def send(self, to_address: str, subject: str, body: str) -> bool:
        """
        Hand one message to the delivery provider.

        Returns True when the provider accepted the message, False when it declined.
        Raises EmailTransportError when the provider could not be reached.
        """
        pass


class LoggingEmailTransport(EmailTransport):
    """Development transport: writes the message to the log instead of sending it"""

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        logger.info(f"Email to {to_address}: {subject}")
        logger.debug(body)
        return True


class HttpEmailTransport(EmailTransport):
    """Posts messages as JSON to a transactional email HTTP API"""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        from_address: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.from_address = from_address
        self.timeout = timeout
        self._client = client

    def _build_payload(self, to_address: str, subject: str, body: str) -> dict:
        return {
            "from": self.from_address,
            "to": [to_address],
            "subject": subject,
            "text": body,
        }

    async def send(self, to_address: str, subject: str, body: str) -> bool:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = self._build_payload(to_address, subject, body)

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        self.api_url, json=payload, headers=headers, timeout=self.timeout
                    )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise EmailTransportError(
                f"Email API rejected message: {e.response.status_code} - {e.response.text}",
                error_code="EMAIL_API_REJECTED",
            )
        except httpx.RequestError as e:
            raise EmailTransportError(
                f"Email API request failed: {e.__class__.__name__}: {e}",
                error_code="EMAIL_API_UNREACHABLE",
            )

        logger.debug(f"Email API accepted message to {to_address}: {response.status_code}")
        return True


def get_email_transport(kind: Optional[str] = None) -> EmailTransport:
    """Email transport selected by EMAIL_TRANSPORT (log | http)"""
    kind = (kind or settings.EMAIL_TRANSPORT).lower()

    if kind == "log":
        return LoggingEmailTransport()
    if kind == "http":
        return HttpEmailTransport(
            api_url=settings.EMAIL_API_URL,
            api_key=settings.EMAIL_API_KEY,
            from_address=settings.EMAIL_FROM_ADDRESS,
            timeout=settings.EMAIL_TIMEOUT_SECONDS,
        )

    raise ValueError(f"Unknown email transport: {kind}")
