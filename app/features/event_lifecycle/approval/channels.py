"""
Outbound notification channels used for approval requests.

SMS goes through the Twilio REST API over httpx; email goes through Resend.
Both enforce a fixed timeout and surface failures as NotificationError.
"""

import asyncio
from typing import Protocol

import httpx
import resend

from app.config import settings
from app.features.event_lifecycle.errors import NotificationError
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TWILIO_API_BASE_URL = "https://api.twilio.com/2010-04-01"


class ApprovalChannel(Protocol):
    name: str
    recipient: str

    async def send(self, body: str, subject: str | None = None) -> str | None: ...


class SmsChannel:
    name = "sms"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        to_number: str,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.recipient = to_number
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout or settings.NOTIFICATION_TIMEOUT_SECONDS)
        )

    async def send(self, body: str, subject: str | None = None) -> str | None:
        url = f"{TWILIO_API_BASE_URL}/Accounts/{self.account_sid}/Messages.json"
        try:
            response = await self._client.post(
                url,
                data={"To": self.recipient, "From": self.from_number, "Body": body},
                auth=(self.account_sid, self.auth_token),
            )
        except httpx.HTTPError as e:
            logger.error("SMS send failed", error=str(e), error_type=type(e).__name__)
            raise NotificationError(f"SMS send failed: {e}", channel=self.name) from e

        if not response.is_success:
            logger.error(
                "Twilio rejected SMS",
                status_code=response.status_code,
                response_text=response.text[:200],
            )
            raise NotificationError(
                f"Twilio returned HTTP {response.status_code}",
                channel=self.name,
                status_code=response.status_code,
            )

        message_sid = response.json().get("sid")
        logger.info("SMS sent", message_sid=message_sid)
        return message_sid

    async def close(self) -> None:
        await self._client.aclose()


class EmailChannel:
    name = "email"

    def __init__(
        self,
        api_key: str,
        from_address: str,
        to_address: str,
        timeout: float | None = None,
    ):
        self.api_key = api_key
        self.from_address = from_address
        self.recipient = to_address
        self.timeout = timeout or settings.NOTIFICATION_TIMEOUT_SECONDS

    async def send(self, body: str, subject: str | None = None) -> str | None:
        resend.api_key = self.api_key
        params = {
            "from": self.from_address,
            "to": [self.recipient],
            "subject": subject or "Family event approval",
            "text": body,
        }
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, params), timeout=self.timeout
            )
        except TimeoutError as e:
            raise NotificationError("Email send timed out", channel=self.name) from e
        except Exception as e:
            logger.error("Email send failed", error=str(e), error_type=type(e).__name__)
            raise NotificationError(f"Email send failed: {e}", channel=self.name) from e

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info("Email sent", message_id=message_id)
        return message_id

    async def close(self) -> None:
        return None


def build_default_channels() -> list[ApprovalChannel]:
    """Configured channels in preference order (SMS first)."""
    channels: list[ApprovalChannel] = []
    if settings.sms_configured():
        channels.append(
            SmsChannel(
                settings.TWILIO_ACCOUNT_SID,
                settings.TWILIO_AUTH_TOKEN,
                settings.TWILIO_FROM_NUMBER,
                settings.APPROVAL_SMS_TO,
            )
        )
    if settings.email_configured():
        channels.append(
            EmailChannel(
                settings.RESEND_API_KEY,
                settings.APPROVAL_EMAIL_FROM,
                settings.APPROVAL_EMAIL_TO,
            )
        )
    return channels
