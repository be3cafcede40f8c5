"""
WhatsApp notification service.

Sends alert messages to operator phone numbers through the WhatsApp Business
Cloud API. When sending is disabled or credentials are missing the notifier
runs in simulated mode: messages are logged and reported as delivered so the
rest of the dispatch pipeline keeps working without a live gateway.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

import httpx

from sewer_monitor.config import settings
from sewer_monitor.database import ensure_aware, utcnow
from sewer_monitor.i18n.translations import get_translator
from sewer_monitor.services.encryption import decrypt_value

logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    "critical": "\U0001f6a8",
    "high": "⚠️",
    "medium": "\U0001f536",
    "low": "\U0001f535",
}

TYPE_EMOJI = {
    "flood_risk": "\U0001f30a",
    "toxic_gas": "☠️",
    "maintenance_required": "\U0001f527",
    "sensor_offline": "\U0001f4e1",
}


@dataclass
class DeliveryResult:
    success: bool
    error: str | None = None

    def __bool__(self) -> bool:
        return self.success


def _get_access_token() -> str | None:
    """Retrieve and decrypt the WhatsApp access token from settings."""
    encrypted = settings.WHATSAPP_TOKEN_ENCRYPTED
    if not encrypted:
        return None
    try:
        return decrypt_value(encrypted)
    except Exception:
        logger.error("Failed to decrypt WhatsApp access token")
        return None


class WhatsAppNotifier:
    """Outbound gateway for alert notifications."""

    def __init__(
        self,
        api_url: str | None = None,
        phone_number_id: str | None = None,
        access_token: str | None = None,
        enabled: bool | None = None,
        timeout: float | None = None,
        language: str | None = None,
    ):
        self.api_url = (api_url or settings.WHATSAPP_API_URL).rstrip("/")
        self.phone_number_id = phone_number_id if phone_number_id is not None else settings.WHATSAPP_PHONE_NUMBER_ID
        self._access_token = access_token
        self.enabled = settings.WHATSAPP_ENABLED if enabled is None else enabled
        self.timeout = timeout or settings.WHATSAPP_SEND_TIMEOUT
        self.language = language or settings.ALERT_LANGUAGE

    @property
    def access_token(self) -> str | None:
        if self._access_token is None:
            self._access_token = _get_access_token()
        return self._access_token

    @property
    def simulated(self) -> bool:
        return not (self.enabled and self.access_token and self.phone_number_id)

    def format_alert_message(self, alert, location_name: str | None = None) -> str:
        """
        Format an alert into a WhatsApp markdown message.

        Args:
            alert: Alert instance.
            location_name: Display location of the alert's sensor.

        Returns:
            Message text.
        """
        _ = get_translator(self.language)
        emoji = SEVERITY_EMOJI.get(alert.severity, "⚠️")
        type_icon = TYPE_EMOJI.get(alert.alert_type, "\U0001f4ca")
        created_at = ensure_aware(alert.created_at) or utcnow()
        local_ts = created_at.astimezone(settings.local_tz).strftime(_("time.format"))

        lines = [
            f"{emoji} *{_('notify.title')}* {type_icon}",
            "",
            f"*{_('notify.sensor')}:* {alert.sensor_id}",
            f"*{_('notify.location')}:* {location_name or _('notify.not_informed')}",
            f"*{_('notify.type')}:* {_(f'type.{alert.alert_type}', default=alert.alert_type)}",
            f"*{_('notify.severity')}:* {_(f'severity.{alert.severity}', default=alert.severity.upper())}",
            "",
            f"*{_('notify.description')}:*",
            alert.message,
            "",
            f"*{_('notify.datetime')}:* {local_ts}",
            "",
            f"_{_('notify.footer')}_",
            f"_{_('notify.reply_hint')}_",
        ]
        return "\n".join(lines)

    def format_test_message(self) -> str:
        _ = get_translator(self.language)
        now = datetime.now(settings.local_tz).strftime(_("time.format"))
        return (
            f"\U0001f9ea *{_('notify.test_title')}*\n"
            f"\n"
            f"{_('notify.test_body')}\n"
            f"\n"
            f"*{_('notify.datetime')}:* {now}\n"
            f"\n"
            f"{_('notify.test_ok')}\n"
            f"\n"
            f"_{_('notify.footer')}_"
        )

    async def send_message(self, phone_number: str, text: str) -> DeliveryResult:
        """
        Send one text message to one phone number.

        Returns:
            DeliveryResult, truthy on success. Never raises for gateway errors.
        """
        if self.simulated:
            logger.info("[SIMULATED] WhatsApp to %s: %s", phone_number, text.splitlines()[0][:80])
            return DeliveryResult(True)

        url = f"{self.api_url}/{self.phone_number_id}/messages"
        payload = {
            "messaging_product": "whatsapp",
            "to": phone_number,
            "type": "text",
            "text": {"body": text},
        }
        headers = {"Authorization": f"Bearer {self.access_token}"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)

            if response.status_code == 200:
                logger.info("WhatsApp message sent to %s", phone_number)
                return DeliveryResult(True)

            detail = f"HTTP {response.status_code}: {response.text[:500]}"
            logger.warning("WhatsApp API error for %s: %s", phone_number, detail)
            return DeliveryResult(False, detail)

        except httpx.TimeoutException:
            logger.error("WhatsApp API request to %s timed out", phone_number)
            return DeliveryResult(False, "request timed out")
        except httpx.RequestError as exc:
            logger.error("WhatsApp API request error: %s", exc)
            return DeliveryResult(False, f"request error: {exc}")

    async def send_test_message(self, phone_number: str) -> DeliveryResult:
        return await self.send_message(phone_number, self.format_test_message())

    async def send_reply_acknowledgement(self, phone_number: str, alert_id: int | None) -> DeliveryResult:
        """Answer an operator reply, naming the alert it confirmed if any."""
        _ = get_translator(self.language)
        if alert_id is None:
            return await self.send_message(phone_number, _("notify.reply_nothing_pending"))
        return await self.send_message(phone_number, _("notify.reply_confirmed", alert_id=alert_id))

    def service_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "simulated": self.simulated,
            "api_url": self.api_url,
            "has_token": bool(self.access_token),
            "has_phone_id": bool(self.phone_number_id),
        }
