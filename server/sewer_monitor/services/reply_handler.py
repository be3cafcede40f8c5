"""
Inbound WhatsApp replies.

Operators answer an alert notification with a short confirmation ("OK",
"ciente", ...). The reply acknowledges the most recent still-active alert
that was delivered to that operator and is recorded in the notification log
with status ``confirmed``.
"""
import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.database import utcnow
from sewer_monitor.models import Alert, NotificationLog, User
from sewer_monitor.services.lifecycle import AlertLifecycleManager, AlertNotFoundError
from sewer_monitor.services.whatsapp_notifier import WhatsAppNotifier

logger = logging.getLogger(__name__)

CONFIRMATION_WORDS = frozenset({"ok", "okay", "recebido", "confirmado", "ciente", "received", "confirmed"})


@dataclass(frozen=True)
class IncomingMessage:
    phone_number: str
    text: str


def _digits(phone_number: str | None) -> str:
    return "".join(ch for ch in phone_number or "" if ch.isdigit())


def is_confirmation(text: str) -> bool:
    return text.strip().strip(".!").lower() in CONFIRMATION_WORDS


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check the ``X-Hub-Signature-256`` header the gateway attaches to webhook calls."""
    if not signature or not signature.startswith("sha256="):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.removeprefix("sha256="))


def extract_messages(payload: dict[str, Any]) -> list[IncomingMessage]:
    """Text messages carried by a Cloud API webhook notification. Other kinds are skipped."""
    messages = []
    for entry in payload.get("entry") or []:
        for change in entry.get("changes") or []:
            value = change.get("value") or {}
            for message in value.get("messages") or []:
                if message.get("type") != "text":
                    continue
                sender = message.get("from")
                body = (message.get("text") or {}).get("body")
                if sender and body:
                    messages.append(IncomingMessage(sender, body))
    return messages


async def find_user_by_phone(db: AsyncSession, phone_number: str) -> User | None:
    """Active user whose stored number matches ``phone_number`` ignoring formatting."""
    wanted = _digits(phone_number)
    if not wanted:
        return None
    result = await db.execute(
        select(User).where(User.is_active.is_(True), User.phone_number.is_not(None))
    )
    for user in result.scalars().all():
        if _digits(user.phone_number) == wanted:
            return user
    return None


async def _latest_pending_alert(db: AsyncSession, user_id: uuid.UUID) -> int | None:
    result = await db.execute(
        select(NotificationLog.alert_id)
        .join(Alert, Alert.id == NotificationLog.alert_id)
        .where(
            NotificationLog.user_id == user_id,
            NotificationLog.status == "success",
            Alert.status == "active",
        )
        .order_by(NotificationLog.created_at.desc(), NotificationLog.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def process_incoming_message(
    db: AsyncSession,
    lifecycle: AlertLifecycleManager,
    notifier: WhatsAppNotifier,
    message: IncomingMessage,
) -> int | None:
    """
    Apply one operator reply.

    Returns:
        The id of the acknowledged alert, or None when the message was not a
        confirmation, came from an unknown number or had nothing to confirm.
    """
    if not is_confirmation(message.text):
        logger.debug("Ignoring WhatsApp message from %s: not a confirmation", message.phone_number)
        return None

    user = await find_user_by_phone(db, message.phone_number)
    if user is None:
        logger.warning("Confirmation from unknown number %s ignored", message.phone_number)
        return None
    user_id, username, recipient = user.id, user.username, user.phone_number

    alert_id = await _latest_pending_alert(db, user_id)
    if alert_id is not None:
        try:
            await lifecycle.acknowledge(db, alert_id, user_id)
        except AlertNotFoundError:
            # acknowledged by someone else in the meantime
            alert_id = None

    if alert_id is None:
        logger.info("Confirmation from %s matched no active alert", username)
        await notifier.send_reply_acknowledgement(message.phone_number, None)
        return None

    db.add(NotificationLog(
        alert_id=alert_id,
        user_id=user_id,
        recipient=recipient,
        channel="whatsapp",
        status="confirmed",
        created_at=utcnow(),
    ))
    await db.commit()

    logger.info("Alert #%d acknowledged by %s via WhatsApp reply", alert_id, username)
    await notifier.send_reply_acknowledgement(message.phone_number, alert_id)
    return alert_id
