import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sewer_monitor.config import settings
from sewer_monitor.dependencies import get_db, get_lifecycle, get_notifier, require_role
from sewer_monitor.models import User
from sewer_monitor.services.lifecycle import AlertLifecycleManager
from sewer_monitor.services.reply_handler import (
    extract_messages,
    process_incoming_message,
    verify_signature,
)
from sewer_monitor.services.whatsapp_notifier import WhatsAppNotifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["notifications"])


class TestMessageRequest(BaseModel):
    phone_number: str = Field(min_length=8, max_length=32)


@router.get("/status")
async def notification_status(
    user: User = Depends(require_role("admin", "operator")),
    notifier: WhatsAppNotifier = Depends(get_notifier),
):
    return notifier.service_status()


@router.post("/test")
async def send_test_notification(
    payload: TestMessageRequest,
    user: User = Depends(require_role("admin")),
    notifier: WhatsAppNotifier = Depends(get_notifier),
):
    """Send a test WhatsApp message to verify gateway configuration."""
    result = await notifier.send_test_message(payload.phone_number)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to send test message: {result.error}",
        )
    logger.info("Test notification sent to %s by %s", payload.phone_number, user.username)
    return {"status": "ok", "simulated": notifier.simulated}


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: str = Query("", alias="hub.mode"),
    token: str = Query("", alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
):
    """Subscription handshake: echo the challenge when the verify token matches."""
    if mode != "subscribe" or not settings.WHATSAPP_VERIFY_TOKEN or token != settings.WHATSAPP_VERIFY_TOKEN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Webhook verification failed")
    return challenge


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    lifecycle: AlertLifecycleManager = Depends(get_lifecycle),
    notifier: WhatsAppNotifier = Depends(get_notifier),
):
    """Inbound messages from the gateway. Confirmation replies acknowledge alerts."""
    body = await request.body()
    if settings.WHATSAPP_APP_SECRET and not verify_signature(
        body, request.headers.get("X-Hub-Signature-256"), settings.WHATSAPP_APP_SECRET
    ):
        logger.warning("Rejected WhatsApp webhook call with a bad signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body is not valid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Body must be a JSON object")

    messages = extract_messages(payload)
    acknowledged = []
    for message in messages:
        alert_id = await process_incoming_message(db, lifecycle, notifier, message)
        if alert_id is not None:
            acknowledged.append(alert_id)

    return {"status": "ok", "received": len(messages), "acknowledged": acknowledged}
