"""Inbound Twilio WhatsApp webhook."""

import logging

from fastapi import APIRouter, Depends, Request, Response

from ..config import Settings, get_settings
from ..database import get_session
from ..dependencies import get_services
from ..metrics import WEBHOOK_IGNORED
from ..proof_intake import receive_worker_media
from ..whatsapp_notifier import is_valid_twilio_signature

logger = logging.getLogger("grievance.routes.webhooks")

router = APIRouter(tags=["webhooks"])

EMPTY_TWIML = "<Response></Response>"


@router.post("/whatsapp/webhook")
async def whatsapp_webhook(
    request: Request,
    session=Depends(get_session),
    services=Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Always 200 with empty TwiML so Twilio never retries."""
    try:
        form = await request.form()
        # Twilio signs the URL it was configured with, which differs from
        # request.url behind a proxy.
        signed_url = settings.twilio_webhook_url or str(request.url)
        if not is_valid_twilio_signature(
            settings.twilio_auth_token,
            signed_url,
            list(form.multi_items()),
            request.headers.get("X-Twilio-Signature"),
        ):
            WEBHOOK_IGNORED.labels(reason="bad_signature").inc()
            logger.warning("Dropping WhatsApp webhook with missing or invalid Twilio signature")
            return Response(content=EMPTY_TWIML, media_type="application/xml")

        sender = form.get("From")
        try:
            num_media = int(form.get("NumMedia") or 0)
        except ValueError:
            num_media = 0
        media_url = form.get("MediaUrl0") if num_media > 0 else None
        outcome = await receive_worker_media(
            session,
            services,
            sender=sender,
            media_url=media_url,
            content_type=form.get("MediaContentType0"),
            caption=form.get("Body"),
        )
        logger.info("WhatsApp webhook from %s handled: %s", sender, outcome)
    except Exception:
        logger.exception("WhatsApp webhook processing failed")
    return Response(content=EMPTY_TWIML, media_type="application/xml")
