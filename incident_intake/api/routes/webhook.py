"""
WhatsApp Cloud API webhook.

GET  /webhooks/whatsapp  subscription handshake (hub.challenge)
POST /webhooks/whatsapp  inbound messages and delivery statuses
"""

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from incident_intake.api.deps import get_ingestion_service
from incident_intake.core.config import settings
from incident_intake.services.ingestion import IngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/whatsapp", tags=["whatsapp-webhook"])


@router.get("")
@router.get("/")
async def verify_webhook(request: Request):
    """
    Subscription handshake.

    Meta sends hub.mode, hub.verify_token and hub.challenge; the challenge
    is echoed back when the token matches.
    """
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token") or ""
    challenge = request.query_params.get("hub.challenge") or ""

    expected = settings.WHATSAPP_VERIFY_TOKEN
    if mode == "subscribe" and expected and hmac.compare_digest(token, expected):
        logger.info("[Webhook] Verification succeeded")
        return PlainTextResponse(challenge)

    logger.warning(f"[Webhook] Verification failed: mode={mode}")
    return JSONResponse({"error": "Forbidden"}, status_code=403)


@router.post("")
@router.post("/")
async def receive_webhook(
    request: Request,
    ingestion: IngestionService = Depends(get_ingestion_service),
):
    """
    Inbound events.

    Per-message failures are logged and do not change the response, so Meta
    does not redeliver the whole batch.
    """
    body = await request.body()
    if not _valid_signature(request, body):
        logger.warning("[Webhook] Invalid signature")
        return JSONResponse({"error": "Invalid signature"}, status_code=403)

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.error(f"[Webhook] Invalid JSON: {e}")
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=500)

    if not isinstance(payload, dict):
        logger.error("[Webhook] Payload is not a JSON object")
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=500)

    if payload.get("object") != "whatsapp_business_account":
        logger.info(f"[Webhook] Unexpected object {payload.get('object')!r}, processing entries anyway")

    await ingestion.ingest(payload)
    return {"success": True}


def _valid_signature(request: Request, body: bytes) -> bool:
    """
    Check X-Hub-Signature-256 (HMAC SHA256 of the raw body).

    Returns:
        True if valid, or if WHATSAPP_APP_SECRET is not configured
    """
    app_secret = settings.WHATSAPP_APP_SECRET
    if not app_secret:
        return True

    signature_header = request.headers.get("X-Hub-Signature-256", "")
    if not signature_header.startswith("sha256="):
        return False

    computed = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, signature_header[7:])
