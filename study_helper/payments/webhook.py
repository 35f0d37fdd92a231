"""Paystack webhook: activates Pro after a successful charge."""
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from aiohttp import web
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac

from study_helper.config import settings
from study_helper.db.queries import upsert_subscription
from study_helper.exceptions import WebhookSignatureError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"
PRO_PLAN_ID = "pro"


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> None:
    """Check the hex HMAC-SHA512 of the raw body, in constant time.

    Raises:
        WebhookSignatureError: Missing secret, missing or wrong signature
    """
    if not secret:
        raise WebhookSignatureError("PAYSTACK_SECRET_KEY is not set")
    if not signature:
        raise WebhookSignatureError("Missing signature")
    try:
        expected = bytes.fromhex(signature)
    except ValueError:
        raise WebhookSignatureError("Signature is not hex")

    mac = hmac.HMAC(secret.encode(), hashes.SHA512())
    mac.update(body)
    try:
        mac.verify(expected)
    except InvalidSignature:
        raise WebhookSignatureError("Invalid signature")


async def handle_event(event: dict) -> web.Response:
    """Apply one verified webhook event."""
    event_type = event.get("event")
    logger.info("Webhook event: %s", event_type)

    if event_type != "charge.success":
        return web.json_response({"received": True})

    data = event.get("data") or {}
    metadata = data.get("metadata") or {}
    raw_user_id = metadata.get("user_id")
    try:
        user_id = int(raw_user_id)
    except (TypeError, ValueError):
        logger.error("No user_id in metadata: %r", raw_user_id)
        return web.json_response({"error": "Missing user_id"}, status=400)

    period_end = datetime.now(timezone.utc) + timedelta(days=settings.SUBSCRIPTION_DAYS)
    await upsert_subscription(user_id, "active", PRO_PLAN_ID, period_end.isoformat())
    logger.info("Subscription activated for user: %d", user_id)
    return web.json_response({"received": True})


async def paystack_webhook(request: web.Request) -> web.Response:
    body = await request.read()
    try:
        verify_signature(body, request.headers.get(SIGNATURE_HEADER), settings.PAYSTACK_SECRET_KEY)
    except WebhookSignatureError as e:
        logger.error("Rejected webhook: %s", e)
        return web.json_response({"error": "Invalid signature"}, status=401)

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        return web.json_response({"error": "Invalid JSON"}, status=400)
    if not isinstance(event, dict):
        return web.json_response({"error": "Invalid JSON"}, status=400)

    try:
        return await handle_event(event)
    except Exception as e:
        logger.exception("Webhook processing failed")
        return web.json_response({"error": str(e)}, status=500)


def create_webhook_app() -> web.Application:
    app = web.Application()
    app.router.add_post(settings.WEBHOOK_PATH, paystack_webhook)
    return app


async def start_webhook_server() -> web.AppRunner:
    """Serve the webhook app next to bot polling. Caller must clean up the runner."""
    runner = web.AppRunner(create_webhook_app())
    await runner.setup()
    site = web.TCPSite(runner, settings.WEBHOOK_HOST, settings.WEBHOOK_PORT)
    await site.start()
    logger.info(
        "Payment webhook listening on %s:%d%s",
        settings.WEBHOOK_HOST, settings.WEBHOOK_PORT, settings.WEBHOOK_PATH,
    )
    return runner
