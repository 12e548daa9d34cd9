"""
Webhook Routes

Handle incoming webhooks from Stripe.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from starlette.requests import ClientDisconnect
import structlog

from tiersync.core.errors import PayloadTooLarge, PayloadUnreadable, SyncError
from tiersync.webhooks.service import WebhookService

router = APIRouter()
logger = structlog.get_logger()


def get_webhook_service(request: Request) -> WebhookService:
    """Service installed on the application by ``create_app``."""
    return request.app.state.webhook_service


async def read_body(request: Request, limit: int) -> bytes:
    """Read the request body, refusing to buffer more than ``limit`` bytes."""
    declared = request.headers.get("content-length", "")
    if declared.isdigit() and int(declared) > limit:
        raise PayloadTooLarge(f"declared body of {declared} bytes exceeds {limit}")

    body = bytearray()
    try:
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise PayloadTooLarge(f"body exceeds {limit} bytes")
    except ClientDisconnect as e:
        raise PayloadUnreadable("client disconnected while sending body") from e

    return bytes(body)


def _http_error(exc: SyncError) -> HTTPException:
    headers = {"X-Correlation-ID": exc.correlation_id} if exc.correlation_id else None
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail(), headers=headers)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    service: WebhookService = Depends(get_webhook_service),
) -> dict:
    """Handle Stripe webhook events."""
    try:
        payload = await read_body(request, service.authenticator.max_body_bytes)
    except SyncError as e:
        service.report(e)
        logger.warning("Unreadable webhook body", error=str(e), correlation_id=e.correlation_id)
        raise _http_error(e)

    try:
        result = await service.handle_webhook_event(payload, stripe_signature)

    except SyncError as e:
        logger.warning(
            "Stripe webhook rejected",
            error=e.code,
            status=e.status_code,
            correlation_id=e.correlation_id,
        )
        raise _http_error(e)

    except Exception as e:
        correlation_id = service.reporter.capture(e)
        logger.error("Webhook processing failed", error=str(e), correlation_id=correlation_id)
        raise HTTPException(
            status_code=500,
            detail={
                "error": "internal_error",
                "message": "Webhook processing failed",
                "correlation_id": correlation_id,
            },
            headers={"X-Correlation-ID": correlation_id},
        )

    logger.info("Stripe webhook processed", **result.model_dump(mode="json"))
    return result.model_dump(mode="json")
