"""Payment notification endpoint.

Implements:
- POST /api/webhook - Record a completed checkout (idempotent)

The provider retries any non-2xx response, so only failures that a retry can
fix (store unavailable) are reported as errors. Duplicate deliveries and
malformed individual cart entries are acknowledged with 200.
"""

import hashlib
import hmac
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from photo_entitlements.config import get_config
from photo_entitlements.logging_config import bind_context, get_logger, short_id
from photo_entitlements.models import ErrorResponse, NotificationAck, PaymentCompletedNotification
from photo_entitlements.repositories.entitlement_store import EntitlementStoreError
from photo_entitlements.services.purchase_recorder import PurchaseRecorder, get_purchase_recorder

logger = get_logger(__name__)
router = APIRouter(tags=["Payments"], prefix="/api")

SIGNATURE_HEADER = "X-Signature"


def compute_signature(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of a request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, header_value: Optional[str]) -> bool:
    """Check an X-Signature header ("<hex>" or "sha256=<hex>") in constant time."""
    if not header_value:
        return False
    provided = header_value.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(provided.lower(), compute_signature(secret, body))


def _error(status_code: int, error: str, message: str, retryable: bool = False) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(error=error, message=message, retryable=retryable).model_dump(),
    )


@router.post(
    "/webhook",
    response_model=NotificationAck,
    summary="Record completed payment",
)
async def receive_payment_notification(
    request: Request,
    recorder: PurchaseRecorder = Depends(get_purchase_recorder),
) -> NotificationAck:
    """Record a "payment completed" notification.

    Returns 200 whether this call created the record or the session had
    already been recorded.

    Raises:
        400: Body is not a valid notification or the session id is malformed
        401: Signature missing or invalid (when a signing secret is configured)
        503: Entitlement store unavailable; the notification should be retried
    """
    body = await request.body()

    secret = get_config().notifications.signing_secret
    if secret and not verify_signature(secret, body, request.headers.get(SIGNATURE_HEADER)):
        logger.warning("notification_signature_invalid")
        raise _error(401, "invalid_signature", "Notification signature verification failed")

    try:
        notification = PaymentCompletedNotification.model_validate_json(body)
    except ValidationError as e:
        logger.warning("notification_invalid", errors=e.error_count())
        raise _error(400, "invalid_notification", "Notification body is not valid")

    bind_context(session_id=short_id(notification.sessionId))
    logger.info(
        "notification_received",
        cart_items=len(notification.cartItems),
        has_email=bool(notification.customerEmail),
    )

    try:
        result = await run_in_threadpool(
            recorder.record_purchase,
            notification.sessionId,
            notification.customerEmail,
            notification.cartItems,
        )
    except ValueError as e:
        logger.warning("notification_rejected", error=str(e))
        raise _error(400, "invalid_session_id", str(e))
    except EntitlementStoreError as e:
        logger.error("notification_store_failed", error=str(e), exc_info=True)
        raise _error(
            503,
            "store_unavailable",
            "Purchase could not be recorded, retry the notification",
            retryable=True,
        )

    return NotificationAck(
        received=True,
        created=result.created,
        itemsRecorded=result.items_recorded,
        itemsDropped=result.items_dropped,
    )
