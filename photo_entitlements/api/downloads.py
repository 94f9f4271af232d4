"""Download and entitlement endpoints.

Implements:
- GET /api/download?session_id=...&product_id=... - Serve a purchased item once
- GET /api/entitlements?session_id=...              - Download state per product
- GET /api/purchases/{session_id}                   - Whether a purchase is recorded

sessionId and productId are accepted as query parameter spellings too.
"""

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from photo_entitlements.config import get_config
from photo_entitlements.logging_config import get_logger, short_id
from photo_entitlements.models import EntitlementSummary, ErrorResponse, PurchaseStatusResponse
from photo_entitlements.repositories.entitlement_store import EntitlementStoreError
from photo_entitlements.services.download_fulfillment import (
    AlreadyConsumedError,
    DenialReason,
    DownloadDeniedError,
    DownloadFulfillmentService,
    FulfillmentError,
    get_download_service,
)
from photo_entitlements.services.entitlement_query import EntitlementQuery, get_entitlement_query
from photo_entitlements.services.purchase_recorder import validate_session_id

logger = get_logger(__name__)
router = APIRouter(tags=["Downloads"], prefix="/api")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "X-Content-Type-Options": "nosniff",
}

DENIAL_STATUS = {
    DenialReason.UNKNOWN_SESSION: 404,
    DenialReason.UNKNOWN_PRODUCT: 404,
    DenialReason.ALREADY_CONSUMED: 403,
}


def _error(status_code: int, error: str, message: str, retryable: bool = False, **extra) -> HTTPException:
    detail = ErrorResponse(error=error, message=message, retryable=retryable).model_dump()
    detail.update(extra)
    return HTTPException(status_code=status_code, detail=detail)


def _checked_session_id(session_id: Optional[str]) -> str:
    try:
        return validate_session_id(session_id, get_config().notifications.session_id_prefix)
    except ValueError as e:
        raise _error(400, "invalid_session_id", str(e))


def content_disposition(file_name: str) -> str:
    """Attachment header value, RFC 5987 encoded when the name is not ASCII."""
    quoted = quote(file_name)
    if quoted != file_name:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{file_name}"'


@router.get("/download", summary="Download purchased item")
async def download_item(
    session_id: Optional[str] = Query(None, description="Payment session identifier"),
    product_id: Optional[str] = Query(None, description="Purchased product"),
    session_id_camel: Optional[str] = Query(None, alias="sessionId", include_in_schema=False),
    product_id_camel: Optional[str] = Query(None, alias="productId", include_in_schema=False),
    service: DownloadFulfillmentService = Depends(get_download_service),
) -> Response:
    """Serve a purchased product, consuming its entitlement.

    One purchased copy is served as the original file; several copies are
    served as a store-only zip with one entry per copy.

    Raises:
        400: Missing or malformed parameters
        403: Entitlement already consumed
        404: Unknown session or product not purchased
        500: Asset could not be served
        503: Entitlement store unavailable
    """
    session_id = session_id or session_id_camel
    product_id = product_id or product_id_camel
    if not session_id or not product_id:
        raise _error(400, "missing_parameters", "Both session_id and product_id are required")
    session_id = _checked_session_id(session_id)

    logger.info("download_requested", session_id=short_id(session_id), product_id=product_id)

    try:
        delivery = await run_in_threadpool(service.fulfill, session_id, product_id)
    except AlreadyConsumedError as e:
        raise _error(
            DENIAL_STATUS[e.reason],
            e.reason.value,
            str(e),
            retryable=e.retryable,
            quantityPurchased=e.quantity_purchased,
            downloaded=True,
        )
    except DownloadDeniedError as e:
        raise _error(DENIAL_STATUS[e.reason], e.reason.value, str(e), retryable=e.retryable)
    except FulfillmentError as e:
        logger.error("download_fulfillment_failed", product_id=product_id, error=str(e))
        raise _error(500, "fulfillment_failed", "The purchased file could not be served")
    except EntitlementStoreError as e:
        logger.error("download_store_failed", product_id=product_id, error=str(e), exc_info=True)
        raise _error(503, "store_unavailable", "Download could not be authorized, try again", retryable=True)

    # Always the whole body: a Range request must not spend the entitlement on a fragment
    headers = {
        **NO_CACHE_HEADERS,
        "Content-Disposition": content_disposition(delivery.file_name),
        "Content-Length": str(delivery.content_length),
    }
    return StreamingResponse(delivery.iter_bytes(), media_type=delivery.media_type, headers=headers)


@router.get(
    "/entitlements",
    response_model=list[EntitlementSummary],
    summary="List entitlements for a session",
)
async def list_entitlements(
    session_id: Optional[str] = Query(None, description="Payment session identifier"),
    session_id_camel: Optional[str] = Query(None, alias="sessionId", include_in_schema=False),
    query: EntitlementQuery = Depends(get_entitlement_query),
):
    """List purchased products with downloaded and remaining copies.

    An unknown session answers 404 with an empty array so that polling
    clients can treat it as "not recorded yet".
    """
    session_id = _checked_session_id(session_id or session_id_camel)

    try:
        entitlements = await run_in_threadpool(query.list_entitlements, session_id)
    except EntitlementStoreError as e:
        logger.error("entitlements_store_failed", error=str(e))
        raise _error(503, "store_unavailable", "Entitlements unavailable, try again", retryable=True)

    if entitlements is None:
        logger.info("entitlements_session_unknown", session_id=short_id(session_id))
        return JSONResponse(status_code=404, content=[], headers=NO_CACHE_HEADERS)

    return JSONResponse(
        content=[summary.model_dump() for summary in entitlements],
        headers=NO_CACHE_HEADERS,
    )


@router.get(
    "/purchases/{session_id}",
    response_model=PurchaseStatusResponse,
    summary="Check purchase status",
)
async def get_purchase_status(
    session_id: str = Path(..., description="Payment session identifier"),
    query: EntitlementQuery = Depends(get_entitlement_query),
) -> PurchaseStatusResponse:
    """Report whether the payment notification for a session has been recorded."""
    session_id = _checked_session_id(session_id)

    try:
        return await run_in_threadpool(query.purchase_status, session_id)
    except EntitlementStoreError as e:
        logger.error("purchase_status_store_failed", error=str(e))
        raise _error(503, "store_unavailable", "Purchase status unavailable, try again", retryable=True)
