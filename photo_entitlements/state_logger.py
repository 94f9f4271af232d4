"""Audit logging for purchase and entitlement state changes.

Every transition of a purchase record is logged here so that support can
reconstruct what a customer was granted and when it was spent.
"""

from typing import Any, Optional

from photo_entitlements.logging_config import get_logger, short_id

logger = get_logger(__name__)


def log_purchase_recorded(
    session_id: str,
    items_recorded: int,
    items_dropped: int,
    total_copies: int,
    **extra_context: Any,
) -> None:
    """Log creation of a purchase record.

    Args:
        session_id: Payment session identifier
        items_recorded: Line items stored
        items_dropped: Malformed cart entries skipped
        total_copies: Copies purchased across all items
        **extra_context: Additional context
    """
    logger.info(
        "purchase_recorded",
        session_id=short_id(session_id),
        items_recorded=items_recorded,
        items_dropped=items_dropped,
        total_copies=total_copies,
        **extra_context,
    )


def log_duplicate_notification(session_id: str, **extra_context: Any) -> None:
    """Log a redelivered notification for an already recorded session."""
    logger.info(
        "purchase_already_recorded",
        session_id=short_id(session_id),
        **extra_context,
    )


def log_line_item_dropped(
    session_id: str,
    index: int,
    reason: str,
    product_id: Optional[str] = None,
) -> None:
    """Log a cart entry that was skipped because it is malformed.

    Args:
        session_id: Payment session identifier
        index: Position of the entry in the notification's cart
        reason: Validation failure summary
        product_id: Product ID if one was present
    """
    logger.warning(
        "line_item_dropped",
        session_id=short_id(session_id),
        index=index,
        product_id=product_id,
        reason=reason,
    )


def log_entitlement_consumed(
    session_id: str,
    product_id: str,
    quantity: int,
    **extra_context: Any,
) -> None:
    """Log the 0 -> quantity_purchased transition of a line item."""
    logger.info(
        "entitlement_consumed",
        session_id=short_id(session_id),
        product_id=product_id,
        old_downloaded=0,
        new_downloaded=quantity,
        **extra_context,
    )


def log_download_denied(
    session_id: str,
    product_id: str,
    reason: str,
    **extra_context: Any,
) -> None:
    """Log a refused download request."""
    logger.info(
        "download_denied",
        session_id=short_id(session_id),
        product_id=product_id,
        reason=reason,
        **extra_context,
    )
