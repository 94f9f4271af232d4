"""Purchase Recorder - turns "payment completed" notifications into purchase records.

Notifications are delivered at least once, so recording is idempotent: the
first notification for a session creates the record and every redelivery is
acknowledged without touching it. Malformed cart entries are dropped with a
warning instead of failing the notification, because a failed notification
is retried by the provider and would never succeed.
"""

from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from photo_entitlements.logging_config import get_logger, short_id
from photo_entitlements.models.notification import CartItem
from photo_entitlements.models.purchase import LineItem, PaymentStatus, PurchaseRecord
from photo_entitlements.repositories.entitlement_store import (
    CreateResult,
    EntitlementStore,
    get_entitlement_store,
)
from photo_entitlements.state_logger import (
    log_duplicate_notification,
    log_line_item_dropped,
    log_purchase_recorded,
)
from photo_entitlements.utils.paths import default_file_name

logger = get_logger(__name__)


class RecordingResult(BaseModel):
    """Outcome of recording one notification."""

    session_id: str = Field(..., description="Payment session identifier")
    created: bool = Field(..., description="False if the session was already recorded")
    items_recorded: int = Field(..., description="Line items in the stored record")
    items_dropped: int = Field(default=0, description="Malformed cart entries skipped")


def validate_session_id(session_id: Optional[str], prefix: str = "") -> str:
    """Check a session id before it is used as a store key.

    Args:
        session_id: Session id from a request
        prefix: Required prefix, empty to accept any non-empty id

    Returns:
        The session id with surrounding whitespace removed

    Raises:
        ValueError: If the session id is empty or lacks the prefix
    """
    cleaned = (session_id or "").strip()
    if not cleaned:
        raise ValueError("session_id is required")
    if prefix and not cleaned.startswith(prefix):
        raise ValueError(f"Invalid session ID format: expected prefix '{prefix}'")
    return cleaned


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail.get("loc", ()))
        parts.append(f"{location}: {detail.get('msg')}" if location else str(detail.get("msg")))
    return "; ".join(parts)


class PurchaseRecorder:
    """Records completed purchases in the entitlement store.

    Synchronous and single-pass: one notification in, at most one store
    write out. Retrying is left to the notification transport.
    """

    def __init__(
        self,
        entitlement_store: Optional[EntitlementStore] = None,
        session_id_prefix: str = "",
    ):
        """Initialize purchase recorder.

        Args:
            entitlement_store: Store instance (uses global if not provided)
            session_id_prefix: Required session id prefix, empty disables the check
        """
        self._store = entitlement_store if entitlement_store is not None else get_entitlement_store()
        self._session_id_prefix = session_id_prefix

    def build_line_items(
        self, session_id: str, raw_cart_items: Iterable[Any]
    ) -> tuple[list[LineItem], int]:
        """Validate raw cart entries and build line items.

        Entries missing productId or assetPath, or with quantity < 1, are
        dropped. Entries repeating a productId are merged into the first one
        by adding their quantities.

        Args:
            session_id: Session the cart belongs to (for logging)
            raw_cart_items: Cart entries as received

        Returns:
            Tuple of (line items in cart order, number of dropped entries)
        """
        items: dict[str, LineItem] = {}
        dropped = 0

        for index, raw in enumerate(raw_cart_items):
            if not isinstance(raw, Mapping):
                dropped += 1
                log_line_item_dropped(session_id, index, reason="cart entry is not an object")
                continue

            try:
                cart_item = CartItem.model_validate(raw)
            except ValidationError as e:
                dropped += 1
                product_id = raw.get("productId", raw.get("product_id"))
                log_line_item_dropped(
                    session_id,
                    index,
                    reason=_summarize_validation_error(e),
                    product_id=str(product_id) if product_id is not None else None,
                )
                continue

            existing = items.get(cart_item.product_id)
            if existing is not None:
                existing.quantity_purchased += cart_item.quantity
                logger.info(
                    "line_items_merged",
                    session_id=short_id(session_id),
                    product_id=cart_item.product_id,
                    quantity_purchased=existing.quantity_purchased,
                )
                continue

            file_name = cart_item.file_name or default_file_name(cart_item.asset_path)
            items[cart_item.product_id] = LineItem(
                product_id=cart_item.product_id,
                title=cart_item.title or file_name,
                file_name=file_name,
                asset_path=cart_item.asset_path,
                quantity_purchased=cart_item.quantity,
                quantity_downloaded=0,
            )

        return list(items.values()), dropped

    def record_purchase(
        self,
        session_id: str,
        customer_email: Optional[str],
        raw_cart_items: Iterable[Any],
    ) -> RecordingResult:
        """Record a completed purchase exactly once per session.

        Args:
            session_id: Payment session identifier
            customer_email: Customer email (optional, informational)
            raw_cart_items: Cart entries with productId, title, fileName, assetPath, quantity

        Returns:
            RecordingResult; created is False when the session already had a record

        Raises:
            ValueError: If session_id is empty or malformed
            EntitlementStoreError: If the record could not be written
        """
        session_id = validate_session_id(session_id, self._session_id_prefix)
        items, dropped = self.build_line_items(session_id, raw_cart_items)

        if not items:
            logger.warning(
                "purchase_without_items",
                session_id=short_id(session_id),
                items_dropped=dropped,
                message="Recording purchase with no valid line items",
            )

        record = PurchaseRecord(
            session_id=session_id,
            customer_email=customer_email or None,
            payment_status=PaymentStatus.PAID,
            items=items,
        )

        result = self._store.create_if_absent(record)
        if result == CreateResult.ALREADY_EXISTS:
            existing = self._store.find(session_id)
            log_duplicate_notification(session_id)
            return RecordingResult(
                session_id=session_id,
                created=False,
                items_recorded=len(existing.items) if existing is not None else len(items),
                items_dropped=dropped,
            )

        log_purchase_recorded(
            session_id,
            items_recorded=len(items),
            items_dropped=dropped,
            total_copies=record.total_copies,
        )
        return RecordingResult(
            session_id=session_id,
            created=True,
            items_recorded=len(items),
            items_dropped=dropped,
        )


# Global instance
_purchase_recorder: Optional[PurchaseRecorder] = None


def get_purchase_recorder() -> PurchaseRecorder:
    """Get global purchase recorder instance.

    Returns:
        PurchaseRecorder singleton instance
    """
    global _purchase_recorder
    if _purchase_recorder is None:
        from photo_entitlements.config import get_config

        _purchase_recorder = PurchaseRecorder(
            session_id_prefix=get_config().notifications.session_id_prefix,
        )
    return _purchase_recorder


def reset_purchase_recorder() -> None:
    """Reset global purchase recorder instance (useful for testing)."""
    global _purchase_recorder
    _purchase_recorder = None
