"""Entitlement Query - read-only view of what a session may still download.

Clients poll these queries right after checkout, often before the payment
notification has been processed, so an unknown session is a normal result
(None / found=False) rather than an error. Nothing here writes to the store.
"""

from typing import Optional

from photo_entitlements.models.api_response import EntitlementSummary, PurchaseStatusResponse
from photo_entitlements.models.purchase import LineItem
from photo_entitlements.repositories.entitlement_store import (
    EntitlementStore,
    get_entitlement_store,
    purchase_key,
)


def summarize_item(item: LineItem) -> EntitlementSummary:
    return EntitlementSummary(
        productId=item.product_id,
        quantityPurchased=item.quantity_purchased,
        quantityDownloaded=item.quantity_downloaded,
        remaining=item.remaining,
        fullyConsumed=item.fully_consumed,
    )


class EntitlementQuery:
    """Read-side helper over the entitlement store."""

    def __init__(self, entitlement_store: Optional[EntitlementStore] = None):
        self._store = entitlement_store if entitlement_store is not None else get_entitlement_store()

    def list_entitlements(self, session_id: str) -> Optional[list[EntitlementSummary]]:
        """List download state per purchased product.

        Args:
            session_id: Payment session identifier

        Returns:
            Summaries in purchase order, or None if the session is unknown
        """
        record = self._store.find(session_id)
        if record is None:
            return None
        return [summarize_item(item) for item in record.items]

    def purchase_status(self, session_id: str) -> PurchaseStatusResponse:
        """Report whether a purchase has been recorded for a session."""
        record = self._store.find(session_id)
        if record is None:
            return PurchaseStatusResponse(
                sessionId=session_id,
                found=False,
                storeKey=purchase_key(session_id),
            )
        return PurchaseStatusResponse(
            sessionId=session_id,
            found=True,
            storeKey=purchase_key(session_id),
            paymentStatus=record.payment_status.value,
            createdAt=record.created_at.isoformat(),
            itemCount=len(record.items),
            totalCopies=record.total_copies,
        )


# Global instance
_entitlement_query: Optional[EntitlementQuery] = None


def get_entitlement_query() -> EntitlementQuery:
    """Get global entitlement query instance."""
    global _entitlement_query
    if _entitlement_query is None:
        _entitlement_query = EntitlementQuery()
    return _entitlement_query


def reset_entitlement_query() -> None:
    """Reset global entitlement query instance (useful for testing)."""
    global _entitlement_query
    _entitlement_query = None
