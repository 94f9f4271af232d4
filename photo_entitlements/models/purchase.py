"""Purchase models - persisted purchase records and their line items.

A PurchaseRecord is written once per completed checkout session. The only
mutable state afterwards is each LineItem's quantity_downloaded, which moves
from 0 to quantity_purchased in a single step when the item is fulfilled.

Records serialize with camelCase keys (sessionId, quantityPurchased, ...).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class PaymentStatus(str, Enum):
    """Payment status of a recorded purchase.

    Only completed payments are ever persisted.
    """

    PAID = "paid"


class LineItem(BaseModel):
    """One purchased product within a purchase."""

    product_id: str = Field(..., min_length=1, description="Digital asset identifier")
    title: str = Field(..., description="Display title")
    file_name: str = Field(..., description="Original file name of the asset")
    asset_path: str = Field(..., min_length=1, description="Storage location relative to the assets root")
    quantity_purchased: int = Field(..., ge=1, description="Number of copies paid for")
    quantity_downloaded: int = Field(default=0, ge=0, description="Number of copies delivered")

    @model_validator(mode="after")
    def _check_download_bound(self) -> "LineItem":
        if self.quantity_downloaded > self.quantity_purchased:
            raise ValueError(
                f"quantity_downloaded ({self.quantity_downloaded}) exceeds "
                f"quantity_purchased ({self.quantity_purchased})"
            )
        return self

    @property
    def remaining(self) -> int:
        """Copies still available for download."""
        return self.quantity_purchased - self.quantity_downloaded

    @property
    def fully_consumed(self) -> bool:
        return self.quantity_downloaded >= self.quantity_purchased

    def mark_fully_downloaded(self) -> None:
        """Spend the whole entitlement at once."""
        self.quantity_downloaded = self.quantity_purchased

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "productId": "sunset-over-bay",
                "title": "Sunset Over the Bay",
                "fileName": "sunset-over-bay.jpg",
                "assetPath": "photos/sunset-over-bay.jpg",
                "quantityPurchased": 2,
                "quantityDownloaded": 0,
            }
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PurchaseRecord(BaseModel):
    """Persisted record of one completed checkout session."""

    session_id: str = Field(..., min_length=1, description="Payment session identifier")
    customer_email: Optional[str] = Field(None, description="Customer email (informational)")
    payment_status: PaymentStatus = Field(default=PaymentStatus.PAID, description="Payment status")
    created_at: datetime = Field(default_factory=_utcnow, description="Creation time (UTC)")
    items: list[LineItem] = Field(default_factory=list, description="Purchased line items")

    @field_validator("items")
    @classmethod
    def _check_unique_products(cls, items: list[LineItem]) -> list[LineItem]:
        seen: set[str] = set()
        for item in items:
            if item.product_id in seen:
                raise ValueError(f"Duplicate product_id in purchase: {item.product_id}")
            seen.add(item.product_id)
        return items

    def find_item(self, product_id: str) -> Optional[LineItem]:
        """Find a line item by product id (returns None if not purchased)."""
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def total_copies(self) -> int:
        return sum(item.quantity_purchased for item in self.items)

    def to_json(self) -> str:
        """Serialize to the persisted JSON representation."""
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str) -> "PurchaseRecord":
        """Deserialize from the persisted JSON representation."""
        return cls.model_validate_json(raw)

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "sessionId": "cs_test_a1b2c3d4e5f6",
                "customerEmail": "a@example.com",
                "paymentStatus": "paid",
                "createdAt": "2026-10-19T12:00:00Z",
                "items": [
                    {
                        "productId": "sunset-over-bay",
                        "title": "Sunset Over the Bay",
                        "fileName": "sunset-over-bay.jpg",
                        "assetPath": "photos/sunset-over-bay.jpg",
                        "quantityPurchased": 2,
                        "quantityDownloaded": 0,
                    }
                ],
            }
        }
