"""Inbound "payment completed" notification models."""

from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel


class CartItem(BaseModel):
    """One cart entry as supplied by the checkout flow.

    Used to validate each raw cart entry on its own so that a malformed
    entry can be dropped without rejecting the whole notification.
    """

    product_id: str = Field(..., min_length=1, description="Digital asset identifier")
    asset_path: str = Field(..., min_length=1, description="Storage location of the asset")
    quantity: int = Field(..., ge=1, description="Number of copies paid for")
    title: Optional[str] = Field(None, description="Display title")
    file_name: Optional[str] = Field(None, description="File name (defaults to asset basename)")

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        str_strip_whitespace = True


class PaymentCompletedNotification(BaseModel):
    """Body of POST /api/webhook.

    cartItems is kept as raw JSON values. Each entry is validated on its own
    by the purchase recorder, which drops entries that are not objects.
    """

    sessionId: str = Field(..., description="Payment session identifier")
    customerEmail: Optional[str] = Field(None, description="Customer email address")
    cartItems: list[Any] = Field(default_factory=list, description="Raw cart entries")

    class Config:
        json_schema_extra = {
            "example": {
                "sessionId": "cs_test_a1b2c3d4e5f6",
                "customerEmail": "a@example.com",
                "cartItems": [
                    {
                        "productId": "sunset-over-bay",
                        "title": "Sunset Over the Bay",
                        "fileName": "sunset-over-bay.jpg",
                        "assetPath": "photos/sunset-over-bay.jpg",
                        "quantity": 2,
                    }
                ],
            }
        }
