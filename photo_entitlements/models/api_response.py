"""API response models for the storefront download endpoints."""

from typing import Optional

from pydantic import BaseModel, Field


class EntitlementSummary(BaseModel):
    """One entry of GET /api/entitlements."""

    productId: str = Field(..., description="Product ID")
    quantityPurchased: int = Field(..., description="Copies paid for")
    quantityDownloaded: int = Field(..., description="Copies delivered")
    remaining: int = Field(..., description="Copies still available")
    fullyConsumed: bool = Field(..., description="Whether the entitlement is spent")

    class Config:
        json_schema_extra = {
            "example": {
                "productId": "sunset-over-bay",
                "quantityPurchased": 2,
                "quantityDownloaded": 0,
                "remaining": 2,
                "fullyConsumed": False,
            }
        }


class NotificationAck(BaseModel):
    """Response to POST /api/webhook."""

    received: bool = Field(default=True, description="Notification processed")
    created: bool = Field(..., description="False when the session was already recorded")
    itemsRecorded: int = Field(..., description="Line items stored in the record")
    itemsDropped: int = Field(..., description="Malformed cart entries skipped")


class PurchaseStatusResponse(BaseModel):
    """Response for GET /api/purchases/{session_id}."""

    sessionId: str = Field(..., description="Payment session identifier")
    found: bool = Field(..., description="Whether a purchase record exists")
    storeKey: str = Field(..., description="Key of the record in the entitlement store")
    paymentStatus: Optional[str] = Field(None, description="Payment status")
    createdAt: Optional[str] = Field(None, description="Record creation time (ISO 8601)")
    itemCount: int = Field(default=0, description="Number of line items")
    totalCopies: int = Field(default=0, description="Copies purchased across all items")

    class Config:
        json_schema_extra = {
            "example": {
                "sessionId": "cs_test_a1b2c3d4e5f6",
                "found": True,
                "storeKey": "purchase:cs_test_a1b2c3d4e5f6",
                "paymentStatus": "paid",
                "createdAt": "2026-10-19T12:00:00+00:00",
                "itemCount": 1,
                "totalCopies": 2,
            }
        }


class ErrorResponse(BaseModel):
    """Error body returned for denials and failures."""

    error: str = Field(..., description="Error kind")
    message: str = Field(..., description="Human-readable message")
    retryable: bool = Field(default=False, description="Whether retrying may succeed")
