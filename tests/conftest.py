"""Shared fixtures.

Every test runs against a temporary store.yaml (in-memory store, temporary
assets directory) and starts with fresh module-level singletons.
"""

import os

import pytest
import yaml

from photo_entitlements.config import reset_config
from photo_entitlements.logging_config import configure_logging
from photo_entitlements.models.purchase import LineItem, PurchaseRecord
from photo_entitlements.repositories.entitlement_store import (
    InMemoryEntitlementStore,
    reset_entitlement_store,
)
from photo_entitlements.services.download_fulfillment import reset_download_service
from photo_entitlements.services.entitlement_query import reset_entitlement_query
from photo_entitlements.services.purchase_recorder import reset_purchase_recorder

# Not a real JPEG; only the bytes matter
SUNSET_BYTES = b"\xff\xd8\xff\xe0" + bytes(range(256)) * 40
HARBOR_BYTES = b"\xff\xd8\xff\xe1" + b"harbor" * 500

SESSION_ID = "cs_test_a1b2c3d4e5f6g7h8"


def _reset_singletons() -> None:
    reset_purchase_recorder()
    reset_download_service()
    reset_entitlement_query()
    reset_entitlement_store()
    reset_config()


@pytest.fixture(scope="session", autouse=True)
def setup_logging():
    """Route structlog through stdlib logging so caplog sees events."""
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_format=os.getenv("LOG_FORMAT", "json").lower() == "json",
    )
    yield


@pytest.fixture(autouse=True)
def fresh_singletons():
    """Drop cached config, store and services around every test."""
    _reset_singletons()
    yield
    _reset_singletons()


@pytest.fixture
def assets_dir(tmp_path):
    """Assets root holding two photos."""
    root = tmp_path / "assets"
    (root / "photos").mkdir(parents=True)
    (root / "photos" / "sunset-over-bay.jpg").write_bytes(SUNSET_BYTES)
    (root / "photos" / "harbor-lights.jpg").write_bytes(HARBOR_BYTES)
    return root


@pytest.fixture(autouse=True)
def config_file(tmp_path, assets_dir, monkeypatch):
    """Temporary store.yaml selected through CONFIG_PATH."""
    for var in ("DATABASE_URL", "NOTIFICATION_SIGNING_SECRET", "ASSETS_ROOT"):
        monkeypatch.delenv(var, raising=False)

    path = tmp_path / "store.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "storage": {"backend": "memory"},
                "downloads": {
                    "assets_root": str(assets_dir),
                    "chunk_size": 1024,
                    "archive_name_max_length": 100,
                },
                "notifications": {"signing_secret": None, "session_id_prefix": "cs_"},
            }
        ),
        encoding="utf-8",
    )
    monkeypatch.setenv("CONFIG_PATH", str(path))
    return path


@pytest.fixture
def memory_store():
    """Fresh in-memory entitlement store."""
    store = InMemoryEntitlementStore()
    yield store
    store.clear()


def _make_item(product_id="sunset-over-bay", quantity=1, downloaded=0, **overrides) -> LineItem:
    fields = {
        "product_id": product_id,
        "title": "Sunset Over the Bay",
        "file_name": f"{product_id}.jpg",
        "asset_path": f"photos/{product_id}.jpg",
        "quantity_purchased": quantity,
        "quantity_downloaded": downloaded,
    }
    fields.update(overrides)
    return LineItem(**fields)


def _make_record(session_id=SESSION_ID, items=None) -> PurchaseRecord:
    if items is None:
        items = [_make_item()]
    return PurchaseRecord(session_id=session_id, customer_email="a@example.com", items=items)


@pytest.fixture
def cart_items():
    """Raw cart entries as sent by the checkout flow."""
    return [
        {
            "productId": "sunset-over-bay",
            "title": "Sunset Over the Bay",
            "fileName": "sunset-over-bay.jpg",
            "assetPath": "photos/sunset-over-bay.jpg",
            "quantity": 1,
        },
        {
            "productId": "harbor-lights",
            "title": "Harbor Lights",
            "fileName": "harbor-lights.jpg",
            "assetPath": "photos/harbor-lights.jpg",
            "quantity": 3,
        },
    ]


@pytest.fixture
def session_id():
    return SESSION_ID


@pytest.fixture
def make_item():
    """Factory for line items (defaults: one copy of sunset-over-bay)."""
    return _make_item


@pytest.fixture
def make_record():
    """Factory for purchase records (defaults: SESSION_ID with one line item)."""
    return _make_record
