"""Tests for PurchaseRecorder - idempotent purchase recording."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from photo_entitlements.services.purchase_recorder import (
    PurchaseRecorder,
    get_purchase_recorder,
    validate_session_id,
)


def logged_events(caplog, event: str) -> list[logging.LogRecord]:
    return [record for record in caplog.records if event in record.getMessage()]


@pytest.fixture
def recorder(memory_store):
    return PurchaseRecorder(entitlement_store=memory_store, session_id_prefix="cs_")


class TestRecordPurchase:
    """Test creation of purchase records from notifications."""

    def test_records_new_purchase(self, recorder, memory_store, session_id, cart_items):
        result = recorder.record_purchase(session_id, "a@example.com", cart_items)

        assert result.created is True
        assert result.items_recorded == 2
        assert result.items_dropped == 0

        record = memory_store.get(session_id)
        assert record.customer_email == "a@example.com"
        assert record.payment_status.value == "paid"
        assert [item.product_id for item in record.items] == ["sunset-over-bay", "harbor-lights"]
        assert all(item.quantity_downloaded == 0 for item in record.items)
        assert record.find_item("harbor-lights").quantity_purchased == 3

    def test_duplicate_notification_is_noop(self, recorder, memory_store, session_id, cart_items):
        recorder.record_purchase(session_id, "a@example.com", cart_items)
        memory_store.mark_item_fully_downloaded(session_id, "sunset-over-bay")

        result = recorder.record_purchase(session_id, "other@example.com", cart_items[:1])

        assert result.created is False
        assert result.items_recorded == 2
        record = memory_store.get(session_id)
        assert record.customer_email == "a@example.com"
        assert record.find_item("sunset-over-bay").fully_consumed
        assert memory_store.count() == 1

    def test_concurrent_duplicate_notifications(self, recorder, memory_store, session_id, cart_items):
        barrier = threading.Barrier(6)

        def deliver(_):
            barrier.wait()
            return recorder.record_purchase(session_id, None, cart_items)

        with ThreadPoolExecutor(max_workers=6) as executor:
            results = list(executor.map(deliver, range(6)))

        assert sum(result.created for result in results) == 1
        assert memory_store.count() == 1

    def test_missing_email_is_stored_as_none(self, recorder, memory_store, session_id, cart_items):
        recorder.record_purchase(session_id, "", cart_items)
        assert memory_store.get(session_id).customer_email is None

    def test_empty_cart_records_empty_purchase(self, recorder, memory_store, session_id, caplog):
        caplog.set_level(logging.INFO)
        result = recorder.record_purchase(session_id, None, [])

        assert result.created is True
        assert result.items_recorded == 0
        assert memory_store.get(session_id).items == []
        assert logged_events(caplog, "purchase_without_items")


class TestLineItemValidation:
    """Test handling of malformed and repeated cart entries."""

    def test_malformed_entries_are_dropped(self, recorder, memory_store, session_id, cart_items, caplog):
        raw = cart_items + [
            {"title": "No product id", "assetPath": "photos/x.jpg", "quantity": 1},
            {"productId": "no-asset", "quantity": 1},
            {"productId": "zero", "assetPath": "photos/z.jpg", "quantity": 0},
            "not-an-object",
        ]

        caplog.set_level(logging.INFO)
        result = recorder.record_purchase(session_id, None, raw)

        assert result.items_recorded == 2
        assert result.items_dropped == 4
        assert [item.product_id for item in memory_store.get(session_id).items] == [
            "sunset-over-bay",
            "harbor-lights",
        ]

        dropped = logged_events(caplog, "line_item_dropped")
        assert len(dropped) == 4
        assert all(record.levelno == logging.WARNING for record in dropped)

    def test_all_entries_malformed(self, recorder, memory_store, session_id):
        result = recorder.record_purchase(session_id, None, [{"quantity": 1}])

        assert result.created is True
        assert result.items_recorded == 0
        assert result.items_dropped == 1
        assert memory_store.get(session_id).items == []

    def test_repeated_product_ids_are_merged(self, recorder, memory_store, session_id, cart_items):
        repeat = dict(cart_items[0], quantity=2)

        result = recorder.record_purchase(session_id, None, cart_items + [repeat])

        assert result.items_recorded == 2
        item = memory_store.get(session_id).find_item("sunset-over-bay")
        assert item.quantity_purchased == 3

    def test_file_name_and_title_defaults(self, recorder, memory_store, session_id):
        recorder.record_purchase(
            session_id,
            None,
            [{"productId": "p1", "assetPath": "photos/night/city-lights.jpg", "quantity": 1}],
        )

        item = memory_store.get(session_id).find_item("p1")
        assert item.file_name == "city-lights.jpg"
        assert item.title == "city-lights.jpg"
        assert item.asset_path == "photos/night/city-lights.jpg"


class TestSessionIdValidation:
    """Test session id checks."""

    @pytest.mark.parametrize("bad_id", ["", "   ", None, "pi_12345"])
    def test_invalid_session_ids_rejected(self, recorder, bad_id, cart_items):
        with pytest.raises(ValueError):
            recorder.record_purchase(bad_id, None, cart_items)

    def test_validate_session_id_strips_whitespace(self):
        assert validate_session_id("  cs_abc ", "cs_") == "cs_abc"

    def test_no_prefix_accepts_any_id(self):
        assert validate_session_id("anything") == "anything"

    def test_recorder_without_prefix(self, memory_store, cart_items):
        recorder = PurchaseRecorder(entitlement_store=memory_store)
        result = recorder.record_purchase("session-42", None, cart_items)
        assert result.created


def test_get_purchase_recorder_uses_configured_prefix(cart_items):
    recorder = get_purchase_recorder()

    assert recorder is get_purchase_recorder()
    with pytest.raises(ValueError, match="cs_"):
        recorder.record_purchase("pi_wrong_prefix", None, cart_items)
