"""Tests for DownloadFulfillmentService - one-time download fulfillment."""

import io
import threading
import zipfile
from concurrent.futures import ThreadPoolExecutor

import pytest

from photo_entitlements.repositories.entitlement_store import ConsumeResult, EntitlementStoreError
from photo_entitlements.services.download_fulfillment import (
    AlreadyConsumedError,
    ArchiveDelivery,
    DenialReason,
    DownloadDeniedError,
    DownloadFulfillmentService,
    FileDelivery,
    FulfillmentError,
    UnknownProductError,
    UnknownSessionError,
    get_download_service,
)


@pytest.fixture
def service(assets_dir, memory_store):
    return DownloadFulfillmentService(assets_dir, entitlement_store=memory_store, chunk_size=512)


@pytest.fixture
def purchase(memory_store, make_record, make_item, session_id):
    """Recorded purchase: one copy of sunset-over-bay, three of harbor-lights."""
    record = make_record(
        items=[
            make_item("sunset-over-bay", quantity=1),
            make_item("harbor-lights", quantity=3, title="Harbor Lights"),
        ]
    )
    memory_store.create_if_absent(record)
    return record


def read_all(delivery) -> bytes:
    return b"".join(delivery.iter_bytes())


class TestSingleCopy:
    """quantity_purchased == 1 is served as the original file."""

    def test_first_download_serves_file(self, service, purchase, session_id, assets_dir):
        delivery = service.fulfill(session_id, "sunset-over-bay")

        assert isinstance(delivery, FileDelivery)
        assert delivery.kind == "file"
        assert delivery.file_name == "sunset-over-bay.jpg"
        assert delivery.copies == 1
        assert delivery.media_type == "image/jpeg"

        expected = (assets_dir / "photos" / "sunset-over-bay.jpg").read_bytes()
        assert delivery.content_length == len(expected)
        assert read_all(delivery) == expected

    def test_unknown_extension_served_as_octet_stream(self, service, memory_store, make_record, make_item, session_id):
        memory_store.create_if_absent(
            make_record(
                items=[make_item("scan", file_name="scan.unknownext", asset_path="photos/sunset-over-bay.jpg")]
            )
        )

        delivery = service.fulfill(session_id, "scan")

        assert delivery.file_name == "scan.unknownext"
        assert delivery.media_type == "application/octet-stream"

    def test_entitlement_is_spent(self, service, purchase, memory_store, session_id):
        service.fulfill(session_id, "sunset-over-bay")

        item = memory_store.get(session_id).find_item("sunset-over-bay")
        assert item.quantity_downloaded == 1

    def test_second_download_denied(self, service, purchase, session_id):
        service.fulfill(session_id, "sunset-over-bay")

        with pytest.raises(AlreadyConsumedError) as exc_info:
            service.fulfill(session_id, "sunset-over-bay")

        error = exc_info.value
        assert error.reason == DenialReason.ALREADY_CONSUMED
        assert error.quantity_purchased == 1
        assert not error.retryable
        assert "already been downloaded" in str(error)


class TestMultipleCopies:
    """quantity_purchased > 1 is served as a zip of identical copies."""

    def test_download_serves_archive(self, service, purchase, session_id, assets_dir):
        delivery = service.fulfill(session_id, "harbor-lights")

        assert isinstance(delivery, ArchiveDelivery)
        assert delivery.kind == "archive"
        assert delivery.media_type == "application/zip"
        assert delivery.file_name == "Harbor_Lights_x3.zip"
        assert delivery.copies == 3

        data = read_all(delivery)
        assert len(data) == delivery.content_length

        original = (assets_dir / "photos" / "harbor-lights.jpg").read_bytes()
        with zipfile.ZipFile(io.BytesIO(data)) as bundle:
            assert bundle.testzip() is None
            assert bundle.namelist() == [
                "harbor-lights_copy_1.jpg",
                "harbor-lights_copy_2.jpg",
                "harbor-lights_copy_3.jpg",
            ]
            for info in bundle.infolist():
                assert info.compress_type == zipfile.ZIP_STORED
                assert bundle.read(info) == original

    def test_whole_bundle_consumed_at_once(self, service, purchase, memory_store, session_id):
        service.fulfill(session_id, "harbor-lights")

        item = memory_store.get(session_id).find_item("harbor-lights")
        assert item.quantity_downloaded == 3
        assert item.remaining == 0

        with pytest.raises(AlreadyConsumedError) as exc_info:
            service.fulfill(session_id, "harbor-lights")
        assert exc_info.value.quantity_purchased == 3


class TestDenials:
    """Unknown sessions and products."""

    def test_unknown_session(self, service, session_id):
        with pytest.raises(UnknownSessionError) as exc_info:
            service.fulfill(session_id, "sunset-over-bay")

        assert exc_info.value.reason == DenialReason.UNKNOWN_SESSION
        assert exc_info.value.retryable

    def test_unknown_product(self, service, purchase, memory_store, session_id):
        with pytest.raises(UnknownProductError) as exc_info:
            service.fulfill(session_id, "not-purchased")

        assert exc_info.value.reason == DenialReason.UNKNOWN_PRODUCT
        record = memory_store.get(session_id)
        assert all(item.quantity_downloaded == 0 for item in record.items)

    def test_denials_share_base_class(self, service, session_id):
        with pytest.raises(DownloadDeniedError):
            service.fulfill(session_id, "sunset-over-bay")


class TestIndependence:
    """Consuming one product never affects another."""

    def test_products_consumed_independently(self, service, purchase, memory_store, session_id):
        service.fulfill(session_id, "sunset-over-bay")

        assert memory_store.get(session_id).find_item("harbor-lights").quantity_downloaded == 0

        delivery = service.fulfill(session_id, "harbor-lights")
        assert delivery.copies == 3


class TestAssetFailures:
    """A broken asset never spends the entitlement."""

    def test_missing_asset_leaves_entitlement(self, service, memory_store, make_record, make_item, session_id):
        memory_store.create_if_absent(
            make_record(items=[make_item("ghost", asset_path="photos/does-not-exist.jpg")])
        )

        with pytest.raises(FulfillmentError):
            service.fulfill(session_id, "ghost")

        assert memory_store.get(session_id).find_item("ghost").quantity_downloaded == 0

    def test_escaping_asset_path_rejected(self, service, memory_store, make_record, make_item, session_id):
        memory_store.create_if_absent(
            make_record(items=[make_item("escape", asset_path="../../etc/passwd")])
        )

        with pytest.raises(FulfillmentError):
            service.fulfill(session_id, "escape")

        assert memory_store.get(session_id).find_item("escape").quantity_downloaded == 0

    def test_leading_slash_resolves_inside_assets_root(
        self, service, memory_store, make_record, make_item, session_id
    ):
        memory_store.create_if_absent(
            make_record(items=[make_item("slash", asset_path="/photos/sunset-over-bay.jpg")])
        )

        delivery = service.fulfill(session_id, "slash")
        assert delivery.kind == "file"


class TestConcurrentDownloads:
    """Racing requests for one product yield exactly one delivery."""

    @pytest.mark.parametrize("product_id", ["sunset-over-bay", "harbor-lights"])
    def test_exactly_one_success(self, service, purchase, memory_store, session_id, product_id):
        workers = 8
        barrier = threading.Barrier(workers)

        def attempt(_):
            barrier.wait()
            try:
                return service.fulfill(session_id, product_id)
            except AlreadyConsumedError as e:
                return e

        with ThreadPoolExecutor(max_workers=workers) as executor:
            results = list(executor.map(attempt, range(workers)))

        deliveries = [r for r in results if not isinstance(r, AlreadyConsumedError)]
        denials = [r for r in results if isinstance(r, AlreadyConsumedError)]
        assert len(deliveries) == 1
        assert len(denials) == workers - 1
        assert memory_store.get(session_id).find_item(product_id).fully_consumed


class TestStoreOutcomes:
    """The store's answer to the consume call is authoritative."""

    def test_lost_race_after_advisory_check(self, service, purchase, memory_store, session_id, monkeypatch):
        monkeypatch.setattr(
            memory_store,
            "mark_item_fully_downloaded",
            lambda *_: ConsumeResult.ALREADY_CONSUMED,
        )

        with pytest.raises(AlreadyConsumedError):
            service.fulfill(session_id, "sunset-over-bay")

    def test_store_failure_propagates(self, service, purchase, memory_store, session_id, monkeypatch):
        def fail(*_):
            raise EntitlementStoreError("connection lost")

        monkeypatch.setattr(memory_store, "mark_item_fully_downloaded", fail)

        with pytest.raises(EntitlementStoreError):
            service.fulfill(session_id, "sunset-over-bay")


def test_get_download_service_uses_config(assets_dir):
    service = get_download_service()

    assert service is get_download_service()
    assert service._assets_root == assets_dir.resolve()
    assert service._chunk_size == 1024


class TestRecordThenDownload:
    """Recording followed by fulfillment, without a session id prefix."""

    @pytest.fixture
    def recorder(self, memory_store):
        from photo_entitlements.services.purchase_recorder import PurchaseRecorder

        return PurchaseRecorder(entitlement_store=memory_store)

    def test_two_copies_bundle_then_denial(self, recorder, service, memory_store):
        cart = [{"productId": "p1", "assetPath": "photos/sunset-over-bay.jpg", "quantity": 2}]
        recorder.record_purchase("sess_1", "a@example.com", cart)
        recorder.record_purchase("sess_1", "a@example.com", cart)

        record = memory_store.get("sess_1")
        assert len(record.items) == 1
        assert record.items[0].quantity_purchased == 2
        assert record.items[0].quantity_downloaded == 0

        delivery = service.fulfill("sess_1", "p1")
        assert delivery.kind == "archive"
        with zipfile.ZipFile(io.BytesIO(read_all(delivery))) as bundle:
            assert len(bundle.namelist()) == 2

        with pytest.raises(AlreadyConsumedError):
            service.fulfill("sess_1", "p1")

    def test_single_copy_served_as_file(self, recorder, service):
        cart = [{"productId": "p1", "assetPath": "photos/sunset-over-bay.jpg", "quantity": 1}]
        recorder.record_purchase("sess_2", None, cart)

        assert service.fulfill("sess_2", "p1").kind == "file"

    def test_unknown_session(self, service):
        with pytest.raises(UnknownSessionError):
            service.fulfill("sess_unknown", "p1")
