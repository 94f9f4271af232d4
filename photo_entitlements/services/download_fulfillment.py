"""Download Fulfillment Service - serves purchased files exactly once per product.

Flow for fulfill(session_id, product_id):

1. Look up the purchase record          -> UnknownSessionError
2. Find the line item                   -> UnknownProductError
3. Advisory consumed check (fail fast)  -> AlreadyConsumedError
4. Resolve the asset and size the delivery (nothing spent yet)
5. store.mark_item_fully_downloaded     -> AlreadyConsumedError for every loser
6. Return a FileDelivery (one copy) or ArchiveDelivery (zip of N copies)

The entitlement is marked before any byte is served. If streaming fails
afterwards the entitlement stays spent; re-issuing a download after a
transport failure is a support decision, not something this service does.
"""

import mimetypes
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from photo_entitlements.logging_config import get_logger, short_id
from photo_entitlements.models.purchase import LineItem
from photo_entitlements.repositories.entitlement_store import (
    ConsumeResult,
    EntitlementStore,
    get_entitlement_store,
)
from photo_entitlements.state_logger import log_download_denied, log_entitlement_consumed
from photo_entitlements.utils.archive import ArchiveTooLargeError, StoredCopiesArchive
from photo_entitlements.utils.paths import (
    UnsafeAssetPathError,
    archive_file_name,
    copy_names,
    resolve_asset_path,
)

logger = get_logger(__name__)


class DenialReason(str, Enum):
    """Why a download was refused."""

    UNKNOWN_SESSION = "unknown_session"
    UNKNOWN_PRODUCT = "unknown_product"
    ALREADY_CONSUMED = "already_consumed"


class DownloadDeniedError(Exception):
    """Base exception for refused downloads."""

    reason: DenialReason
    retryable = False

    def __init__(self, message: str, session_id: str, product_id: str):
        super().__init__(message)
        self.session_id = session_id
        self.product_id = product_id


class UnknownSessionError(DownloadDeniedError):
    """No purchase is recorded for the session (yet).

    Usually the client polled before the payment notification was
    processed; retrying after a short delay is expected.
    """

    reason = DenialReason.UNKNOWN_SESSION
    retryable = True


class UnknownProductError(DownloadDeniedError):
    """The product was not part of the session's purchase."""

    reason = DenialReason.UNKNOWN_PRODUCT


class AlreadyConsumedError(DownloadDeniedError):
    """The entitlement for the product has already been spent."""

    reason = DenialReason.ALREADY_CONSUMED

    def __init__(self, message: str, session_id: str, product_id: str, quantity_purchased: int):
        super().__init__(message, session_id, product_id)
        self.quantity_purchased = quantity_purchased


class FulfillmentError(Exception):
    """Raised when the purchased asset cannot be prepared or read."""

    pass


class FileDelivery:
    """A single purchased copy, served as the original file."""

    kind = "file"

    def __init__(self, path: Path, file_name: str, chunk_size: int = 64 * 1024):
        self.path = path
        self.file_name = file_name
        self.copies = 1
        self.content_length = path.stat().st_size
        self._chunk_size = chunk_size

    @property
    def media_type(self) -> str:
        return mimetypes.guess_type(self.file_name)[0] or "application/octet-stream"

    def iter_bytes(self) -> Iterator[bytes]:
        try:
            with open(self.path, "rb") as f:
                while True:
                    chunk = f.read(self._chunk_size)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            logger.error("download_stream_failed", file_name=self.file_name, error=str(e))
            raise FulfillmentError(f"Failed to read {self.file_name}: {e}") from e

    def __repr__(self) -> str:
        return f"FileDelivery(file_name={self.file_name}, bytes={self.content_length})"


class ArchiveDelivery:
    """Several purchased copies, served as one store-only zip archive."""

    kind = "archive"
    media_type = "application/zip"

    def __init__(self, archive: StoredCopiesArchive, file_name: str):
        self.archive = archive
        self.file_name = file_name
        self.copies = len(archive.entry_names)
        self.content_length = archive.content_length

    def iter_bytes(self) -> Iterator[bytes]:
        try:
            yield from self.archive
        except OSError as e:
            logger.error("download_stream_failed", file_name=self.file_name, error=str(e))
            raise FulfillmentError(f"Failed to build {self.file_name}: {e}") from e

    def __repr__(self) -> str:
        return (
            f"ArchiveDelivery(file_name={self.file_name}, copies={self.copies}, "
            f"bytes={self.content_length})"
        )


class DownloadFulfillmentService:
    """Validates, consumes and packages purchased downloads."""

    def __init__(
        self,
        assets_root: Path,
        entitlement_store: Optional[EntitlementStore] = None,
        chunk_size: int = 64 * 1024,
        archive_name_max_length: int = 100,
    ):
        """Initialize download fulfillment service.

        Args:
            assets_root: Directory that asset paths are resolved against
            entitlement_store: Store instance (uses global if not provided)
            chunk_size: Streaming chunk size in bytes
            archive_name_max_length: Maximum length of sanitised archive names
        """
        self._assets_root = Path(assets_root)
        self._store = entitlement_store if entitlement_store is not None else get_entitlement_store()
        self._chunk_size = chunk_size
        self._archive_name_max_length = archive_name_max_length

    def _deny(self, error: DownloadDeniedError) -> DownloadDeniedError:
        log_download_denied(error.session_id, error.product_id, reason=error.reason.value)
        return error

    def _already_consumed(self, session_id: str, item: LineItem) -> AlreadyConsumedError:
        return AlreadyConsumedError(
            f"This item has already been downloaded. You purchased {item.quantity_purchased} "
            f"cop{'y' if item.quantity_purchased == 1 else 'ies'} and "
            f"{'it has' if item.quantity_purchased == 1 else 'they have'} been delivered.",
            session_id,
            item.product_id,
            quantity_purchased=item.quantity_purchased,
        )

    def prepare_delivery(self, item: LineItem):
        """Resolve the asset for a line item and size the response.

        Args:
            item: Purchased line item

        Returns:
            FileDelivery when one copy was purchased, ArchiveDelivery otherwise

        Raises:
            FulfillmentError: If the asset path is unsafe, missing or too large to bundle
        """
        try:
            source = resolve_asset_path(self._assets_root, item.asset_path)
        except UnsafeAssetPathError as e:
            logger.error("asset_path_rejected", product_id=item.product_id, asset_path=item.asset_path)
            raise FulfillmentError(str(e)) from e

        if not source.is_file():
            logger.error("asset_missing", product_id=item.product_id, asset_path=item.asset_path)
            raise FulfillmentError(f"Asset not found for product {item.product_id}")

        try:
            if item.quantity_purchased == 1:
                return FileDelivery(source, item.file_name, chunk_size=self._chunk_size)

            archive = StoredCopiesArchive(
                source,
                copy_names(item.file_name, item.quantity_purchased),
                chunk_size=self._chunk_size,
            )
        except ArchiveTooLargeError as e:
            raise FulfillmentError(str(e)) from e
        except OSError as e:
            raise FulfillmentError(f"Failed to read asset for product {item.product_id}: {e}") from e

        name = archive_file_name(
            item.title,
            item.file_name,
            item.quantity_purchased,
            max_length=self._archive_name_max_length,
        )
        return ArchiveDelivery(archive, name)

    def fulfill(self, session_id: str, product_id: str):
        """Consume the entitlement for a product and return its delivery.

        Args:
            session_id: Payment session identifier
            product_id: Purchased product

        Returns:
            FileDelivery or ArchiveDelivery, ready to stream

        Raises:
            UnknownSessionError: No purchase recorded for the session
            UnknownProductError: Product not part of the purchase
            AlreadyConsumedError: Entitlement already spent (including lost races)
            FulfillmentError: Asset cannot be served (entitlement not spent)
            EntitlementStoreError: Consumption could not be confirmed (nothing served)
        """
        record = self._store.find(session_id)
        if record is None:
            raise self._deny(
                UnknownSessionError("No purchase found for this session", session_id, product_id)
            )

        item = record.find_item(product_id)
        if item is None:
            raise self._deny(
                UnknownProductError("This product was not part of your purchase", session_id, product_id)
            )

        # Advisory; the store call below is authoritative
        if item.fully_consumed:
            raise self._deny(self._already_consumed(session_id, item))

        delivery = self.prepare_delivery(item)

        result = self._store.mark_item_fully_downloaded(session_id, product_id)
        if result == ConsumeResult.ALREADY_CONSUMED:
            raise self._deny(self._already_consumed(session_id, item))
        if result == ConsumeResult.NOT_FOUND:
            raise self._deny(
                UnknownSessionError("No purchase found for this session", session_id, product_id)
            )

        log_entitlement_consumed(
            session_id,
            product_id,
            quantity=item.quantity_purchased,
            delivery=delivery.kind,
        )
        logger.info(
            "download_fulfilled",
            session_id=short_id(session_id),
            product_id=product_id,
            delivery=delivery.kind,
            copies=delivery.copies,
            content_length=delivery.content_length,
        )
        return delivery


# Global instance
_download_service: Optional[DownloadFulfillmentService] = None


def get_download_service() -> DownloadFulfillmentService:
    """Get global download fulfillment service instance.

    Returns:
        DownloadFulfillmentService singleton instance
    """
    global _download_service
    if _download_service is None:
        from photo_entitlements.config import get_config

        config = get_config()
        _download_service = DownloadFulfillmentService(
            assets_root=config.assets_root,
            chunk_size=config.downloads.chunk_size,
            archive_name_max_length=config.downloads.archive_name_max_length,
        )
    return _download_service


def reset_download_service() -> None:
    """Reset global download fulfillment service instance (useful for testing)."""
    global _download_service
    _download_service = None
