"""Entitlement store - durable storage of purchase records by session id.

The store holds one serialized PurchaseRecord per completed checkout under
the key ``"purchase:" + session_id``. It has no business logic beyond the
two conditional writes the rest of the system relies on:

- create_if_absent: exactly one of several racing creators succeeds.
- mark_item_fully_downloaded: exactly one of several racing consumers
  observes CONSUMED for a given (session_id, product_id).

Backends:
- InMemoryEntitlementStore (this module): lock-guarded dictionary.
- SqlEntitlementStore (sql_entitlement_store.py): SQLAlchemy table with
  optimistic compare-and-set.
"""

import threading
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional

from photo_entitlements.logging_config import get_logger
from photo_entitlements.models.purchase import PurchaseRecord

logger = get_logger(__name__)

KEY_PREFIX = "purchase:"


def purchase_key(session_id: str) -> str:
    """Build the store key for a session."""
    return f"{KEY_PREFIX}{session_id}"


class EntitlementStoreError(Exception):
    """Raised when the store cannot complete or confirm an operation.

    Callers must treat the operation as failed; a write that raised this
    error may not be assumed committed.
    """

    pass


class PurchaseNotFoundError(Exception):
    """Raised when no purchase record exists for a session."""

    pass


class CreateResult(str, Enum):
    """Outcome of create_if_absent."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class ConsumeResult(str, Enum):
    """Outcome of mark_item_fully_downloaded."""

    CONSUMED = "consumed"
    ALREADY_CONSUMED = "already_consumed"
    NOT_FOUND = "not_found"


class EntitlementStore(ABC):
    """Interface shared by all entitlement store backends."""

    backend_name = "abstract"

    @abstractmethod
    def find(self, session_id: str) -> Optional[PurchaseRecord]:
        """Find a purchase record (returns None if not found)."""

    def get(self, session_id: str) -> PurchaseRecord:
        """Get a purchase record.

        Raises:
            PurchaseNotFoundError: If no record exists for the session
        """
        record = self.find(session_id)
        if record is None:
            raise PurchaseNotFoundError(f"Purchase not found for session: {session_id}")
        return record

    @abstractmethod
    def create_if_absent(self, record: PurchaseRecord) -> CreateResult:
        """Store a record unless one already exists for its session.

        Raises:
            EntitlementStoreError: If the write cannot be confirmed
        """

    @abstractmethod
    def mark_item_fully_downloaded(self, session_id: str, product_id: str) -> ConsumeResult:
        """Atomically set quantity_downloaded to quantity_purchased.

        Only the caller that performs the 0 -> quantity_purchased transition
        receives CONSUMED.

        Raises:
            EntitlementStoreError: If the write cannot be confirmed
        """

    @abstractmethod
    def count(self) -> int:
        """Number of stored purchase records."""

    @abstractmethod
    def clear(self) -> None:
        """Remove all records. Intended for tests and local development."""

    def exists(self, session_id: str) -> bool:
        return self.find(session_id) is not None

    def close(self) -> None:
        """Release backend resources."""

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, session_id: str) -> bool:
        return self.exists(session_id)


class InMemoryEntitlementStore(EntitlementStore):
    """Process-local entitlement store.

    Values are kept serialized, so records handed to callers never share
    state with the store. All operations run under a single lock, which
    makes both conditional writes linearizable within the process.
    """

    backend_name = "memory"

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._lock = threading.RLock()

    def find(self, session_id: str) -> Optional[PurchaseRecord]:
        with self._lock:
            raw = self._values.get(purchase_key(session_id))
        if raw is None:
            return None
        return PurchaseRecord.from_json(raw)

    def create_if_absent(self, record: PurchaseRecord) -> CreateResult:
        key = purchase_key(record.session_id)
        raw = record.to_json()
        with self._lock:
            if key in self._values:
                return CreateResult.ALREADY_EXISTS
            self._values[key] = raw
        return CreateResult.CREATED

    def mark_item_fully_downloaded(self, session_id: str, product_id: str) -> ConsumeResult:
        key = purchase_key(session_id)
        with self._lock:
            raw = self._values.get(key)
            if raw is None:
                return ConsumeResult.NOT_FOUND

            record = PurchaseRecord.from_json(raw)
            item = record.find_item(product_id)
            if item is None:
                return ConsumeResult.NOT_FOUND
            if item.quantity_downloaded > 0:
                return ConsumeResult.ALREADY_CONSUMED

            item.mark_fully_downloaded()
            self._values[key] = record.to_json()
        return ConsumeResult.CONSUMED

    def count(self) -> int:
        with self._lock:
            return len(self._values)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    def __repr__(self) -> str:
        return f"InMemoryEntitlementStore(purchases={self.count()})"


def create_entitlement_store(config=None) -> EntitlementStore:
    """Build the store backend selected by configuration.

    Args:
        config: Config instance (uses global config if not provided)

    Returns:
        EntitlementStore for storage.backend
    """
    if config is None:
        from photo_entitlements.config import get_config

        config = get_config()

    storage = config.storage
    if storage.backend == "memory":
        logger.warning("entitlement_store_in_memory", message="Purchases will not survive a restart")
        return InMemoryEntitlementStore()

    from photo_entitlements.repositories.sql_entitlement_store import SqlEntitlementStore

    return SqlEntitlementStore(storage.database_url, max_cas_attempts=storage.max_cas_attempts)


# Global store instance
_store_instance: Optional[EntitlementStore] = None
_store_lock = threading.Lock()


def get_entitlement_store() -> EntitlementStore:
    """Get global entitlement store instance (singleton).

    Returns:
        EntitlementStore instance
    """
    global _store_instance
    if _store_instance is None:
        with _store_lock:
            if _store_instance is None:
                _store_instance = create_entitlement_store()
    return _store_instance


def reset_entitlement_store() -> None:
    """Close and drop the global store so the next access rebuilds it."""
    global _store_instance
    with _store_lock:
        if _store_instance is not None:
            _store_instance.close()
        _store_instance = None
