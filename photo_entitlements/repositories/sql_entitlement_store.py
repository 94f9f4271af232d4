"""SQL entitlement store - durable backend on SQLAlchemy.

One row per purchase in ``entitlement_records``:

    key         "purchase:<session_id>" (primary key)
    value       serialized PurchaseRecord (JSON)
    version     incremented on every write
    created_at / updated_at

create_if_absent relies on the primary-key constraint. Consumption is an
optimistic compare-and-set: read (value, version), modify, then
``UPDATE ... WHERE key = :key AND version = :version``. A zero rowcount means
another writer won the race and the read is retried.

NOTE: SQLite serializes writers with a database-level lock; concurrent
writers wait up to the driver's busy timeout before OperationalError.
"""

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, create_engine, delete, func, select, update
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from photo_entitlements.logging_config import get_logger, short_id
from photo_entitlements.models.purchase import PurchaseRecord
from photo_entitlements.repositories.entitlement_store import (
    ConsumeResult,
    CreateResult,
    EntitlementStore,
    EntitlementStoreError,
    purchase_key,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class EntitlementRow(Base):
    """Key-value row holding one serialized purchase record."""

    __tablename__ = "entitlement_records"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<EntitlementRow(key={self.key}, version={self.version})>"


class SqlEntitlementStore(EntitlementStore):
    """Durable entitlement store backed by a relational database."""

    backend_name = "sql"

    def __init__(
        self,
        database_url: str,
        max_cas_attempts: int = 5,
        backoff_base: float = 0.05,
    ):
        """Initialize the store and create the table if needed.

        Args:
            database_url: SQLAlchemy database URL
            max_cas_attempts: Attempts for a conflicting or locked consume before giving up
            backoff_base: Base delay in seconds between attempts (doubled each retry)

        Raises:
            EntitlementStoreError: If the database cannot be initialized
        """
        self._max_cas_attempts = max_cas_attempts
        self._backoff_base = backoff_base
        try:
            self._engine = self._create_engine(database_url)
            Base.metadata.create_all(self._engine)
        except (SQLAlchemyError, OSError) as e:
            raise EntitlementStoreError(f"Failed to initialize entitlement store: {e}") from e

        self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)

        logger.info(
            "entitlement_store_initialized",
            backend=self.backend_name,
            dialect=self._engine.dialect.name,
        )

    @staticmethod
    def _create_engine(database_url: str):
        url = make_url(database_url)
        if url.get_backend_name() != "sqlite":
            return create_engine(url, pool_pre_ping=True)

        # Connections are used from FastAPI's worker threads
        connect_args = {"check_same_thread": False}
        if not url.database or url.database == ":memory:":
            return create_engine(url, connect_args=connect_args, poolclass=StaticPool)

        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(url, connect_args=connect_args)

    def find(self, session_id: str) -> Optional[PurchaseRecord]:
        key = purchase_key(session_id)
        try:
            with self._session_factory() as session:
                value = session.scalar(select(EntitlementRow.value).where(EntitlementRow.key == key))
        except SQLAlchemyError as e:
            raise EntitlementStoreError(f"Failed to read {key}: {e}") from e

        if value is None:
            return None
        return PurchaseRecord.from_json(value)

    def create_if_absent(self, record: PurchaseRecord) -> CreateResult:
        key = purchase_key(record.session_id)
        now = _utcnow()
        row = EntitlementRow(key=key, value=record.to_json(), version=1, created_at=now, updated_at=now)

        try:
            with self._session_factory() as session:
                with session.begin():
                    session.add(row)
        except IntegrityError:
            return CreateResult.ALREADY_EXISTS
        except SQLAlchemyError as e:
            logger.error(
                "entitlement_store_write_failed",
                operation="create_if_absent",
                session_id=short_id(record.session_id),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise EntitlementStoreError(f"Failed to create {key}: {e}") from e

        return CreateResult.CREATED

    def mark_item_fully_downloaded(self, session_id: str, product_id: str) -> ConsumeResult:
        key = purchase_key(session_id)
        last_error: Optional[Exception] = None

        for attempt in range(self._max_cas_attempts):
            try:
                with self._session_factory() as session:
                    row = session.execute(
                        select(EntitlementRow.value, EntitlementRow.version).where(EntitlementRow.key == key)
                    ).first()
                    if row is None:
                        return ConsumeResult.NOT_FOUND

                    record = PurchaseRecord.from_json(row.value)
                    item = record.find_item(product_id)
                    if item is None:
                        return ConsumeResult.NOT_FOUND
                    if item.quantity_downloaded > 0:
                        return ConsumeResult.ALREADY_CONSUMED

                    item.mark_fully_downloaded()
                    result = session.execute(
                        update(EntitlementRow)
                        .where(EntitlementRow.key == key, EntitlementRow.version == row.version)
                        .values(value=record.to_json(), version=row.version + 1, updated_at=_utcnow())
                        .execution_options(synchronize_session=False)
                    )
                    session.commit()
            except OperationalError as e:
                last_error = e
                logger.warning(
                    "entitlement_store_retry",
                    operation="mark_item_fully_downloaded",
                    session_id=short_id(session_id),
                    product_id=product_id,
                    attempt=attempt + 1,
                    error=str(e),
                )
                time.sleep(self._backoff_base * (2**attempt))
                continue
            except SQLAlchemyError as e:
                raise EntitlementStoreError(f"Failed to update {key}: {e}") from e

            if result.rowcount == 1:
                return ConsumeResult.CONSUMED

            # Lost the compare-and-set; re-read to see the winner's write
            logger.debug(
                "entitlement_cas_conflict",
                session_id=short_id(session_id),
                product_id=product_id,
                attempt=attempt + 1,
            )

        raise EntitlementStoreError(
            f"Could not confirm consumption of {product_id} in {key} "
            f"after {self._max_cas_attempts} attempts"
        ) from last_error

    def count(self) -> int:
        try:
            with self._session_factory() as session:
                return session.scalar(select(func.count()).select_from(EntitlementRow)) or 0
        except SQLAlchemyError as e:
            raise EntitlementStoreError(f"Failed to count records: {e}") from e

    def clear(self) -> None:
        try:
            with self._session_factory() as session:
                with session.begin():
                    session.execute(delete(EntitlementRow))
        except SQLAlchemyError as e:
            raise EntitlementStoreError(f"Failed to clear records: {e}") from e

    def close(self) -> None:
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"SqlEntitlementStore(url={self._engine.url!r})"
