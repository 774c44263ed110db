import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .db import COUNTERS_ID, Base, CountersRecord, SubmissionRecord, create_storage_engine
from .models import SubmissionStatus

logger = logging.getLogger(__name__)


class StorageConflictError(Exception):
    """A write collided with a uniqueness constraint, e.g. a reused transaction hash."""


class StorageTransaction:
    """Reads and writes bound to one database transaction.

    With ``lock=True`` every row read is ``SELECT ... FOR UPDATE``, so two
    transactions touching the same submission or the counters row run one
    after the other.
    """

    def __init__(self, session: Session, lock: bool = True):
        self.session = session
        self.lock = lock

    def _select(self, stmt):
        return stmt.with_for_update() if self.lock else stmt

    def get_submission(self, submission_id: UUID) -> Optional[dict]:
        record = self.session.scalars(
            self._select(select(SubmissionRecord).where(SubmissionRecord.id == submission_id))
        ).first()
        return record.to_dict() if record else None

    def put_submission(self, data: dict) -> None:
        self.session.merge(SubmissionRecord(**data))
        self.session.flush()

    def list_pending(self, created_since: datetime) -> list[dict]:
        records = self.session.scalars(
            select(SubmissionRecord)
            .where(SubmissionRecord.status == SubmissionStatus.PENDING)
            .where(SubmissionRecord.created_at >= created_since)
            .order_by(SubmissionRecord.created_at)
        ).all()
        return [r.to_dict() for r in records]

    def find_by_transaction_hash(self, transaction_hash: str) -> Optional[dict]:
        record = self.session.scalars(
            select(SubmissionRecord).where(SubmissionRecord.transaction_hash == transaction_hash.lower())
        ).first()
        return record.to_dict() if record else None

    def count_by_status(self, status: SubmissionStatus) -> int:
        return self.session.scalar(
            select(func.count()).select_from(SubmissionRecord).where(SubmissionRecord.status == status)
        )

    def _counters(self) -> Optional[CountersRecord]:
        return self.session.scalars(
            self._select(select(CountersRecord).where(CountersRecord.id == COUNTERS_ID))
        ).first()

    def get_counters(self) -> Optional[dict]:
        counters = self._counters()
        return counters.to_dict() if counters else None

    def create_counters(self, total_capacity: int, now: datetime) -> None:
        self.session.add(CountersRecord(
            id=COUNTERS_ID,
            total_capacity=total_capacity,
            used_slots=0,
            total_value_collected=Decimal("0"),
            last_updated=now,
        ))
        self.session.flush()

    def increment_used_slots(self, amount: Decimal, now: datetime) -> int:
        """Claim the next slot number and add ``amount`` to the collected value."""
        counters = self.session.scalars(
            select(CountersRecord).where(CountersRecord.id == COUNTERS_ID).with_for_update()
        ).one()
        counters.used_slots += 1
        counters.total_value_collected = counters.total_value_collected + amount
        counters.last_updated = now
        self.session.flush()
        return counters.used_slots


class SqlStorage:
    """Durable submission store on any SQLAlchemy database.

    ``transaction()`` yields a locking ``StorageTransaction`` that commits on
    success and rolls back on any error. The other methods are single-shot
    reads and writes without row locks.
    """

    def __init__(self, database_url: str = "sqlite:///slotledger.db", total_capacity: int = 1_000_000, engine=None):
        self.engine = engine or create_storage_engine(database_url)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._ensure_counters(total_capacity)

    def _ensure_counters(self, total_capacity: int) -> None:
        try:
            with self.transaction() as txn:
                if txn.get_counters() is None:
                    txn.create_counters(total_capacity, datetime.now(timezone.utc))
                    logger.info("Created global counters with capacity %d", total_capacity)
        except StorageConflictError:
            logger.info("Global counters created by another process")

    @contextmanager
    def transaction(self, lock: bool = True) -> Iterator[StorageTransaction]:
        session = self.Session()
        try:
            yield StorageTransaction(session, lock=lock)
            session.commit()
        except IntegrityError as e:
            session.rollback()
            raise StorageConflictError(str(e.orig)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_submission(self, submission_id: UUID) -> Optional[dict]:
        with self.transaction(lock=False) as txn:
            return txn.get_submission(submission_id)

    def put_submission(self, data: dict) -> None:
        with self.transaction(lock=False) as txn:
            txn.put_submission(data)

    def list_pending(self, created_since: datetime) -> list[dict]:
        with self.transaction(lock=False) as txn:
            return txn.list_pending(created_since)

    def find_by_transaction_hash(self, transaction_hash: str) -> Optional[dict]:
        with self.transaction(lock=False) as txn:
            return txn.find_by_transaction_hash(transaction_hash)

    def count_by_status(self, status: SubmissionStatus) -> int:
        with self.transaction(lock=False) as txn:
            return txn.count_by_status(status)

    def get_counters(self) -> dict:
        with self.transaction(lock=False) as txn:
            return txn.get_counters()
