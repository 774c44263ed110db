"""
Database tables: one row per submission, one singleton counters row.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Enum, Integer, String, TypeDecorator, Uuid, DateTime, create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .models import SubmissionStatus

COUNTERS_ID = 1


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC on every backend."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class ExactDecimal(TypeDecorator):
    """Decimal kept as text so no backend rounds it through a float."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else Decimal(value)


class Base(DeclarativeBase):
    pass


class SubmissionRecord(Base):
    __tablename__ = "submissions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    payment_address: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_amount: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    status: Mapped[SubmissionStatus] = mapped_column(
        Enum(SubmissionStatus, name="submission_status", native_enum=False,
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubmissionStatus.PENDING,
        index=True,
    )
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(80), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    slot_number: Mapped[Optional[int]] = mapped_column(Integer, unique=True, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_address": self.payment_address,
            "payment_amount": self.payment_amount,
            "status": self.status,
            "transaction_hash": self.transaction_hash,
            "description": self.description,
            "tags": list(self.tags or []),
            "created_at": self.created_at,
            "confirmed_at": self.confirmed_at,
            "slot_number": self.slot_number,
        }


class CountersRecord(Base):
    __tablename__ = "global_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=COUNTERS_ID)
    total_capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    used_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_value_collected: Mapped[Decimal] = mapped_column(ExactDecimal, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "total_capacity": self.total_capacity,
            "used_slots": self.used_slots,
            "total_value_collected": self.total_value_collected,
            "last_updated": self.last_updated,
        }


def create_storage_engine(database_url: str) -> Engine:
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    # SQLite has no SELECT ... FOR UPDATE; take the write lock when each
    # transaction begins instead so confirmations still run one at a time.
    engine = create_engine(database_url, connect_args={"check_same_thread": False, "timeout": 30})

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine
