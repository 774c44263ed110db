import itertools
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

import pytest

from slotledger.config import Settings
from slotledger.gateway import GatewayUnavailableError, LedgerGateway, LedgerTransaction
from slotledger.models import CreateSubmissionRequest, SubmissionStatus
from slotledger.service import PaymentService
from slotledger.store import SqlStorage

WALLET = "0x13322cc8958e50ed5363442352d0D1110C8768dA"


class InMemoryStorage:
    """Process-local stand-in for SqlStorage.

    One re-entrant lock covers every read and the whole of ``transaction()``,
    which is enough to serialize confirmations between threads of one process.
    """

    def __init__(self, total_capacity: int = 1_000_000):
        self.submissions: dict[UUID, dict] = {}
        self.counters: Optional[dict] = None
        self._lock = threading.RLock()
        self._ensure_counters(total_capacity)

    def _ensure_counters(self, total_capacity: int) -> None:
        with self._lock:
            if self.counters is None:
                self.counters = {
                    "total_capacity": total_capacity,
                    "used_slots": 0,
                    "total_value_collected": Decimal("0"),
                    "last_updated": datetime.now(timezone.utc),
                }

    @contextmanager
    def transaction(self, lock: bool = True):
        with self._lock:
            yield self

    def get_submission(self, submission_id: UUID) -> Optional[dict]:
        with self._lock:
            data = self.submissions.get(submission_id)
            return dict(data) if data else None

    def put_submission(self, data: dict) -> None:
        with self._lock:
            self.submissions[data["id"]] = dict(data)

    def list_pending(self, created_since: datetime) -> list[dict]:
        with self._lock:
            pending = [
                dict(s) for s in self.submissions.values()
                if s["status"] == SubmissionStatus.PENDING and s["created_at"] >= created_since
            ]
        return sorted(pending, key=lambda s: s["created_at"])

    def find_by_transaction_hash(self, transaction_hash: str) -> Optional[dict]:
        with self._lock:
            for s in self.submissions.values():
                if s["transaction_hash"] and s["transaction_hash"].lower() == transaction_hash.lower():
                    return dict(s)
        return None

    def count_by_status(self, status: SubmissionStatus) -> int:
        with self._lock:
            return sum(1 for s in self.submissions.values() if s["status"] == status)

    def get_counters(self) -> dict:
        with self._lock:
            return dict(self.counters)

    def increment_used_slots(self, amount: Decimal, now: datetime) -> int:
        with self._lock:
            self.counters["used_slots"] += 1
            self.counters["total_value_collected"] += amount
            self.counters["last_updated"] = now
            return self.counters["used_slots"]


class FakeGateway(LedgerGateway):
    """In-process ledger with a settable balance, known transactions and injectable failures."""

    def __init__(self, balance: Decimal = Decimal("0")):
        self.balance = balance
        self.transactions: dict[str, LedgerTransaction] = {}
        self.balance_calls = 0
        self.transaction_calls = 0
        self.fail_balance_calls: set[int] = set()
        self.fail_transactions = False
        self.balance_entered = threading.Event()
        self.release_balance: Optional[threading.Event] = None
        self._lock = threading.Lock()

    def add_transaction(self, tx_hash: str, recipient: Optional[str], value: Decimal) -> None:
        self.transactions[tx_hash] = LedgerTransaction(hash=tx_hash, recipient=recipient, value=value)

    def balance_of(self, address: str) -> Decimal:
        with self._lock:
            self.balance_calls += 1
            call_number = self.balance_calls
        self.balance_entered.set()
        if self.release_balance is not None:
            self.release_balance.wait(5)
        if call_number in self.fail_balance_calls:
            raise GatewayUnavailableError("ledger timed out")
        return self.balance

    def transaction_by_hash(self, tx_hash: str) -> Optional[LedgerTransaction]:
        with self._lock:
            self.transaction_calls += 1
        if self.fail_transactions:
            raise GatewayUnavailableError("ledger timed out")
        return self.transactions.get(tx_hash)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        wallet_address=WALLET,
        payment_amount=Decimal("0.001"),
        total_slots=1000,
        reconciler_enabled=False,
        database_url=f"sqlite:///{tmp_path / 'slots.db'}",
    )


@pytest.fixture(params=["memory", "sql"])
def storage_kind(request) -> str:
    return request.param


@pytest.fixture
def make_service(gateway, settings, storage_kind, tmp_path):
    """Build a service on a fresh store, optionally with a different slot capacity."""
    counter = itertools.count(1)

    def _make(total_slots: Optional[int] = None) -> PaymentService:
        service_settings = replace(
            settings,
            total_slots=total_slots or settings.total_slots,
            database_url=f"sqlite:///{tmp_path / f'slots-{next(counter)}.db'}",
        )
        if storage_kind == "memory":
            storage = InMemoryStorage(service_settings.total_slots)
        else:
            storage = SqlStorage(service_settings.database_url, total_capacity=service_settings.total_slots)
        return PaymentService(gateway=gateway, storage=storage, settings=service_settings)
    return _make


@pytest.fixture
def service(make_service) -> PaymentService:
    return make_service()


@pytest.fixture
def submit():
    """Create a pending submission on the given service and return its id."""
    def _submit(service: PaymentService):
        return service.create_submission(CreateSubmissionRequest()).submission_id
    return _submit
