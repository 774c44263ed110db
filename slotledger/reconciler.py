"""
Background payment reconciler.

Every ``interval_seconds`` the reconciler sweeps recent pending submissions,
reads the balance of each one's payment address from the ledger and confirms
the submission once the balance covers its amount.

All submissions share one operator address, so the balance cannot be
attributed to a particular submission: a single sufficient balance confirms
every pending submission in the window. Use the manual verifier when a
payment has to be matched to one submission.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from .gateway import GatewayUnavailableError
from .models import ConfirmationOutcome, Evidence
from .service import PaymentService, SubmissionNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    scanned: int = 0
    confirmed: int = 0
    already_confirmed: int = 0
    unpaid: int = 0
    failed: int = 0
    capacity_exhausted: bool = False


class PaymentReconciler:
    def __init__(
        self,
        service: PaymentService,
        interval_seconds: float = 30.0,
        pending_window: timedelta = timedelta(hours=24),
    ):
        self.service = service
        self.gateway = service.gateway
        self.interval_seconds = interval_seconds
        self.pending_window = pending_window
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        # A loop left over from a stop() that timed out still owns the thread
        # handle, so no second loop starts until it exits.
        if self.is_running:
            return
        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop, args=(self._stop_event,), name="payment-reconciler", daemon=True,
        )
        self._thread.start()
        logger.info("Payment reconciler started, sweeping every %ss", self.interval_seconds)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is None:
            return
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Payment reconciler still finishing a sweep after %ss", timeout)
            return
        self._thread = None
        logger.info("Payment reconciler stopped")

    def _run_loop(self, stop_event: threading.Event) -> None:
        # The wait starts after a sweep finishes, so sweeps never overlap.
        while not stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Payment reconciliation sweep failed")
            stop_event.wait(self.interval_seconds)

    def run_once(self, now: Optional[datetime] = None) -> Optional[ReconcileReport]:
        """Run one sweep. Returns None if another sweep is still in progress."""
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Previous reconciliation sweep still running, skipping")
            return None
        try:
            return self._sweep(now or datetime.now(timezone.utc))
        finally:
            self._sweep_lock.release()

    def _sweep(self, now: datetime) -> ReconcileReport:
        report = ReconcileReport()
        pending = self.service.storage.list_pending(created_since=now - self.pending_window)

        for submission_data in pending:
            report.scanned += 1
            submission_id = submission_data["id"]
            try:
                balance = self.gateway.balance_of(submission_data["payment_address"])
            except GatewayUnavailableError as e:
                logger.warning("Balance check for submission %s failed, retrying next sweep: %s", submission_id, e)
                report.failed += 1
                continue

            if balance < submission_data["payment_amount"]:
                report.unpaid += 1
                continue

            try:
                evidence = Evidence.from_balance(submission_data["payment_address"], balance)
                result = self.service.confirm(submission_id, evidence)
            except SubmissionNotFoundError:
                logger.warning("Submission %s disappeared during reconciliation", submission_id)
                report.failed += 1
                continue

            if result.outcome == ConfirmationOutcome.CONFIRMED:
                report.confirmed += 1
            elif result.outcome == ConfirmationOutcome.ALREADY_CONFIRMED:
                report.already_confirmed += 1
            elif result.outcome == ConfirmationOutcome.CAPACITY_EXHAUSTED:
                report.capacity_exhausted = True
                break
            else:
                report.unpaid += 1

        if report.scanned:
            logger.info(
                "Reconciliation sweep: scanned=%d confirmed=%d unpaid=%d failed=%d",
                report.scanned, report.confirmed, report.unpaid, report.failed,
            )
        return report
