import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from .config import Settings
from .gateway import GatewayUnavailableError, LedgerGateway, ether_to_wei
from .models import (
    ConfirmationOutcome,
    ConfirmationResult,
    CreateSubmissionRequest,
    Evidence,
    EvidenceKind,
    GlobalCounters,
    PaymentStatusResponse,
    StatsResponse,
    Submission,
    SubmissionCreatedResponse,
    SubmissionStatus,
    VerificationStatus,
    VerifyPaymentResponse,
)
from .store import SqlStorage, StorageConflictError

logger = logging.getLogger(__name__)


class PaymentServiceError(Exception):
    pass


class SubmissionNotFoundError(PaymentServiceError):
    pass


class CapacityExhaustedError(PaymentServiceError):
    pass


class PaymentService:
    def __init__(
        self,
        gateway: LedgerGateway,
        storage: Optional[SqlStorage] = None,
        settings: Optional[Settings] = None,
    ):
        self.gateway = gateway
        self.settings = settings or Settings()
        self.storage = storage or SqlStorage(self.settings.database_url, total_capacity=self.settings.total_slots)

    def create_submission(self, request: CreateSubmissionRequest) -> SubmissionCreatedResponse:
        counters = GlobalCounters(**self.storage.get_counters())
        if not counters.has_capacity():
            raise CapacityExhaustedError("All slots are taken")

        submission_data = {
            "id": uuid4(),
            "payment_address": self.settings.wallet_address,
            "payment_amount": self.settings.payment_amount,
            "status": SubmissionStatus.PENDING,
            "transaction_hash": None,
            "description": request.description,
            "tags": [t.strip() for t in request.tags if t.strip()],
            "created_at": datetime.now(timezone.utc),
            "confirmed_at": None,
            "slot_number": None,
        }
        self.storage.put_submission(submission_data)
        submission = Submission(**submission_data)

        return SubmissionCreatedResponse(
            submission_id=submission.id,
            payment_address=submission.payment_address,
            payment_amount=submission.payment_amount,
            payment_uri=f"ethereum:{submission.payment_address}?value={ether_to_wei(submission.payment_amount)}",
        )

    def get_submission(self, submission_id: UUID) -> Submission:
        submission_data = self.storage.get_submission(submission_id)
        if not submission_data:
            raise SubmissionNotFoundError(f"Submission {submission_id} not found")
        return Submission(**submission_data)

    def confirm(self, submission_id: UUID, evidence: Evidence) -> ConfirmationResult:
        """Move a pending submission to confirmed and give it the next slot.

        The whole check-and-write runs inside one locking storage
        transaction, so concurrent callers in any thread or process are
        serialized: a submission confirmed by one caller is
        ``already_confirmed`` for the next, and two different submissions
        never share a slot number. Rejections and capacity exhaustion commit
        nothing.
        """
        try:
            result = self._apply_confirmation(submission_id, evidence)
        except StorageConflictError as e:
            return self._rejected(submission_id, f"Conflicting confirmation: {e}")

        if result.outcome == ConfirmationOutcome.CONFIRMED:
            logger.info(
                "Submission %s confirmed at slot #%d via %s evidence",
                submission_id, result.slot_number, evidence.kind.value,
            )
        return result

    def _apply_confirmation(self, submission_id: UUID, evidence: Evidence) -> ConfirmationResult:
        with self.storage.transaction() as txn:
            submission_data = txn.get_submission(submission_id)
            if not submission_data:
                raise SubmissionNotFoundError(f"Submission {submission_id} not found")

            submission = Submission(**submission_data)
            if submission.status == SubmissionStatus.CONFIRMED:
                return ConfirmationResult(
                    submission_id=submission_id,
                    outcome=ConfirmationOutcome.ALREADY_CONFIRMED,
                    slot_number=submission.slot_number,
                )
            if not submission.can_confirm():
                return self._rejected(submission_id, f"Cannot confirm submission in {submission.status.value} state")

            reason = evidence.rejection_reason(submission)
            if reason is None and evidence.kind == EvidenceKind.TRANSACTION:
                reason = self._transaction_already_used(txn, evidence.transaction_hash)
            if reason:
                return self._rejected(submission_id, reason)

            counters = GlobalCounters(**txn.get_counters())
            if not counters.has_capacity():
                logger.warning("Capacity exhausted, submission %s left pending", submission_id)
                return ConfirmationResult(
                    submission_id=submission_id,
                    outcome=ConfirmationOutcome.CAPACITY_EXHAUSTED,
                )

            now = datetime.now(timezone.utc)
            slot_number = txn.increment_used_slots(submission.payment_amount, now)
            submission_data["status"] = SubmissionStatus.CONFIRMED
            submission_data["confirmed_at"] = now
            submission_data["slot_number"] = slot_number
            if evidence.kind == EvidenceKind.TRANSACTION:
                submission_data["transaction_hash"] = evidence.transaction_hash
            txn.put_submission(submission_data)

        return ConfirmationResult(
            submission_id=submission_id,
            outcome=ConfirmationOutcome.CONFIRMED,
            slot_number=slot_number,
        )

    def verify_transaction(self, submission_id: UUID, transaction_hash: str) -> VerifyPaymentResponse:
        submission = self.get_submission(submission_id)
        if submission.status == SubmissionStatus.CONFIRMED:
            return VerifyPaymentResponse(
                status=VerificationStatus.ALREADY_CONFIRMED,
                slot_number=submission.slot_number,
                message=f"Submission already confirmed at slot #{submission.slot_number}",
            )

        transaction_hash = transaction_hash.strip().lower()
        if not transaction_hash:
            return VerifyPaymentResponse(
                status=VerificationStatus.INVALID,
                message="A transaction hash is required",
            )

        try:
            tx = self.gateway.transaction_by_hash(transaction_hash)
        except GatewayUnavailableError as e:
            logger.warning("Transaction lookup for submission %s failed: %s", submission_id, e)
            return VerifyPaymentResponse(
                status=VerificationStatus.INVALID,
                message="Could not reach the ledger, please try again",
            )

        if tx is None:
            return VerifyPaymentResponse(
                status=VerificationStatus.INVALID,
                message=f"Transaction {transaction_hash} not found",
            )

        result = self.confirm(submission_id, Evidence.from_transaction(transaction_hash, tx.recipient, tx.value))

        if result.outcome == ConfirmationOutcome.CONFIRMED:
            return VerifyPaymentResponse(
                status=VerificationStatus.CONFIRMED,
                slot_number=result.slot_number,
                message=f"Payment verified! Your submission is now live at slot #{result.slot_number}",
            )
        if result.outcome == ConfirmationOutcome.ALREADY_CONFIRMED:
            return VerifyPaymentResponse(
                status=VerificationStatus.ALREADY_CONFIRMED,
                slot_number=result.slot_number,
                message=f"Submission already confirmed at slot #{result.slot_number}",
            )
        if result.outcome == ConfirmationOutcome.CAPACITY_EXHAUSTED:
            return VerifyPaymentResponse(
                status=VerificationStatus.CAPACITY_EXHAUSTED,
                message="All slots are taken",
            )
        return VerifyPaymentResponse(status=VerificationStatus.INVALID, message=result.reason)

    def get_payment_status(self, submission_id: UUID, check_ledger: bool = False) -> PaymentStatusResponse:
        submission = self.get_submission(submission_id)

        if check_ledger and submission.status == SubmissionStatus.PENDING:
            try:
                balance = self.gateway.balance_of(submission.payment_address)
            except GatewayUnavailableError as e:
                logger.warning("Balance check for submission %s failed: %s", submission_id, e)
            else:
                if balance >= submission.payment_amount:
                    self.confirm(submission_id, Evidence.from_balance(submission.payment_address, balance))
                    submission = self.get_submission(submission_id)

        return PaymentStatusResponse(
            status=submission.status,
            slot_number=submission.slot_number,
            transaction_hash=submission.transaction_hash,
        )

    def get_stats(self) -> StatsResponse:
        counters = GlobalCounters(**self.storage.get_counters())
        return StatsResponse(
            total_capacity=counters.total_capacity,
            used_slots=counters.used_slots,
            available_slots=counters.available_slots,
            total_value_collected=counters.total_value_collected,
            last_updated=counters.last_updated,
        )

    def _transaction_already_used(self, txn, transaction_hash: str) -> Optional[str]:
        other = txn.find_by_transaction_hash(transaction_hash)
        if other:
            return f"Transaction {transaction_hash} already confirmed submission {other['id']}"
        return None

    def _rejected(self, submission_id: UUID, reason: str) -> ConfirmationResult:
        logger.info("Confirmation of submission %s rejected: %s", submission_id, reason)
        return ConfirmationResult(
            submission_id=submission_id,
            outcome=ConfirmationOutcome.REJECTED,
            reason=reason,
        )
