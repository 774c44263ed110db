from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"


class EvidenceKind(str, Enum):
    BALANCE = "balance"
    TRANSACTION = "transaction"


class ConfirmationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    REJECTED = "rejected"
    CAPACITY_EXHAUSTED = "capacity_exhausted"


class VerificationStatus(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    INVALID = "invalid"
    CAPACITY_EXHAUSTED = "capacity_exhausted"


# Confirmed and expired are terminal. Nothing in this package moves a
# submission to expired; the transition exists for retention cleanup.
VALID_TRANSITIONS = {
    SubmissionStatus.PENDING: {SubmissionStatus.CONFIRMED, SubmissionStatus.EXPIRED},
    SubmissionStatus.CONFIRMED: set(),
    SubmissionStatus.EXPIRED: set(),
}


class Submission(BaseModel):
    id: UUID
    payment_address: str
    payment_amount: Decimal
    status: SubmissionStatus
    transaction_hash: Optional[str] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    slot_number: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

    def can_transition(self, new_status: SubmissionStatus) -> bool:
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def can_confirm(self) -> bool:
        return self.can_transition(SubmissionStatus.CONFIRMED)


class GlobalCounters(BaseModel):
    total_capacity: int
    used_slots: int = 0
    total_value_collected: Decimal = Decimal("0")
    last_updated: datetime

    model_config = ConfigDict(from_attributes=True)

    @property
    def available_slots(self) -> int:
        return self.total_capacity - self.used_slots

    def has_capacity(self) -> bool:
        return self.used_slots < self.total_capacity


class Evidence(BaseModel):
    """Observed proof that a submission has been paid for.

    Balance evidence carries the address that was queried and the balance
    seen there. Transaction evidence carries one ledger transaction: its
    hash (lower-cased), the recipient and the transferred value.
    """

    kind: EvidenceKind
    value: Decimal
    address: Optional[str] = None
    recipient: Optional[str] = None
    transaction_hash: Optional[str] = None

    @classmethod
    def from_balance(cls, address: str, balance: Decimal) -> "Evidence":
        return cls(kind=EvidenceKind.BALANCE, value=balance, address=address)

    @classmethod
    def from_transaction(cls, transaction_hash: str, recipient: Optional[str], value: Decimal) -> "Evidence":
        return cls(
            kind=EvidenceKind.TRANSACTION,
            value=value,
            recipient=recipient,
            transaction_hash=transaction_hash.strip().lower() or None,
        )

    def rejection_reason(self, submission: Submission) -> Optional[str]:
        """Return why this evidence does not pay for ``submission``, or None if it does."""
        if self.kind == EvidenceKind.TRANSACTION:
            if not self.transaction_hash:
                return "Transaction evidence without a transaction hash"
            if not self.recipient or self.recipient.lower() != submission.payment_address.lower():
                return f"Transaction recipient {self.recipient} does not match {submission.payment_address}"
            if self.value < submission.payment_amount:
                return f"Transaction value {self.value} is below required {submission.payment_amount}"
            return None

        if not self.address or self.address.lower() != submission.payment_address.lower():
            return f"Balance observed at {self.address} instead of {submission.payment_address}"
        if self.value < submission.payment_amount:
            return f"Balance {self.value} is below required {submission.payment_amount}"
        return None


class ConfirmationResult(BaseModel):
    submission_id: UUID
    outcome: ConfirmationOutcome
    slot_number: Optional[int] = None
    reason: Optional[str] = None


class CreateSubmissionRequest(BaseModel):
    description: Optional[str] = Field(default=None, max_length=500)
    tags: list[str] = Field(default_factory=list, max_length=20)

    model_config = ConfigDict(json_schema_extra={
        "example": {"description": "Sunset over the harbour", "tags": ["sunset", "harbour"]}
    })


class SubmissionCreatedResponse(BaseModel):
    submission_id: UUID
    payment_address: str
    payment_amount: Decimal
    payment_uri: str


class PaymentStatusResponse(BaseModel):
    status: SubmissionStatus
    slot_number: Optional[int] = None
    transaction_hash: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    submission_id: UUID
    transaction_hash: str = Field(..., min_length=1, description="Hash of the payment transaction")

    model_config = ConfigDict(str_strip_whitespace=True, json_schema_extra={
        "example": {
            "submission_id": "550e8400-e29b-41d4-a716-446655440000",
            "transaction_hash": "0x5c504ed432cb51138bcf09aa5e8a410dd4a1e204ef84bfed1be16dfba1b22060"
        }
    })


class VerifyPaymentResponse(BaseModel):
    status: VerificationStatus
    slot_number: Optional[int] = None
    message: str


class StatsResponse(BaseModel):
    total_capacity: int
    used_slots: int
    available_slots: int
    total_value_collected: Decimal
    last_updated: datetime
