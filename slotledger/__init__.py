"""
Payment Confirmation & Slot Allocation

This module provides:
- Submissions that wait for an on-chain payment
- Balance-based background reconciliation
- Manual verification by transaction hash
- Atomic confirmation with dense, unique slot numbers
- Consistent global counters under concurrent confirmation
"""

from .models import (
    SubmissionStatus,
    ConfirmationOutcome,
    VerificationStatus,
    Evidence,
    Submission,
    GlobalCounters,
)
from .gateway import LedgerGateway, EtherscanGateway, GatewayUnavailableError
from .service import PaymentService
from .reconciler import PaymentReconciler

__all__ = [
    "SubmissionStatus",
    "ConfirmationOutcome",
    "VerificationStatus",
    "Evidence",
    "Submission",
    "GlobalCounters",
    "LedgerGateway",
    "EtherscanGateway",
    "GatewayUnavailableError",
    "PaymentService",
    "PaymentReconciler",
]
