"""
Unit Tests for manual transaction verification and the status read path.
"""

import threading
from decimal import Decimal
from uuid import UUID

import pytest

from slotledger.models import SubmissionStatus, VerificationStatus
from slotledger.reconciler import PaymentReconciler
from slotledger.service import SubmissionNotFoundError

TX_HASH = "0x5c504ed432cb51138bcf09aa5e8a410dd4a1e204ef84bfed1be16dfba1b22060"


class TestVerifyTransaction:
    """Tests for the manual verifier."""

    def test_matching_transaction_confirms(self, service, gateway, submit, settings):
        """Test that a matching transaction confirms and stores the hash."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, settings.wallet_address.upper().replace("0X", "0x"), Decimal("0.001"))

        response = service.verify_transaction(submission_id, TX_HASH)

        assert response.status == VerificationStatus.CONFIRMED
        assert response.slot_number == 1
        submission = service.get_submission(submission_id)
        assert submission.status == SubmissionStatus.CONFIRMED
        assert submission.transaction_hash == TX_HASH

    def test_already_confirmed_skips_ledger(self, service, gateway, submit, settings):
        """Test that a confirmed submission answers without a ledger call."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, settings.wallet_address, Decimal("0.001"))
        service.verify_transaction(submission_id, TX_HASH)
        calls = gateway.transaction_calls

        response = service.verify_transaction(submission_id, TX_HASH)

        assert response.status == VerificationStatus.ALREADY_CONFIRMED
        assert response.slot_number == 1
        assert gateway.transaction_calls == calls

    def test_wrong_recipient_is_invalid(self, service, gateway, submit):
        """Test that a transaction to another address leaves the submission pending."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, "0x000000000000000000000000000000000000dEaD", Decimal("1"))

        response = service.verify_transaction(submission_id, TX_HASH)

        assert response.status == VerificationStatus.INVALID
        assert service.get_submission(submission_id).status == SubmissionStatus.PENDING
        assert service.get_stats().used_slots == 0

    def test_insufficient_value_is_invalid(self, service, gateway, submit, settings):
        """Test that an underpaying transaction is invalid."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, settings.wallet_address, Decimal("0.0001"))

        response = service.verify_transaction(submission_id, TX_HASH)

        assert response.status == VerificationStatus.INVALID

    def test_unknown_transaction_is_invalid(self, service, submit):
        """Test that a hash the ledger does not know is invalid."""
        submission_id = submit(service)

        response = service.verify_transaction(submission_id, TX_HASH)

        assert response.status == VerificationStatus.INVALID
        assert "not found" in response.message

    def test_gateway_failure_is_invalid_and_retryable(self, service, gateway, submit, settings):
        """Test that a ledger outage returns invalid and a retry can succeed."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, settings.wallet_address, Decimal("0.001"))
        gateway.fail_transactions = True

        first = service.verify_transaction(submission_id, TX_HASH)
        assert first.status == VerificationStatus.INVALID
        assert service.get_submission(submission_id).status == SubmissionStatus.PENDING

        gateway.fail_transactions = False
        second = service.verify_transaction(submission_id, TX_HASH)
        assert second.status == VerificationStatus.CONFIRMED

    def test_whitespace_hash_is_invalid_without_ledger_call(self, service, gateway, submit):
        """Test that a blank hash is refused before the ledger is asked."""
        submission_id = submit(service)

        response = service.verify_transaction(submission_id, "   ")

        assert response.status == VerificationStatus.INVALID
        assert gateway.transaction_calls == 0
        assert service.get_submission(submission_id).status == SubmissionStatus.PENDING

    def test_hash_is_normalised_before_lookup(self, service, gateway, submit, settings):
        """Test that surrounding whitespace and upper case still find the transaction."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, settings.wallet_address, Decimal("0.001"))

        response = service.verify_transaction(submission_id, f"  {TX_HASH.upper()}  ")

        assert response.status == VerificationStatus.CONFIRMED
        assert service.get_submission(submission_id).transaction_hash == TX_HASH.lower()

    def test_unknown_submission_fails(self, service):
        """Test that verifying a non-existent submission raises."""
        with pytest.raises(SubmissionNotFoundError):
            service.verify_transaction(UUID("00000000-0000-0000-0000-000000000000"), TX_HASH)

    def test_race_with_reconciler_confirms_once(self, service, gateway, submit, settings):
        """Test that the reconciler and verifier racing on one submission confirm it once."""
        submission_id = submit(service)
        gateway.balance = Decimal("0.0015")
        gateway.add_transaction(TX_HASH, settings.wallet_address, Decimal("0.001"))
        reconciler = PaymentReconciler(service)
        barrier = threading.Barrier(2)
        results = {}

        def sweep():
            barrier.wait()
            results["sweep"] = reconciler.run_once()

        def verify():
            barrier.wait()
            results["verify"] = service.verify_transaction(submission_id, TX_HASH)

        threads = [threading.Thread(target=sweep), threading.Thread(target=verify)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        assert service.get_stats().used_slots == 1
        assert service.get_submission(submission_id).slot_number == 1
        assert results["verify"].slot_number == 1
        assert results["verify"].status in (VerificationStatus.CONFIRMED, VerificationStatus.ALREADY_CONFIRMED)
        if results["verify"].status == VerificationStatus.ALREADY_CONFIRMED:
            assert results["sweep"].confirmed == 1
        else:
            assert results["sweep"].confirmed == 0


class TestPaymentStatus:
    """Tests for the confirmation status read."""

    def test_pending_status(self, service, submit):
        """Test the status of a fresh submission."""
        submission_id = submit(service)

        response = service.get_payment_status(submission_id)

        assert response.status == SubmissionStatus.PENDING
        assert response.slot_number is None
        assert response.transaction_hash is None

    def test_plain_read_does_not_touch_ledger(self, service, gateway, submit):
        """Test that a status read without check_ledger never calls the gateway."""
        submission_id = submit(service)
        gateway.balance = Decimal("1")

        response = service.get_payment_status(submission_id)

        assert response.status == SubmissionStatus.PENDING
        assert gateway.balance_calls == 0

    def test_check_ledger_confirms_paid_submission(self, service, gateway, submit):
        """Test that an on-demand balance check confirms a paid submission."""
        submission_id = submit(service)
        gateway.balance = Decimal("0.0015")

        response = service.get_payment_status(submission_id, check_ledger=True)

        assert response.status == SubmissionStatus.CONFIRMED
        assert response.slot_number == 1

    def test_check_ledger_survives_gateway_failure(self, service, gateway, submit):
        """Test that a ledger outage during a status check returns the current status."""
        submission_id = submit(service)
        gateway.balance = Decimal("1")
        gateway.fail_balance_calls = {1}

        response = service.get_payment_status(submission_id, check_ledger=True)

        assert response.status == SubmissionStatus.PENDING

    def test_confirmed_status_includes_hash(self, service, gateway, submit, settings):
        """Test that a manually verified submission reports its transaction hash."""
        submission_id = submit(service)
        gateway.add_transaction(TX_HASH, settings.wallet_address, Decimal("0.001"))
        service.verify_transaction(submission_id, TX_HASH)

        response = service.get_payment_status(submission_id, check_ledger=True)

        assert response.status == SubmissionStatus.CONFIRMED
        assert response.slot_number == 1
        assert response.transaction_hash == TX_HASH
        assert gateway.balance_calls == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
