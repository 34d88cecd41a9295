"""Tests for the detection policies."""

import pytest
from datetime import timedelta

from payments_recon.config import ReconciliationPolicy
from payments_recon.reconciliation.detectors import (
    detect_orphaned_transactions,
    detect_missing_payment_links,
    detect_webhook_delivery_lag,
    detect_orphaned_checkout_sessions,
    webhook_severity,
)
from payments_recon.reconciliation.models import (
    AlertSeverity,
    AlertType,
    ResourceType,
    TransactionRecord,
)


class TestOrphanedTransactionDetector:
    """Tests for detect_orphaned_transactions."""

    def test_detects_stale_transaction_without_link(self, stale_transaction, now, policy):
        drafts = detect_orphaned_transactions([stale_transaction], now, policy)

        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.id == "orphaned_transaction_txn_001"
        assert draft.type == AlertType.ORPHANED_TRANSACTION
        assert draft.severity == AlertSeverity.HIGH
        assert draft.resource_id == "txn_001"
        assert draft.resource_type == ResourceType.TRANSACTION
        assert draft.organization_id == "org_1"
        assert draft.metadata["transaction_id"] == "txn_001"
        assert draft.metadata["amount"] == 5000
        assert draft.metadata["customer_email"] == "buyer@example.com"

    def test_dangling_link_is_orphaned(self, stale_transaction, now, policy):
        txn = stale_transaction.model_copy(update={
            "payment_link_id": "pl_deleted",
            "payment_link_exists": False,
        })

        drafts = detect_orphaned_transactions([txn], now, policy)

        assert len(drafts) == 1
        assert drafts[0].metadata["payment_link_id"] == "pl_deleted"

    def test_linked_transaction_is_not_orphaned(self, stale_transaction, now, policy):
        txn = stale_transaction.model_copy(update={
            "payment_link_id": "pl_001",
            "payment_link_exists": True,
        })

        assert detect_orphaned_transactions([txn], now, policy) == []

    def test_linked_transaction_without_existence_flag_is_not_orphaned(self, stale_transaction, now, policy):
        """Sources that do not check link existence must not raise false alerts."""
        txn = TransactionRecord(
            id="txn_plain",
            status="completed",
            amount=100,
            currency="usd",
            created_at=now - timedelta(hours=1),
            payment_link_id="pl_001",
        )

        assert txn.payment_link_exists is None
        assert detect_orphaned_transactions([txn], now, policy) == []

    def test_recent_transaction_is_ignored(self, stale_transaction, now, policy):
        txn = stale_transaction.model_copy(update={"created_at": now - timedelta(minutes=10)})

        assert detect_orphaned_transactions([txn], now, policy) == []

    def test_threshold_boundary_is_inclusive(self, stale_transaction, now, policy):
        """A transaction exactly at the threshold is stale; one second younger is not."""
        at_cutoff = stale_transaction.model_copy(update={
            "created_at": now - policy.orphaned_transaction_threshold,
        })
        inside = stale_transaction.model_copy(update={
            "id": "txn_002",
            "created_at": now - policy.orphaned_transaction_threshold + timedelta(seconds=1),
        })

        drafts = detect_orphaned_transactions([at_cutoff, inside], now, policy)

        assert [d.resource_id for d in drafts] == ["txn_001"]

    def test_non_completed_transaction_is_ignored(self, stale_transaction, now, policy):
        txn = stale_transaction.model_copy(update={"status": "pending"})

        assert detect_orphaned_transactions([txn], now, policy) == []


class TestMissingPaymentLinkDetector:
    """Tests for detect_missing_payment_links."""

    def test_detects_completed_link_without_transaction(self, stale_payment_link, now, policy):
        drafts = detect_missing_payment_links([stale_payment_link], now, policy)

        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.id == "missing_payment_link_pl_001"
        assert draft.severity == AlertSeverity.MEDIUM
        assert draft.resource_type == ResourceType.PAYMENT_LINK
        assert draft.metadata["short_code"] == "abc123"
        assert "abc123" in draft.description

    def test_link_with_transaction_is_ignored(self, stale_payment_link, now, policy):
        link = stale_payment_link.model_copy(update={"transaction_id": "txn_123"})

        assert detect_missing_payment_links([link], now, policy) == []

    def test_link_inside_threshold_is_ignored(self, stale_payment_link, now, policy):
        link = stale_payment_link.model_copy(update={"completed_at": now - timedelta(minutes=60)})

        assert detect_missing_payment_links([link], now, policy) == []

    def test_link_without_completion_time_is_ignored(self, stale_payment_link, now, policy):
        link = stale_payment_link.model_copy(update={"completed_at": None})

        assert detect_missing_payment_links([link], now, policy) == []


class TestWebhookDeliveryLagDetector:
    """Tests for detect_webhook_delivery_lag and its severity split."""

    def test_detects_delayed_webhook(self, delayed_webhook, now, policy):
        drafts = detect_webhook_delivery_lag([delayed_webhook], now, policy)

        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.id == "webhook_delivery_lag_wh_001"
        assert draft.severity == AlertSeverity.HIGH
        assert draft.resource_type == ResourceType.WEBHOOK
        assert draft.metadata["attempts"] == 6
        assert draft.metadata["failure_reason"] == "Connection refused"

    @pytest.mark.parametrize("attempts,expected", [
        (1, AlertSeverity.LOW),
        (2, AlertSeverity.LOW),
        (3, AlertSeverity.MEDIUM),
        (5, AlertSeverity.MEDIUM),
        (6, AlertSeverity.HIGH),
    ])
    def test_severity_by_attempts(self, attempts, expected, policy):
        assert webhook_severity(attempts, policy) == expected

    def test_processed_webhook_is_ignored(self, delayed_webhook, now, policy):
        event = delayed_webhook.model_copy(update={"processed": True})

        assert detect_webhook_delivery_lag([event], now, policy) == []

    def test_never_attempted_webhook_is_ignored(self, delayed_webhook, now, policy):
        event = delayed_webhook.model_copy(update={"processing_attempts": 0})

        assert detect_webhook_delivery_lag([event], now, policy) == []

    def test_recent_webhook_is_ignored(self, delayed_webhook, now, policy):
        event = delayed_webhook.model_copy(update={"created_at": now - timedelta(minutes=5)})

        assert detect_webhook_delivery_lag([event], now, policy) == []

    def test_custom_attempt_boundaries(self, delayed_webhook, now):
        policy = ReconciliationPolicy(webhook_medium_attempts=2, webhook_high_attempts=3)
        event = delayed_webhook.model_copy(update={"processing_attempts": 4})

        drafts = detect_webhook_delivery_lag([event], now, policy)

        assert drafts[0].severity == AlertSeverity.HIGH


class TestOrphanedCheckoutSessionDetector:
    """Tests for detect_orphaned_checkout_sessions."""

    def test_detects_session_without_transactions(self, orphaned_checkout_session, now, policy):
        drafts = detect_orphaned_checkout_sessions([orphaned_checkout_session], now, policy)

        assert len(drafts) == 1
        draft = drafts[0]
        assert draft.id == "orphaned_transaction_cs_001"
        assert draft.type == AlertType.ORPHANED_TRANSACTION
        assert draft.severity == AlertSeverity.HIGH
        assert draft.resource_type == ResourceType.CHECKOUT_SESSION
        assert draft.metadata["checkout_session_id"] == "cs_001"

    def test_session_with_transactions_is_ignored(self, orphaned_checkout_session, now, policy):
        session = orphaned_checkout_session.model_copy(update={"transaction_count": 2})

        assert detect_orphaned_checkout_sessions([session], now, policy) == []

    def test_open_session_is_ignored(self, orphaned_checkout_session, now, policy):
        session = orphaned_checkout_session.model_copy(update={"status": "open"})

        assert detect_orphaned_checkout_sessions([session], now, policy) == []

    def test_recent_session_is_ignored(self, orphaned_checkout_session, now, policy):
        session = orphaned_checkout_session.model_copy(update={"completed_at": now - timedelta(minutes=20)})

        assert detect_orphaned_checkout_sessions([session], now, policy) == []


class TestDetectorInputs:
    """Detectors re-check every predicate on what sources hand them."""

    def test_mixed_records_only_yield_matches(self, now, policy):
        records = [
            TransactionRecord(
                id=f"txn_{i}",
                status="completed" if i % 2 == 0 else "failed",
                amount=100,
                currency="usd",
                created_at=now - timedelta(hours=2),
            )
            for i in range(6)
        ]

        drafts = detect_orphaned_transactions(records, now, policy)

        assert [d.resource_id for d in drafts] == ["txn_0", "txn_2", "txn_4"]

    def test_empty_inputs(self, now, policy):
        assert detect_orphaned_transactions([], now, policy) == []
        assert detect_missing_payment_links([], now, policy) == []
        assert detect_webhook_delivery_lag([], now, policy) == []
        assert detect_orphaned_checkout_sessions([], now, policy) == []
