"""Detection policies that turn candidate source records into alert drafts.

Every detector is a pure function of (records, now, policy). The candidate
predicate is re-checked here, so a source that returns too much cannot
produce a false alert.
"""

from datetime import datetime
from typing import Iterable, List, Optional

from ..config import ReconciliationPolicy
from .dedup import alert_id
from .models import (
    AlertDraft,
    AlertSeverity,
    AlertType,
    ResourceType,
    TransactionRecord,
    PaymentLinkRecord,
    WebhookEventRecord,
    CheckoutSessionRecord,
)

COMPLETED = "completed"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _format_amount(amount: Optional[int], currency: Optional[str]) -> str:
    if amount is None:
        return "unknown amount"
    return f"{(currency or '').upper()} {amount / 100:.2f}".strip()


def webhook_severity(attempts: int, policy: ReconciliationPolicy) -> AlertSeverity:
    """Severity for a delayed webhook given its processing attempt count."""
    if attempts > policy.webhook_high_attempts:
        return AlertSeverity.HIGH
    if attempts >= policy.webhook_medium_attempts:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def detect_orphaned_transactions(
    transactions: Iterable[TransactionRecord],
    now: datetime,
    policy: ReconciliationPolicy,
) -> List[AlertDraft]:
    """Completed transactions past the staleness threshold with no durable payment link."""
    cutoff = now - policy.orphaned_transaction_threshold
    drafts: List[AlertDraft] = []

    for txn in transactions:
        if txn.status != COMPLETED or txn.has_durable_link or txn.created_at > cutoff:
            continue
        drafts.append(AlertDraft(
            id=alert_id(AlertType.ORPHANED_TRANSACTION, txn.id),
            type=AlertType.ORPHANED_TRANSACTION,
            severity=AlertSeverity.HIGH,
            title="Orphaned Transaction Detected",
            description=(
                f"Transaction {txn.id} ({_format_amount(txn.amount, txn.currency)}) "
                f"has no matching payment link"
            ),
            resource_id=txn.id,
            resource_type=ResourceType.TRANSACTION,
            metadata={
                "transaction_id": txn.id,
                "amount": txn.amount,
                "currency": txn.currency,
                "status": txn.status,
                "customer_email": txn.customer_email,
                "payment_link_id": txn.payment_link_id,
                "created_at": _iso(txn.created_at),
            },
            organization_id=txn.organization_id,
        ))

    return drafts


def detect_missing_payment_links(
    payment_links: Iterable[PaymentLinkRecord],
    now: datetime,
    policy: ReconciliationPolicy,
) -> List[AlertDraft]:
    """Completed payment links past the threshold with no transaction recorded."""
    cutoff = now - policy.missing_payment_link_threshold
    drafts: List[AlertDraft] = []

    for link in payment_links:
        if link.status != COMPLETED or link.transaction_id is not None:
            continue
        # A completed link without a completion time cannot be aged
        if link.completed_at is None or link.completed_at > cutoff:
            continue
        label = link.short_code or link.id
        drafts.append(AlertDraft(
            id=alert_id(AlertType.MISSING_PAYMENT_LINK, link.id),
            type=AlertType.MISSING_PAYMENT_LINK,
            severity=AlertSeverity.MEDIUM,
            title="Missing Transaction for Completed Payment Link",
            description=(
                f"Payment link {label} is marked as completed but has no transaction record"
            ),
            resource_id=link.id,
            resource_type=ResourceType.PAYMENT_LINK,
            metadata={
                "payment_link_id": link.id,
                "short_code": link.short_code,
                "amount": link.amount,
                "currency": link.currency,
                "completed_at": _iso(link.completed_at),
            },
            organization_id=link.organization_id,
        ))

    return drafts


def detect_webhook_delivery_lag(
    events: Iterable[WebhookEventRecord],
    now: datetime,
    policy: ReconciliationPolicy,
) -> List[AlertDraft]:
    """Unprocessed webhook events past the delay threshold that have been retried."""
    cutoff = now - policy.webhook_delay_threshold
    drafts: List[AlertDraft] = []

    for event in events:
        if event.processed or event.processing_attempts < policy.webhook_min_attempts:
            continue
        if event.created_at > cutoff:
            continue
        drafts.append(AlertDraft(
            id=alert_id(AlertType.WEBHOOK_DELIVERY_LAG, event.id),
            type=AlertType.WEBHOOK_DELIVERY_LAG,
            severity=webhook_severity(event.processing_attempts, policy),
            title="Webhook Delivery Delayed",
            description=(
                f"Webhook {event.event_type} has failed {event.processing_attempts} times "
                f"and remains unprocessed"
            ),
            resource_id=event.id,
            resource_type=ResourceType.WEBHOOK,
            metadata={
                "webhook_id": event.id,
                "provider": event.provider,
                "event_type": event.event_type,
                "attempts": event.processing_attempts,
                "failure_reason": event.failure_reason,
                "created_at": _iso(event.created_at),
                "last_processed_at": _iso(event.last_processed_at),
            },
            organization_id=event.organization_id,
        ))

    return drafts


def detect_orphaned_checkout_sessions(
    sessions: Iterable[CheckoutSessionRecord],
    now: datetime,
    policy: ReconciliationPolicy,
) -> List[AlertDraft]:
    """Completed checkout sessions past the threshold with zero linked transactions.

    Reported as orphaned transactions: money was claimed but no durable
    artifact exists.
    """
    cutoff = now - policy.checkout_session_threshold
    drafts: List[AlertDraft] = []

    for session in sessions:
        if session.status != COMPLETED or session.transaction_count > 0:
            continue
        if session.completed_at is None or session.completed_at > cutoff:
            continue
        drafts.append(AlertDraft(
            id=alert_id(AlertType.ORPHANED_TRANSACTION, session.id),
            type=AlertType.ORPHANED_TRANSACTION,
            severity=AlertSeverity.HIGH,
            title="Completed Checkout Session Without Transaction",
            description=(
                f"Checkout session {session.id} is marked as completed "
                f"but has no transaction records"
            ),
            resource_id=session.id,
            resource_type=ResourceType.CHECKOUT_SESSION,
            metadata={
                "checkout_session_id": session.id,
                "amount": session.amount,
                "currency": session.currency,
                "status": session.status,
                "completed_at": _iso(session.completed_at),
            },
            organization_id=session.organization_id,
        ))

    return drafts
