"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional

# Set up test environment variables before importing modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from payments_recon.config import ReconciliationPolicy
from payments_recon.reconciliation.errors import AlertPersistenceError, AlertNotFoundError
from payments_recon.reconciliation.models import (
    AlertDraft,
    AlertFilter,
    AlertOrder,
    AlertPatch,
    AlertSeverity,
    AlertType,
    ResourceType,
    ReconciliationAlert,
    TransactionRecord,
    PaymentLinkRecord,
    WebhookEventRecord,
    CheckoutSessionRecord,
)
from payments_recon.reconciliation.ports import (
    AlertStore,
    TransactionSource,
    PaymentLinkSource,
    WebhookEventSource,
    CheckoutSessionSource,
)
from payments_recon.reconciliation.service import ReconciliationService

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0)


class FakeTransactionSource(TransactionSource):
    """Returns the configured records and remembers the last query."""

    def __init__(self, records: Optional[List[TransactionRecord]] = None):
        self.records = records or []
        self.calls: List[Dict[str, Any]] = []

    async def find_stale_completed_transactions_without_link(
        self, older_than, organization_id=None, limit=None
    ):
        self.calls.append({"older_than": older_than, "organization_id": organization_id, "limit": limit})
        return list(self.records)


class FakePaymentLinkSource(PaymentLinkSource):

    def __init__(self, records: Optional[List[PaymentLinkRecord]] = None):
        self.records = records or []
        self.calls: List[Dict[str, Any]] = []

    async def find_stale_completed_payment_links_without_transaction(
        self, older_than, organization_id=None, limit=None
    ):
        self.calls.append({"older_than": older_than, "organization_id": organization_id, "limit": limit})
        return list(self.records)


class FakeWebhookEventSource(WebhookEventSource):

    def __init__(self, records: Optional[List[WebhookEventRecord]] = None):
        self.records = records or []
        self.calls: List[Dict[str, Any]] = []

    async def find_delayed_unprocessed_webhook_events(
        self, older_than, min_attempts=1, organization_id=None, limit=None
    ):
        self.calls.append({
            "older_than": older_than,
            "min_attempts": min_attempts,
            "organization_id": organization_id,
            "limit": limit,
        })
        return list(self.records)


class FakeCheckoutSessionSource(CheckoutSessionSource):

    def __init__(self, records: Optional[List[CheckoutSessionRecord]] = None):
        self.records = records or []
        self.calls: List[Dict[str, Any]] = []

    async def find_stale_completed_checkout_sessions_without_transactions(
        self, older_than, organization_id=None, limit=None
    ):
        self.calls.append({"older_than": older_than, "organization_id": organization_id, "limit": limit})
        return list(self.records)


class InMemoryAlertStore(AlertStore):
    """Alert store over a plain list, enforcing one unresolved alert per id."""

    def __init__(self, clock=lambda: FIXED_NOW):
        self.alerts: List[ReconciliationAlert] = []
        self.clock = clock
        self.create_calls: List[str] = []

    def add(self, alert: ReconciliationAlert) -> ReconciliationAlert:
        self.alerts.append(alert)
        return alert

    async def find_unresolved_alert_by_id(self, alert_id):
        for alert in self.alerts:
            if alert.id == alert_id and not alert.resolved:
                return alert
        return None

    async def create_alert(self, draft: AlertDraft):
        self.create_calls.append(draft.id)
        if await self.find_unresolved_alert_by_id(draft.id) is not None:
            raise AlertPersistenceError(f"Unresolved alert {draft.id} already exists", alert_id=draft.id)
        alert = ReconciliationAlert.from_draft(draft, created_at=self.clock())
        self.alerts.append(alert)
        return alert

    async def list_alerts(self, alert_filter, order=AlertOrder.SEVERITY_THEN_RECENCY, limit=None):
        matching = [a for a in self.alerts if alert_filter.matches(a)]
        if order == AlertOrder.SEVERITY_THEN_RECENCY:
            matching.sort(key=lambda a: (a.severity.rank, a.created_at), reverse=True)
        else:
            matching.sort(key=lambda a: a.created_at, reverse=True)
        return matching[:limit] if limit is not None else matching

    async def count_alerts(self, alert_filter):
        return sum(1 for a in self.alerts if alert_filter.matches(a))

    async def find_most_recent_alert(self, alert_filter):
        matching = [a for a in self.alerts if alert_filter.matches(a)]
        return max(matching, key=lambda a: a.created_at) if matching else None

    def _apply(self, alert: ReconciliationAlert, patch: AlertPatch) -> None:
        if patch.resolved is not None:
            alert.resolved = patch.resolved
        if patch.resolved_at is not None:
            alert.resolved_at = patch.resolved_at
        if patch.metadata is not None:
            if patch.merge_metadata:
                alert.metadata = {**alert.metadata, **patch.metadata}
            else:
                alert.metadata = dict(patch.metadata)

    async def update_alert(self, alert_id, patch):
        alert = await self.find_unresolved_alert_by_id(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"No unresolved alert {alert_id}", alert_id=alert_id)
        self._apply(alert, patch)
        return alert

    async def update_many_alerts(self, alert_filter, patch):
        matching = [a for a in self.alerts if alert_filter.matches(a)]
        for alert in matching:
            self._apply(alert, patch)
        return len(matching)


def make_alert(
    resource_id: str,
    alert_type: AlertType = AlertType.ORPHANED_TRANSACTION,
    severity: AlertSeverity = AlertSeverity.HIGH,
    created_at: Optional[datetime] = None,
    organization_id: Optional[str] = "org_1",
    resolved: bool = False,
    metadata: Optional[Dict[str, Any]] = None,
) -> ReconciliationAlert:
    """Build a stored alert directly, bypassing detection."""
    resource_type = {
        AlertType.ORPHANED_TRANSACTION: ResourceType.TRANSACTION,
        AlertType.MISSING_PAYMENT_LINK: ResourceType.PAYMENT_LINK,
        AlertType.WEBHOOK_DELIVERY_LAG: ResourceType.WEBHOOK,
    }[alert_type]
    return ReconciliationAlert(
        id=f"{alert_type.value}_{resource_id}",
        type=alert_type,
        severity=severity,
        title="Test alert",
        description=f"Test alert for {resource_id}",
        resource_id=resource_id,
        resource_type=resource_type,
        metadata=metadata or {},
        resolved=resolved,
        created_at=created_at or FIXED_NOW,
        organization_id=organization_id,
    )


@pytest.fixture
def now() -> datetime:
    """Fixed reference time used as the service clock."""
    return FIXED_NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def policy() -> ReconciliationPolicy:
    """Default policy values."""
    return ReconciliationPolicy()


@pytest.fixture
def transaction_source():
    return FakeTransactionSource()


@pytest.fixture
def payment_link_source():
    return FakePaymentLinkSource()


@pytest.fixture
def webhook_source():
    return FakeWebhookEventSource()


@pytest.fixture
def checkout_source():
    return FakeCheckoutSessionSource()


@pytest.fixture
def alert_store(clock):
    return InMemoryAlertStore(clock=clock)


@pytest.fixture
def service(
    transaction_source,
    payment_link_source,
    webhook_source,
    checkout_source,
    alert_store,
    policy,
    clock,
):
    """Reconciliation service wired to in-memory fakes."""
    return ReconciliationService(
        transactions=transaction_source,
        payment_links=payment_link_source,
        webhook_events=webhook_source,
        checkout_sessions=checkout_source,
        alert_store=alert_store,
        policy=policy,
        clock=clock,
    )


@pytest.fixture
def stale_transaction(now) -> TransactionRecord:
    """Completed transaction an hour old with no payment link."""
    return TransactionRecord(
        id="txn_001",
        status="completed",
        amount=5000,
        currency="usd",
        created_at=now - timedelta(hours=1),
        customer_email="buyer@example.com",
        organization_id="org_1",
    )


@pytest.fixture
def stale_payment_link(now) -> PaymentLinkRecord:
    """Completed payment link two hours old with no transaction."""
    return PaymentLinkRecord(
        id="pl_001",
        status="completed",
        short_code="abc123",
        amount=2500,
        currency="usd",
        completed_at=now - timedelta(hours=2),
        organization_id="org_1",
    )


@pytest.fixture
def delayed_webhook(now) -> WebhookEventRecord:
    """Unprocessed webhook received 15 minutes ago after six attempts."""
    return WebhookEventRecord(
        id="wh_001",
        event_type="payment.succeeded",
        processed=False,
        processing_attempts=6,
        failure_reason="Connection refused",
        created_at=now - timedelta(minutes=15),
        organization_id="org_1",
    )


@pytest.fixture
def orphaned_checkout_session(now) -> CheckoutSessionRecord:
    """Completed checkout session 45 minutes old with no transactions."""
    return CheckoutSessionRecord(
        id="cs_001",
        status="completed",
        amount=7500,
        currency="usd",
        completed_at=now - timedelta(minutes=45),
        transaction_count=0,
        organization_id="org_1",
    )


# Database fixtures for integration tests
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    from payments_recon.database import Base, create_async_engine

    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_session_factory(db_engine):
    """Session factory bound to the test engine."""
    from payments_recon.database import get_async_session_factory

    return get_async_session_factory(db_engine)
