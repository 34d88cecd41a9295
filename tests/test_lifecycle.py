"""Tests for alert listing, resolution and the stale-alert sweep."""

import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

from payments_recon.reconciliation.errors import AlertPersistenceError
from payments_recon.reconciliation.lifecycle import AUTO_RESOLVE_REASON
from payments_recon.reconciliation.models import AlertSeverity, AlertType

from conftest import make_alert


class TestGetActiveAlerts:
    """Tests for get_active_alerts ordering and limits."""

    async def test_orders_by_severity_then_recency(self, service, alert_store, now):
        alert_store.add(make_alert("a", AlertType.WEBHOOK_DELIVERY_LAG, AlertSeverity.LOW, now - timedelta(minutes=1)))
        alert_store.add(make_alert("b", AlertType.MISSING_PAYMENT_LINK, AlertSeverity.MEDIUM, now - timedelta(hours=2)))
        alert_store.add(make_alert("c", AlertType.ORPHANED_TRANSACTION, AlertSeverity.HIGH, now - timedelta(hours=3)))
        alert_store.add(make_alert("d", AlertType.ORPHANED_TRANSACTION, AlertSeverity.HIGH, now - timedelta(hours=1)))
        alert_store.add(make_alert("e", AlertType.MISSING_PAYMENT_LINK, AlertSeverity.MEDIUM, now - timedelta(minutes=5)))

        alerts = await service.get_active_alerts("org_1", 10)

        assert [a.resource_id for a in alerts] == ["d", "c", "e", "b", "a"]

    async def test_truncates_to_limit(self, service, alert_store, now):
        for i in range(5):
            alert_store.add(make_alert(f"txn_{i}", created_at=now - timedelta(minutes=i)))

        alerts = await service.get_active_alerts("org_1", 3)

        assert [a.resource_id for a in alerts] == ["txn_0", "txn_1", "txn_2"]

    async def test_excludes_resolved_and_other_tenants(self, service, alert_store):
        alert_store.add(make_alert("mine"))
        alert_store.add(make_alert("done", resolved=True))
        alert_store.add(make_alert("theirs", organization_id="org_2"))

        alerts = await service.get_active_alerts("org_1")

        assert [a.resource_id for a in alerts] == ["mine"]

    async def test_non_positive_limit_returns_nothing(self, service, alert_store):
        alert_store.add(make_alert("txn_1"))

        assert await service.get_active_alerts("org_1", 0) == []


class TestResolveAlert:
    """Tests for resolve_alert."""

    async def test_resolve_sets_fields(self, service, alert_store, now):
        alert = alert_store.add(make_alert("txn_1", metadata={"amount": 500}))

        resolved = await service.resolve_alert(alert.id, "Linked to payment link manually")

        assert resolved is True
        assert alert.resolved is True
        assert alert.resolved_at == now
        assert alert.metadata["resolved_reason"] == "Linked to payment link manually"
        assert alert.metadata["amount"] == 500

    async def test_resolve_without_reason_keeps_metadata(self, service, alert_store):
        alert = alert_store.add(make_alert("txn_1", metadata={"amount": 500}))

        assert await service.resolve_alert(alert.id) is True
        assert alert.metadata == {"amount": 500}

    async def test_resolve_unknown_alert_returns_false(self, service):
        assert await service.resolve_alert("orphaned_transaction_missing", "n/a") is False

    async def test_resolve_twice_returns_false(self, service, alert_store):
        alert = alert_store.add(make_alert("txn_1"))

        assert await service.resolve_alert(alert.id) is True
        assert await service.resolve_alert(alert.id) is False

    async def test_persistence_failure_returns_false(self, service, alert_store):
        alert = alert_store.add(make_alert("txn_1"))
        alert_store.update_alert = AsyncMock(side_effect=AlertPersistenceError("write failed"))

        assert await service.resolve_alert(alert.id, "reason") is False
        assert alert.resolved is False

    async def test_unexpected_failure_returns_false(self, service, alert_store):
        alert_store.update_alert = AsyncMock(side_effect=ConnectionError("network down"))

        assert await service.resolve_alert("orphaned_transaction_txn_1") is False


class TestCleanupStaleAlerts:
    """Tests for the retention sweep."""

    async def test_resolves_only_old_unresolved_alerts(self, service, alert_store, now):
        old = alert_store.add(make_alert("old", created_at=now - timedelta(days=8), metadata={"amount": 1}))
        older = alert_store.add(make_alert("older", created_at=now - timedelta(days=30)))
        recent = alert_store.add(make_alert("recent", created_at=now - timedelta(days=2)))
        already = alert_store.add(
            make_alert("already", created_at=now - timedelta(days=10), resolved=True, metadata={"x": 1})
        )

        count = await service.cleanup_stale_alerts()

        assert count == 2
        for alert in (old, older):
            assert alert.resolved is True
            assert alert.resolved_at == now
            assert alert.metadata == {"auto_resolved": True, "reason": AUTO_RESOLVE_REASON}
        assert recent.resolved is False
        assert already.metadata == {"x": 1}

    async def test_covers_every_organization(self, service, alert_store, now):
        alert_store.add(make_alert("a", created_at=now - timedelta(days=8), organization_id="org_1"))
        alert_store.add(make_alert("b", created_at=now - timedelta(days=8), organization_id="org_2"))

        assert await service.cleanup_stale_alerts() == 2

    async def test_nothing_to_clean(self, service):
        assert await service.cleanup_stale_alerts() == 0
