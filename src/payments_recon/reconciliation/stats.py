"""Statistics over reconciliation alerts."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ..config import ReconciliationPolicy
from .models import (
    AlertFilter,
    AlertType,
    ReconciliationAlert,
    ReconciliationStats,
    utcnow,
)
from .ports import AlertStore

logger = logging.getLogger(__name__)


def next_run_after(last_run_at: datetime, interval: timedelta) -> datetime:
    """Projected time of the next scheduled run."""
    return last_run_at + interval


def build_run_stats(
    alerts: Iterable[ReconciliationAlert],
    run_started_at: datetime,
    interval: timedelta,
) -> ReconciliationStats:
    """Snapshot of the alerts emitted by a single run."""
    counts = {alert_type: 0 for alert_type in AlertType}
    for alert in alerts:
        counts[alert.type] += 1

    return ReconciliationStats(
        orphaned_transactions=counts[AlertType.ORPHANED_TRANSACTION],
        missing_payment_links=counts[AlertType.MISSING_PAYMENT_LINK],
        webhook_delay_alerts=counts[AlertType.WEBHOOK_DELIVERY_LAG],
        total_issues=sum(counts.values()),
        last_run_at=run_started_at,
        next_run_at=next_run_after(run_started_at, interval),
    )


class StatsAggregator:
    """Counts unresolved alerts per type for a tenant and projects the next run."""

    def __init__(
        self,
        store: AlertStore,
        policy: ReconciliationPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy
        self.clock = clock

    async def get_stats(self, organization_id: Optional[str] = None) -> ReconciliationStats:
        """
        Unresolved alert counts for the organization. When no alert has ever
        been created the current time is used as the last-run baseline.
        """
        counts = {}
        for alert_type in AlertType:
            counts[alert_type] = await self.store.count_alerts(AlertFilter(
                organization_id=organization_id,
                type=alert_type,
                resolved=False,
            ))

        most_recent = await self.store.find_most_recent_alert(
            AlertFilter(organization_id=organization_id)
        )
        last_run_at = most_recent.created_at if most_recent else self.clock()

        return ReconciliationStats(
            orphaned_transactions=counts[AlertType.ORPHANED_TRANSACTION],
            missing_payment_links=counts[AlertType.MISSING_PAYMENT_LINK],
            webhook_delay_alerts=counts[AlertType.WEBHOOK_DELIVERY_LAG],
            total_issues=sum(counts.values()),
            last_run_at=last_run_at,
            next_run_at=next_run_after(last_run_at, self.policy.run_interval),
        )
