"""Alert lifecycle: active listing, manual resolution and the stale-alert sweep."""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from ..config import ReconciliationPolicy
from .errors import AlertNotFoundError, ResolutionError
from .models import (
    AlertFilter,
    AlertOrder,
    AlertPatch,
    ReconciliationAlert,
    utcnow,
)
from .ports import AlertStore

logger = logging.getLogger(__name__)

AUTO_RESOLVE_REASON = "Automatically resolved due to age"


class AlertLifecycleManager:
    """Mutates alerts after creation. Alerts are resolved, never deleted."""

    def __init__(
        self,
        store: AlertStore,
        policy: ReconciliationPolicy,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.policy = policy
        self.clock = clock

    async def get_active_alerts(
        self,
        organization_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ReconciliationAlert]:
        """Unresolved alerts, highest severity first and newest first within a severity.

        Args:
            organization_id: Tenant scope. None lists every tenant.
            limit: Maximum number of alerts returned.

        Returns:
            At most ``limit`` alerts.
        """
        if limit <= 0:
            return []
        alerts = await self.store.list_alerts(
            AlertFilter(organization_id=organization_id, resolved=False),
            order=AlertOrder.SEVERITY_THEN_RECENCY,
            limit=limit,
        )
        return alerts[:limit]

    async def resolve_alert(self, alert_id: str, reason: Optional[str] = None) -> bool:
        """Mark an alert resolved.

        Args:
            alert_id: Deterministic id of the unresolved alert.
            reason: Optional note stored as ``metadata["resolved_reason"]``.

        Returns:
            True when the alert was resolved, False on any persistence failure.
        """
        try:
            await self._resolve(alert_id, reason)
        except ResolutionError as e:
            logger.error(f"Failed to resolve alert {alert_id}: {e}")
            return False

        logger.info(f"Resolved alert {alert_id}")
        return True

    async def _resolve(self, alert_id: str, reason: Optional[str]) -> ReconciliationAlert:
        patch = AlertPatch(
            resolved=True,
            resolved_at=self.clock(),
            metadata={"resolved_reason": reason} if reason else None,
            merge_metadata=True,
        )
        try:
            return await self.store.update_alert(alert_id, patch)
        except AlertNotFoundError as e:
            raise ResolutionError(f"no unresolved alert {alert_id}") from e
        except Exception as e:
            raise ResolutionError(str(e)) from e

    async def cleanup_stale_alerts(self) -> int:
        """Auto-resolve unresolved alerts older than the retention window.

        Returns:
            Number of alerts resolved.
        """
        now = self.clock()
        threshold = now - self.policy.stale_alert_retention

        count = await self.store.update_many_alerts(
            AlertFilter(resolved=False, created_before=threshold),
            AlertPatch(
                resolved=True,
                resolved_at=now,
                metadata={"auto_resolved": True, "reason": AUTO_RESOLVE_REASON},
                merge_metadata=False,
            ),
        )

        logger.info(f"Auto-resolved {count} stale reconciliation alerts")
        return count
