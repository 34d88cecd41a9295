"""Service layer for reconciliation runs and alert management."""

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence

from ..config import ReconciliationPolicy
from .dedup import Deduplicator
from .detectors import (
    detect_orphaned_transactions,
    detect_missing_payment_links,
    detect_webhook_delivery_lag,
    detect_orphaned_checkout_sessions,
)
from .errors import DetectionError
from .lifecycle import AlertLifecycleManager
from .models import (
    AlertDraft,
    AlertSeverity,
    DetectorOutcome,
    PersistOutcome,
    ReconciliationAlert,
    ReconciliationFailure,
    ReconciliationResult,
    ReconciliationStats,
    ResourceType,
    utcnow,
)
from .ports import (
    AlertStore,
    TransactionSource,
    PaymentLinkSource,
    WebhookEventSource,
    CheckoutSessionSource,
)
from .stats import StatsAggregator, build_run_stats

logger = logging.getLogger(__name__)

Fetch = Callable[[], Awaitable[Sequence]]
Detect = Callable[[Sequence, datetime, ReconciliationPolicy], List[AlertDraft]]


class ReconciliationService:
    """Cross-checks transactions, payment links, webhook events and checkout
    sessions, and keeps one deduplicated alert per detected issue."""

    def __init__(
        self,
        transactions: TransactionSource,
        payment_links: PaymentLinkSource,
        webhook_events: WebhookEventSource,
        checkout_sessions: CheckoutSessionSource,
        alert_store: AlertStore,
        policy: Optional[ReconciliationPolicy] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the reconciliation service.

        Args:
            transactions: Read port for payment transactions.
            payment_links: Read port for payment links.
            webhook_events: Read port for inbound webhook events.
            checkout_sessions: Read port for checkout sessions.
            alert_store: Alert persistence port.
            policy: Thresholds and caps. Defaults to ReconciliationPolicy().
            clock: Returns the current naive UTC time.
        """
        self.transactions = transactions
        self.payment_links = payment_links
        self.webhook_events = webhook_events
        self.checkout_sessions = checkout_sessions
        self.alert_store = alert_store
        self.policy = policy or ReconciliationPolicy()
        self.clock = clock
        self.deduplicator = Deduplicator(alert_store)
        self.lifecycle = AlertLifecycleManager(alert_store, self.policy, clock)
        self.stats = StatsAggregator(alert_store, self.policy, clock)

    @classmethod
    def from_session_factory(
        cls,
        session_factory,
        policy: Optional[ReconciliationPolicy] = None,
    ) -> "ReconciliationService":
        """Build a service backed by the SQLAlchemy repositories."""
        from ..database.repository import (
            SqlTransactionSource,
            SqlPaymentLinkSource,
            SqlWebhookEventSource,
            SqlCheckoutSessionSource,
            SqlAlertStore,
        )

        return cls(
            transactions=SqlTransactionSource(session_factory),
            payment_links=SqlPaymentLinkSource(session_factory),
            webhook_events=SqlWebhookEventSource(session_factory),
            checkout_sessions=SqlCheckoutSessionSource(session_factory),
            alert_store=SqlAlertStore(session_factory),
            policy=policy,
        )

    async def run_reconciliation(
        self,
        organization_id: Optional[str] = None,
    ) -> ReconciliationResult:
        """Execute one reconciliation run.

        Detect, dedup, persist and aggregate. Never raises: a failing detector
        contributes nothing and a failing alert write is left out of the
        result; both are listed in ``result.failures``.

        Args:
            organization_id: Optional tenant scope passed to every source.

        Returns:
            ReconciliationResult with emitted alerts and a stats snapshot.
        """
        started_at = self.clock()
        scope = organization_id or "all organizations"
        logger.info(f"Starting reconciliation run for {scope}")

        outcomes = await self._run_detectors(started_at, organization_id)
        failures = [
            ReconciliationFailure(stage="detection", source=o.detector, error=o.error)
            for o in outcomes if not o.ok
        ]

        drafts = self._cap_per_type(
            [draft for outcome in outcomes for draft in outcome.drafts]
        )

        alerts: List[ReconciliationAlert] = []
        created = 0
        for draft in drafts:
            persisted = await self._persist(draft)
            if persisted.ok and persisted.alert is not None:
                alerts.append(persisted.alert)
                created += int(persisted.created)
            else:
                failures.append(ReconciliationFailure(
                    stage="persistence", source=persisted.alert_id, error=persisted.error or "unknown",
                ))

        stats = build_run_stats(alerts, started_at, self.policy.run_interval)
        result = ReconciliationResult(
            alerts=alerts,
            stats=stats,
            failures=failures,
            started_at=started_at,
            completed_at=self.clock(),
        )

        logger.info(
            f"Reconciliation completed: {stats.total_issues} issues found "
            f"({created} new, {stats.orphaned_transactions} orphaned transactions, "
            f"{stats.missing_payment_links} missing payment links, "
            f"{stats.webhook_delay_alerts} webhook delays, {len(failures)} failures)"
        )
        critical = [a for a in alerts if a.severity == AlertSeverity.HIGH]
        if critical:
            logger.warning(
                f"Found {len(critical)} critical reconciliation issues: "
                + ", ".join(f"{a.type.value}: {a.resource_id}" for a in critical[:10])
            )
        return result

    def _detectors(
        self,
        now: datetime,
        organization_id: Optional[str],
    ) -> List[tuple]:
        policy = self.policy
        limit = policy.max_alerts_per_type

        # Order here is the stable detection order used for capping and output
        return [
            (
                "orphaned_transactions",
                lambda: self.transactions.find_stale_completed_transactions_without_link(
                    now - policy.orphaned_transaction_threshold, organization_id, limit,
                ),
                detect_orphaned_transactions,
            ),
            (
                "missing_payment_links",
                lambda: self.payment_links.find_stale_completed_payment_links_without_transaction(
                    now - policy.missing_payment_link_threshold, organization_id, limit,
                ),
                detect_missing_payment_links,
            ),
            (
                "webhook_delivery_lag",
                lambda: self.webhook_events.find_delayed_unprocessed_webhook_events(
                    now - policy.webhook_delay_threshold, policy.webhook_min_attempts,
                    organization_id, limit,
                ),
                detect_webhook_delivery_lag,
            ),
            (
                "orphaned_checkout_sessions",
                lambda: self.checkout_sessions.find_stale_completed_checkout_sessions_without_transactions(
                    now - policy.checkout_session_threshold, organization_id,
                    policy.max_checkout_session_alerts,
                ),
                detect_orphaned_checkout_sessions,
            ),
        ]

    async def _run_detectors(
        self,
        now: datetime,
        organization_id: Optional[str],
    ) -> List[DetectorOutcome]:
        detectors = self._detectors(now, organization_id)

        if self.policy.parallel_detectors:
            return list(await asyncio.gather(*(
                self._run_detector(name, fetch, detect, now)
                for name, fetch, detect in detectors
            )))

        outcomes = []
        for name, fetch, detect in detectors:
            outcomes.append(await self._run_detector(name, fetch, detect, now))
        return outcomes

    async def _run_detector(
        self,
        name: str,
        fetch: Fetch,
        detect: Detect,
        now: datetime,
    ) -> DetectorOutcome:
        try:
            drafts = await self._detect(name, fetch, detect, now)
        except DetectionError as e:
            logger.warning(f"Detector {name} failed, continuing without it: {e}")
            return DetectorOutcome(detector=name, error=str(e), timed_out=e.timed_out)

        logger.debug(f"Detector {name} produced {len(drafts)} drafts")
        return DetectorOutcome(detector=name, drafts=drafts)

    async def _detect(
        self,
        name: str,
        fetch: Fetch,
        detect: Detect,
        now: datetime,
    ) -> List[AlertDraft]:
        timeout = self.policy.detector_timeout_seconds
        try:
            records = await asyncio.wait_for(fetch(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise DetectionError(name, f"source read timed out after {timeout}s", timed_out=True) from e
        except Exception as e:
            raise DetectionError(name, str(e) or type(e).__name__) from e

        try:
            return detect(records, now, self.policy)
        except Exception as e:
            raise DetectionError(name, f"invalid source records: {e}") from e

    def _cap_for(self, draft: AlertDraft) -> int:
        if draft.resource_type == ResourceType.CHECKOUT_SESSION:
            return self.policy.max_checkout_session_alerts
        return self.policy.max_alerts_per_type

    def _cap_per_type(self, drafts: List[AlertDraft]) -> List[AlertDraft]:
        """Keep the first drafts of each (type, resource_type) budget, in detection order.

        Checkout-session orphans are budgeted apart from transaction orphans,
        so a full transaction budget never crowds them out. Drafts past the
        cap are not persisted and stay eligible for the next run.
        """
        seen_ids = set()
        per_budget: Counter = Counter()
        kept: List[AlertDraft] = []
        deferred: Counter = Counter()

        for draft in drafts:
            if draft.id in seen_ids:
                continue
            seen_ids.add(draft.id)
            budget = (draft.type, draft.resource_type)
            if per_budget[budget] >= self._cap_for(draft):
                deferred[budget] += 1
                continue
            per_budget[budget] += 1
            kept.append(draft)

        for (alert_type, resource_type), count in deferred.items():
            logger.warning(
                f"Capped {alert_type.value} alerts for {resource_type.value} resources; "
                f"{count} candidates deferred to the next run"
            )
        return kept

    async def _persist(self, draft: AlertDraft) -> PersistOutcome:
        """Apply the dedup gate, then create. Failures are returned, not raised."""
        try:
            existing = await self.deduplicator.find_existing(draft)
            if existing is not None:
                return PersistOutcome(alert_id=draft.id, alert=existing, created=False)

            alert = await self.alert_store.create_alert(draft)
            return PersistOutcome(alert_id=draft.id, alert=alert, created=True)
        except Exception as e:
            logger.error(f"Failed to save reconciliation alert {draft.id}: {e}")
            return PersistOutcome(alert_id=draft.id, error=str(e) or type(e).__name__)

    async def get_active_alerts(
        self,
        organization_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[ReconciliationAlert]:
        return await self.lifecycle.get_active_alerts(organization_id, limit)

    async def resolve_alert(self, alert_id: str, reason: Optional[str] = None) -> bool:
        return await self.lifecycle.resolve_alert(alert_id, reason)

    async def get_reconciliation_stats(
        self,
        organization_id: Optional[str] = None,
    ) -> ReconciliationStats:
        return await self.stats.get_stats(organization_id)

    async def cleanup_stale_alerts(self) -> int:
        return await self.lifecycle.cleanup_stale_alerts()
