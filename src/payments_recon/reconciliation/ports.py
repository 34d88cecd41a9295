"""Repository ports the reconciliation service depends on.

Implementations must be read-only for the four source streams. The alert
store must guarantee at most one unresolved alert per alert id, so two
overlapping runs racing to create the same alert leave exactly one record.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .models import (
    TransactionRecord,
    PaymentLinkRecord,
    WebhookEventRecord,
    CheckoutSessionRecord,
    AlertDraft,
    ReconciliationAlert,
    AlertFilter,
    AlertPatch,
    AlertOrder,
)


class TransactionSource(ABC):

    @abstractmethod
    async def find_stale_completed_transactions_without_link(
        self,
        older_than: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[TransactionRecord]:
        """
        Completed transactions created at or before older_than that have no
        payment link, or whose payment link no longer exists.
        """
        raise NotImplementedError


class PaymentLinkSource(ABC):

    @abstractmethod
    async def find_stale_completed_payment_links_without_transaction(
        self,
        older_than: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PaymentLinkRecord]:
        """
        Completed payment links finished at or before older_than with no transaction.
        """
        raise NotImplementedError


class WebhookEventSource(ABC):

    @abstractmethod
    async def find_delayed_unprocessed_webhook_events(
        self,
        older_than: datetime,
        min_attempts: int = 1,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[WebhookEventRecord]:
        """
        Unprocessed webhook events received at or before older_than with at least
        min_attempts processing attempts.
        """
        raise NotImplementedError


class CheckoutSessionSource(ABC):

    @abstractmethod
    async def find_stale_completed_checkout_sessions_without_transactions(
        self,
        older_than: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CheckoutSessionRecord]:
        """
        Completed checkout sessions finished at or before older_than that have no
        linked transactions.
        """
        raise NotImplementedError


class AlertStore(ABC):
    """Persistence capability for reconciliation alerts."""

    @abstractmethod
    async def find_unresolved_alert_by_id(self, alert_id: str) -> Optional[ReconciliationAlert]:
        raise NotImplementedError

    @abstractmethod
    async def create_alert(self, draft: AlertDraft) -> ReconciliationAlert:
        """
        Persist a new unresolved alert. Must fail (raise) when an unresolved
        alert with the same id already exists.
        """
        raise NotImplementedError

    @abstractmethod
    async def list_alerts(
        self,
        alert_filter: AlertFilter,
        order: AlertOrder = AlertOrder.SEVERITY_THEN_RECENCY,
        limit: Optional[int] = None,
    ) -> List[ReconciliationAlert]:
        raise NotImplementedError

    @abstractmethod
    async def count_alerts(self, alert_filter: AlertFilter) -> int:
        raise NotImplementedError

    @abstractmethod
    async def find_most_recent_alert(self, alert_filter: AlertFilter) -> Optional[ReconciliationAlert]:
        raise NotImplementedError

    @abstractmethod
    async def update_alert(self, alert_id: str, patch: AlertPatch) -> ReconciliationAlert:
        """
        Apply patch to the unresolved alert with this id. Raises when none exists.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_many_alerts(self, alert_filter: AlertFilter, patch: AlertPatch) -> int:
        """Apply patch to every matching alert and return how many changed."""
        raise NotImplementedError
