"""Repository layer: SQL implementations of the reconciliation ports."""

import json
import logging
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update, and_, or_, func, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..reconciliation.errors import AlertPersistenceError, AlertNotFoundError
from ..reconciliation.models import (
    AlertDraft,
    AlertFilter,
    AlertOrder,
    AlertPatch,
    AlertSeverity,
    CheckoutSessionRecord,
    PaymentLinkRecord,
    ReconciliationAlert,
    TransactionRecord,
    WebhookEventRecord,
    utcnow,
)
from ..reconciliation.ports import (
    AlertStore,
    CheckoutSessionSource,
    PaymentLinkSource,
    TransactionSource,
    WebhookEventSource,
)
from .models import (
    CheckoutSession,
    CheckoutSessionStatus,
    PaymentLink,
    PaymentLinkStatus,
    ReconciliationAlertRecord,
    Transaction,
    TransactionStatus,
    WebhookEvent,
)

logger = logging.getLogger(__name__)


class _SessionFactoryRepository:
    """Opens a short-lived session per call so reads and writes stay isolated."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the repository with a session factory.

        Args:
            session_factory: async_sessionmaker bound to the database engine.
        """
        self.session_factory = session_factory


class SqlTransactionSource(_SessionFactoryRepository, TransactionSource):
    """Reads candidate orphaned transactions."""

    async def find_stale_completed_transactions_without_link(
        self,
        older_than: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[TransactionRecord]:
        # Outer join catches links that were set but point at a missing row
        stmt = (
            select(Transaction, PaymentLink.id)
            .outerjoin(PaymentLink, PaymentLink.id == Transaction.payment_link_id)
            .where(
                and_(
                    Transaction.status == TransactionStatus.COMPLETED.value,
                    Transaction.created_at <= older_than,
                    or_(
                        Transaction.payment_link_id.is_(None),
                        PaymentLink.id.is_(None),
                    ),
                )
            )
            .order_by(Transaction.created_at)
        )
        if organization_id is not None:
            stmt = stmt.where(Transaction.organization_id == organization_id)
        if limit:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        records = [
            TransactionRecord(
                id=txn.id,
                status=txn.status,
                amount=txn.amount,
                currency=txn.currency,
                created_at=txn.created_at,
                payment_link_id=txn.payment_link_id,
                payment_link_exists=link_id is not None,
                customer_email=txn.customer_email,
                organization_id=txn.organization_id,
            )
            for txn, link_id in rows
        ]
        logger.debug(f"Found {len(records)} completed transactions without a payment link")
        return records


class SqlPaymentLinkSource(_SessionFactoryRepository, PaymentLinkSource):
    """Reads completed payment links that never got a transaction."""

    async def find_stale_completed_payment_links_without_transaction(
        self,
        older_than: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[PaymentLinkRecord]:
        stmt = (
            select(PaymentLink)
            .where(
                and_(
                    PaymentLink.status == PaymentLinkStatus.COMPLETED.value,
                    PaymentLink.completed_at <= older_than,
                    PaymentLink.transaction_id.is_(None),
                )
            )
            .order_by(PaymentLink.completed_at)
        )
        if organization_id is not None:
            stmt = stmt.where(PaymentLink.organization_id == organization_id)
        if limit:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            links = list((await session.execute(stmt)).scalars().all())

        return [PaymentLinkRecord.model_validate(link) for link in links]


class SqlWebhookEventSource(_SessionFactoryRepository, WebhookEventSource):
    """Reads webhook events stuck in retry."""

    async def find_delayed_unprocessed_webhook_events(
        self,
        older_than: datetime,
        min_attempts: int = 1,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[WebhookEventRecord]:
        stmt = (
            select(WebhookEvent)
            .where(
                and_(
                    WebhookEvent.processed.is_(False),
                    WebhookEvent.created_at <= older_than,
                    WebhookEvent.processing_attempts >= min_attempts,
                )
            )
            .order_by(WebhookEvent.created_at)
        )
        if organization_id is not None:
            stmt = stmt.where(WebhookEvent.organization_id == organization_id)
        if limit:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            events = list((await session.execute(stmt)).scalars().all())

        return [WebhookEventRecord.model_validate(event) for event in events]


class SqlCheckoutSessionSource(_SessionFactoryRepository, CheckoutSessionSource):
    """Reads completed checkout sessions with no transactions attached."""

    async def find_stale_completed_checkout_sessions_without_transactions(
        self,
        older_than: datetime,
        organization_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[CheckoutSessionRecord]:
        transaction_count = (
            select(func.count(Transaction.id))
            .where(Transaction.checkout_session_id == CheckoutSession.id)
            .correlate(CheckoutSession)
            .scalar_subquery()
        )
        stmt = (
            select(CheckoutSession, transaction_count.label("transaction_count"))
            .where(
                and_(
                    CheckoutSession.status == CheckoutSessionStatus.COMPLETED.value,
                    CheckoutSession.completed_at <= older_than,
                    transaction_count == 0,
                )
            )
            .order_by(CheckoutSession.completed_at)
        )
        if organization_id is not None:
            stmt = stmt.where(CheckoutSession.organization_id == organization_id)
        if limit:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).all()

        return [
            CheckoutSessionRecord(
                id=cs.id,
                status=cs.status,
                amount=cs.amount,
                currency=cs.currency,
                completed_at=cs.completed_at,
                transaction_count=count,
                organization_id=cs.organization_id,
            )
            for cs, count in rows
        ]


_SEVERITY_RANK = case(
    {
        AlertSeverity.HIGH.value: 3,
        AlertSeverity.MEDIUM.value: 2,
        AlertSeverity.LOW.value: 1,
    },
    value=ReconciliationAlertRecord.severity,
    else_=0,
)


def _conditions(alert_filter: AlertFilter) -> List[Any]:
    conditions = []
    if alert_filter.organization_id is not None:
        conditions.append(ReconciliationAlertRecord.organization_id == alert_filter.organization_id)
    if alert_filter.type is not None:
        conditions.append(ReconciliationAlertRecord.type == alert_filter.type.value)
    if alert_filter.resolved is not None:
        conditions.append(ReconciliationAlertRecord.resolved.is_(alert_filter.resolved))
    if alert_filter.created_before is not None:
        conditions.append(ReconciliationAlertRecord.created_at < alert_filter.created_before)
    return conditions


def _apply_patch(row: ReconciliationAlertRecord, patch: AlertPatch) -> None:
    if patch.resolved is not None:
        row.resolved = patch.resolved
    if patch.resolved_at is not None:
        row.resolved_at = patch.resolved_at
    if patch.metadata is not None:
        if patch.merge_metadata:
            merged: Dict[str, Any] = row.alert_metadata
            merged.update(patch.metadata)
            row.alert_metadata = merged
        else:
            row.alert_metadata = patch.metadata


class SqlAlertStore(_SessionFactoryRepository, AlertStore):
    """Alert persistence. Each write commits in its own transaction."""

    async def find_unresolved_alert_by_id(self, alert_id: str) -> Optional[ReconciliationAlert]:
        async with self.session_factory() as session:
            row = await self._get_unresolved(session, alert_id)
            return row.to_alert() if row else None

    @staticmethod
    async def _get_unresolved(
        session: AsyncSession,
        alert_id: str,
    ) -> Optional[ReconciliationAlertRecord]:
        result = await session.execute(
            select(ReconciliationAlertRecord).where(
                and_(
                    ReconciliationAlertRecord.alert_id == alert_id,
                    ReconciliationAlertRecord.resolved.is_(False),
                )
            )
        )
        return result.scalar_one_or_none()

    async def create_alert(self, draft: AlertDraft) -> ReconciliationAlert:
        """Insert a new unresolved alert.

        Raises:
            AlertPersistenceError: If an unresolved alert with this id exists
                or the insert fails for any other database reason.
        """
        row = ReconciliationAlertRecord(
            alert_id=draft.id,
            type=draft.type.value,
            severity=draft.severity.value,
            title=draft.title,
            description=draft.description,
            resource_id=draft.resource_id,
            resource_type=draft.resource_type.value,
            organization_id=draft.organization_id,
            resolved=False,
            created_at=utcnow(),
        )
        row.alert_metadata = draft.metadata

        async with self.session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise AlertPersistenceError(
                    f"Unresolved alert {draft.id} already exists", alert_id=draft.id
                ) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise AlertPersistenceError(
                    f"Failed to create alert {draft.id}: {e}", alert_id=draft.id
                ) from e

        logger.info(f"Created reconciliation alert {draft.id} ({draft.severity.value})")
        return row.to_alert()

    async def list_alerts(
        self,
        alert_filter: AlertFilter,
        order: AlertOrder = AlertOrder.SEVERITY_THEN_RECENCY,
        limit: Optional[int] = None,
    ) -> List[ReconciliationAlert]:
        stmt = select(ReconciliationAlertRecord).where(*_conditions(alert_filter))
        if order == AlertOrder.SEVERITY_THEN_RECENCY:
            stmt = stmt.order_by(_SEVERITY_RANK.desc(), ReconciliationAlertRecord.created_at.desc())
        else:
            stmt = stmt.order_by(ReconciliationAlertRecord.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self.session_factory() as session:
            rows = list((await session.execute(stmt)).scalars().all())
        return [row.to_alert() for row in rows]

    async def count_alerts(self, alert_filter: AlertFilter) -> int:
        stmt = (
            select(func.count())
            .select_from(ReconciliationAlertRecord)
            .where(*_conditions(alert_filter))
        )
        async with self.session_factory() as session:
            return int((await session.execute(stmt)).scalar_one())

    async def find_most_recent_alert(self, alert_filter: AlertFilter) -> Optional[ReconciliationAlert]:
        stmt = (
            select(ReconciliationAlertRecord)
            .where(*_conditions(alert_filter))
            .order_by(ReconciliationAlertRecord.created_at.desc())
            .limit(1)
        )
        async with self.session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return row.to_alert() if row else None

    async def update_alert(self, alert_id: str, patch: AlertPatch) -> ReconciliationAlert:
        """Apply a patch to the unresolved alert with this id.

        Raises:
            AlertNotFoundError: If no unresolved alert has this id.
            AlertPersistenceError: If the update fails.
        """
        async with self.session_factory() as session:
            try:
                row = await self._get_unresolved(session, alert_id)
                if row is None:
                    raise AlertNotFoundError(f"No unresolved alert {alert_id}", alert_id=alert_id)
                _apply_patch(row, patch)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise AlertPersistenceError(
                    f"Failed to update alert {alert_id}: {e}", alert_id=alert_id
                ) from e

        return row.to_alert()

    async def update_many_alerts(self, alert_filter: AlertFilter, patch: AlertPatch) -> int:
        conditions = _conditions(alert_filter)

        async with self.session_factory() as session:
            try:
                if patch.metadata is not None and patch.merge_metadata:
                    rows = list((await session.execute(
                        select(ReconciliationAlertRecord).where(*conditions)
                    )).scalars().all())
                    for row in rows:
                        _apply_patch(row, patch)
                    count = len(rows)
                else:
                    values: Dict[str, Any] = {}
                    if patch.resolved is not None:
                        values["resolved"] = patch.resolved
                    if patch.resolved_at is not None:
                        values["resolved_at"] = patch.resolved_at
                    if patch.metadata is not None:
                        values["metadata_json"] = json.dumps(patch.metadata, default=str)
                    if not values:
                        return 0
                    result = await session.execute(
                        update(ReconciliationAlertRecord)
                        .where(*conditions)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    count = result.rowcount
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise AlertPersistenceError(f"Bulk alert update failed: {e}") from e

        logger.debug(f"Updated {count} reconciliation alerts")
        return count
