"""SQLAlchemy models for the reconciled record streams and their alerts."""

import uuid
import json
import enum
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy import (
    Boolean,
    String,
    Integer,
    DateTime,
    ForeignKey,
    Text,
    Index,
    text,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

from ..reconciliation.models import ReconciliationAlert, utcnow


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentLinkStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class CheckoutSessionStatus(str, enum.Enum):
    OPEN = "open"
    COMPLETED = "completed"
    EXPIRED = "expired"


def _new_id() -> str:
    return str(uuid.uuid4())


class PaymentLink(Base):
    """Shareable payment link; transaction_id is set once a payment lands."""
    __tablename__ = "payment_links"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    short_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=PaymentLinkStatus.ACTIVE.value)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_payment_links_status_completed_at", "status", "completed_at"),
        Index("ix_payment_links_organization_id", "organization_id"),
    )


class CheckoutSession(Base):
    """Hosted checkout session; may own several transaction attempts."""
    __tablename__ = "checkout_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=CheckoutSessionStatus.OPEN.value)
    amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    transactions: Mapped[List["Transaction"]] = relationship(
        "Transaction",
        back_populates="checkout_session",
    )

    __table_args__ = (
        Index("ix_checkout_sessions_status_completed_at", "status", "completed_at"),
        Index("ix_checkout_sessions_organization_id", "organization_id"),
    )


class Transaction(Base):
    """Payment transaction. payment_link_id is a weak pointer and may dangle."""
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=TransactionStatus.PENDING.value)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_link_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    checkout_session_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("checkout_sessions.id"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    checkout_session: Mapped[Optional["CheckoutSession"]] = relationship(
        "CheckoutSession", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_status_created_at", "status", "created_at"),
        Index("ix_transactions_payment_link_id", "payment_link_id"),
        Index("ix_transactions_organization_id", "organization_id"),
    )


class WebhookEvent(Base):
    """Inbound provider webhook and its processing state."""
    __tablename__ = "webhook_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    organization_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, default="psp")
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processing_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_webhook_events_processed_created_at", "processed", "created_at"),
        Index("ix_webhook_events_organization_id", "organization_id"),
    )


class ReconciliationAlertRecord(Base):
    """Stored reconciliation alert.

    ``alert_id`` is the deterministic ``{type}_{resource_id}`` identity. Many
    resolved rows may share it; the partial unique index allows only one
    unresolved row per alert_id.
    """
    __tablename__ = "reconciliation_alerts"

    pk: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    alert_id: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    organization_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Metadata stored as JSON
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "uq_reconciliation_alerts_unresolved_alert_id",
            "alert_id",
            unique=True,
            sqlite_where=text("resolved = 0"),
            postgresql_where=text("resolved = false"),
        ),
        Index("ix_reconciliation_alerts_alert_id", "alert_id"),
        Index("ix_reconciliation_alerts_resolved_type", "resolved", "type"),
        Index("ix_reconciliation_alerts_created_at", "created_at"),
        Index("ix_reconciliation_alerts_organization_id", "organization_id"),
    )

    @property
    def alert_metadata(self) -> Dict[str, Any]:
        """Get metadata as dictionary."""
        if self.metadata_json:
            return json.loads(self.metadata_json)
        return {}

    @alert_metadata.setter
    def alert_metadata(self, value: Optional[Dict[str, Any]]) -> None:
        """Set metadata from dictionary."""
        if value:
            self.metadata_json = json.dumps(value, default=str)
        else:
            self.metadata_json = None

    def to_alert(self) -> ReconciliationAlert:
        """Convert the row to the service-level alert model."""
        return ReconciliationAlert(
            id=self.alert_id,
            type=self.type,
            severity=self.severity,
            title=self.title,
            description=self.description,
            resource_id=self.resource_id,
            resource_type=self.resource_type,
            metadata=self.alert_metadata,
            resolved=self.resolved,
            resolved_at=self.resolved_at,
            created_at=self.created_at,
            organization_id=self.organization_id,
        )
