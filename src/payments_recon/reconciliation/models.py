"""Models for payment reconciliation alerts and the records they point at."""

import enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database stores datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class AlertType(str, enum.Enum):
    """Kinds of divergence the reconciliation run can detect."""
    ORPHANED_TRANSACTION = "orphaned_transaction"
    MISSING_PAYMENT_LINK = "missing_payment_link"
    WEBHOOK_DELIVERY_LAG = "webhook_delivery_lag"


class AlertSeverity(str, enum.Enum):
    """Alert severity, ranked low < medium < high."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK: Dict[AlertSeverity, int] = {
    AlertSeverity.LOW: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.HIGH: 3,
}


class ResourceType(str, enum.Enum):
    """Source stream an alert's resource_id points into."""
    TRANSACTION = "transaction"
    PAYMENT_LINK = "payment_link"
    WEBHOOK = "webhook"
    CHECKOUT_SESSION = "checkout_session"


class AlertOrder(str, enum.Enum):
    """Supported orderings for alert listings."""
    SEVERITY_THEN_RECENCY = "severity_then_recency"
    RECENCY = "recency"


# Source records (read-only inputs)

class TransactionRecord(BaseModel):
    """A payment transaction as seen by the reconciliation run."""
    id: str = Field(..., description="Transaction ID")
    status: str = Field(..., description="Transaction status")
    amount: int = Field(..., description="Amount in minor units")
    currency: str = Field(..., description="Three-letter currency code")
    created_at: datetime = Field(..., description="Transaction creation time")
    payment_link_id: Optional[str] = Field(None, description="Linked payment link, if any")
    payment_link_exists: Optional[bool] = Field(
        default=None,
        description=(
            "Whether payment_link_id resolves to a stored payment link. "
            "None means the source did not check; only False marks a dangling link."
        ),
    )
    customer_email: Optional[str] = None
    organization_id: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def has_durable_link(self) -> bool:
        return self.payment_link_id is not None and self.payment_link_exists is not False


class PaymentLinkRecord(BaseModel):
    """A payment link as seen by the reconciliation run."""
    id: str = Field(..., description="Payment link ID")
    status: str = Field(..., description="Payment link status")
    short_code: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = Field(None, description="Transaction recorded for this link")
    completed_at: Optional[datetime] = None
    organization_id: Optional[str] = None

    class Config:
        from_attributes = True


class WebhookEventRecord(BaseModel):
    """An inbound webhook event as seen by the reconciliation run."""
    id: str = Field(..., description="Webhook event ID")
    provider: str = Field(default="psp")
    event_type: str = Field(..., description="Provider event type")
    processed: bool = False
    processing_attempts: int = Field(default=0, ge=0)
    failure_reason: Optional[str] = None
    created_at: datetime = Field(..., description="Time the event was received")
    last_processed_at: Optional[datetime] = None
    organization_id: Optional[str] = None

    class Config:
        from_attributes = True


class CheckoutSessionRecord(BaseModel):
    """A checkout session together with the number of linked transactions."""
    id: str = Field(..., description="Checkout session ID")
    status: str = Field(..., description="Checkout session status")
    amount: Optional[int] = None
    currency: Optional[str] = None
    completed_at: Optional[datetime] = None
    transaction_count: int = Field(default=0, ge=0)
    organization_id: Optional[str] = None

    class Config:
        from_attributes = True


# Alerts

class AlertDraft(BaseModel):
    """A detected issue that has not been persisted yet."""
    id: str = Field(..., description="Deterministic alert id: {type}_{resource_id}")
    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    resource_id: str
    resource_type: ResourceType
    metadata: Dict[str, Any] = Field(default_factory=dict)
    organization_id: Optional[str] = None


class ReconciliationAlert(BaseModel):
    """A persisted reconciliation alert."""
    id: str
    type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    resource_id: str
    resource_type: ResourceType
    metadata: Dict[str, Any] = Field(default_factory=dict)
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    organization_id: Optional[str] = None

    class Config:
        from_attributes = True

    @classmethod
    def from_draft(cls, draft: AlertDraft, created_at: Optional[datetime] = None) -> "ReconciliationAlert":
        return cls(
            **draft.model_dump(),
            resolved=False,
            created_at=created_at or utcnow(),
        )


class AlertFilter(BaseModel):
    """Predicate over stored alerts. Unset fields do not constrain."""
    organization_id: Optional[str] = None
    type: Optional[AlertType] = None
    resolved: Optional[bool] = None
    created_before: Optional[datetime] = None

    def matches(self, alert: ReconciliationAlert) -> bool:
        if self.organization_id is not None and alert.organization_id != self.organization_id:
            return False
        if self.type is not None and alert.type != self.type:
            return False
        if self.resolved is not None and alert.resolved != self.resolved:
            return False
        if self.created_before is not None and not alert.created_at < self.created_before:
            return False
        return True


class AlertPatch(BaseModel):
    """Changes applied to stored alerts.

    With merge_metadata the patch keys are added to the existing metadata,
    otherwise metadata is replaced wholesale.
    """
    resolved: Optional[bool] = None
    resolved_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    merge_metadata: bool = True


class ReconciliationStats(BaseModel):
    """Aggregate counts of unresolved issues and run timing."""
    orphaned_transactions: int = 0
    missing_payment_links: int = 0
    webhook_delay_alerts: int = 0
    total_issues: int = 0
    last_run_at: datetime
    next_run_at: datetime


# Run outcomes

class DetectorOutcome(BaseModel):
    """Result of one detector: drafts on success, an error otherwise."""
    detector: str
    drafts: List[AlertDraft] = Field(default_factory=list)
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class PersistOutcome(BaseModel):
    """Result of pushing one draft through the dedup gate and the store."""
    alert_id: str
    alert: Optional[ReconciliationAlert] = None
    created: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReconciliationFailure(BaseModel):
    """A non-fatal failure recorded during a run."""
    stage: str = Field(..., description="'detection' or 'persistence'")
    source: str = Field(..., description="Detector name or alert id")
    error: str


class ReconciliationResult(BaseModel):
    """Alerts emitted by a run and the stats snapshot for them."""
    alerts: List[ReconciliationAlert] = Field(default_factory=list)
    stats: ReconciliationStats
    failures: List[ReconciliationFailure] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    def to_summary_dict(self) -> Dict[str, Any]:
        """Return a summary of the run without alert details."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "statistics": {
                "orphaned_transactions": self.stats.orphaned_transactions,
                "missing_payment_links": self.stats.missing_payment_links,
                "webhook_delay_alerts": self.stats.webhook_delay_alerts,
                "total_issues": self.stats.total_issues,
                "last_run_at": self.stats.last_run_at.isoformat(),
                "next_run_at": self.stats.next_run_at.isoformat(),
            },
            "failures": [f.model_dump() for f in self.failures],
        }

    def to_full_dict(self) -> Dict[str, Any]:
        """Return the summary plus every emitted alert."""
        result = self.to_summary_dict()
        result["alerts"] = [a.model_dump(mode="json") for a in self.alerts]
        return result
