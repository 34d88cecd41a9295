"""Reconciliation module for payment systems.

This module cross-checks the payment record streams (transactions, payment
links, webhook events and checkout sessions) and raises alerts when they
diverge.

Features:
- Detect orphaned transactions, completed payment links with no transaction,
  stuck webhook deliveries and completed checkout sessions with no transaction
- Deduplicate alerts by a deterministic ``{type}_{resource_id}`` id
- Resolve alerts manually or sweep stale ones automatically
- Aggregate unresolved alert counts per organization
"""

from .models import (
    AlertType,
    AlertSeverity,
    ResourceType,
    AlertOrder,
    TransactionRecord,
    PaymentLinkRecord,
    WebhookEventRecord,
    CheckoutSessionRecord,
    AlertDraft,
    ReconciliationAlert,
    AlertFilter,
    AlertPatch,
    ReconciliationStats,
    ReconciliationFailure,
    ReconciliationResult,
)
from .errors import (
    ReconciliationError,
    DetectionError,
    AlertPersistenceError,
    AlertNotFoundError,
    ResolutionError,
)
from .ports import (
    TransactionSource,
    PaymentLinkSource,
    WebhookEventSource,
    CheckoutSessionSource,
    AlertStore,
)
from .detectors import (
    detect_orphaned_transactions,
    detect_missing_payment_links,
    detect_webhook_delivery_lag,
    detect_orphaned_checkout_sessions,
    webhook_severity,
)
from .dedup import Deduplicator, alert_id
from .lifecycle import AlertLifecycleManager
from .stats import StatsAggregator
from .service import ReconciliationService
from .report import ReportGenerator

__all__ = [
    # Models
    "AlertType",
    "AlertSeverity",
    "ResourceType",
    "AlertOrder",
    "TransactionRecord",
    "PaymentLinkRecord",
    "WebhookEventRecord",
    "CheckoutSessionRecord",
    "AlertDraft",
    "ReconciliationAlert",
    "AlertFilter",
    "AlertPatch",
    "ReconciliationStats",
    "ReconciliationFailure",
    "ReconciliationResult",
    # Errors
    "ReconciliationError",
    "DetectionError",
    "AlertPersistenceError",
    "AlertNotFoundError",
    "ResolutionError",
    # Ports
    "TransactionSource",
    "PaymentLinkSource",
    "WebhookEventSource",
    "CheckoutSessionSource",
    "AlertStore",
    # Detectors
    "detect_orphaned_transactions",
    "detect_missing_payment_links",
    "detect_webhook_delivery_lag",
    "detect_orphaned_checkout_sessions",
    "webhook_severity",
    # Core Components
    "Deduplicator",
    "alert_id",
    "AlertLifecycleManager",
    "StatsAggregator",
    "ReconciliationService",
    "ReportGenerator",
]
