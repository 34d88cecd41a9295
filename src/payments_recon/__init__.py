# payments_recon package
__version__ = "0.1.0"

from .config import ReconciliationPolicy

# Reconciliation exports
from .reconciliation import (
    ReconciliationService,
    ReconciliationAlert,
    ReconciliationResult,
    ReconciliationStats,
    AlertType,
    AlertSeverity,
    ReportGenerator,
)

from .database import (
    Transaction,
    PaymentLink,
    CheckoutSession,
    WebhookEvent,
    ReconciliationAlertRecord,
    init_db,
    close_db,
    DatabaseManager,
)
