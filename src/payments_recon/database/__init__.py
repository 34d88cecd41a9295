"""Database module: source record tables, alert persistence and SQL ports."""

from .models import (
    Base,
    Transaction,
    PaymentLink,
    CheckoutSession,
    WebhookEvent,
    ReconciliationAlertRecord,
    TransactionStatus,
    PaymentLinkStatus,
    CheckoutSessionStatus,
)
from .session import (
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    DatabaseManager,
)
from .repository import (
    SqlTransactionSource,
    SqlPaymentLinkSource,
    SqlWebhookEventSource,
    SqlCheckoutSessionSource,
    SqlAlertStore,
)

__all__ = [
    # Models
    "Base",
    "Transaction",
    "PaymentLink",
    "CheckoutSession",
    "WebhookEvent",
    "ReconciliationAlertRecord",
    "TransactionStatus",
    "PaymentLinkStatus",
    "CheckoutSessionStatus",
    # Session management
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "DatabaseManager",
    # Repositories
    "SqlTransactionSource",
    "SqlPaymentLinkSource",
    "SqlWebhookEventSource",
    "SqlCheckoutSessionSource",
    "SqlAlertStore",
]
