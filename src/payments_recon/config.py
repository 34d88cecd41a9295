"""Reconciliation policy: time windows, thresholds and caps in one place."""

import os
import logging
from datetime import timedelta
from typing import Optional

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)


class ReconciliationPolicy(BaseModel):
    """Named policy values used by the detectors, the orchestrator and the sweep.

    Tests inject a tightened policy instead of waiting on wall-clock time.
    """
    orphaned_transaction_threshold: timedelta = Field(default=timedelta(minutes=30))
    missing_payment_link_threshold: timedelta = Field(default=timedelta(minutes=90))
    webhook_delay_threshold: timedelta = Field(default=timedelta(minutes=10))
    checkout_session_threshold: timedelta = Field(default=timedelta(minutes=30))

    # Webhook severity: attempts > high => high, attempts >= medium => medium, else low
    webhook_min_attempts: int = Field(default=1, ge=1)
    webhook_medium_attempts: int = Field(default=3, ge=1)
    webhook_high_attempts: int = Field(default=5, ge=1)

    max_alerts_per_type: int = Field(default=50, ge=1)
    # Checkout-session orphans keep their own budget within orphaned_transaction
    max_checkout_session_alerts: int = Field(default=20, ge=1)
    stale_alert_retention: timedelta = Field(default=timedelta(days=7))
    run_interval: timedelta = Field(default=timedelta(minutes=15))
    detector_timeout_seconds: float = Field(default=10.0, gt=0)
    parallel_detectors: bool = False

    @model_validator(mode="after")
    def _check_webhook_boundaries(self) -> "ReconciliationPolicy":
        if self.webhook_medium_attempts > self.webhook_high_attempts:
            raise ValueError(
                "webhook_medium_attempts must not exceed webhook_high_attempts"
            )
        return self

    @classmethod
    def from_env(cls) -> "ReconciliationPolicy":
        """Build a policy from RECON_* environment variables.

        Unset variables keep their defaults. Malformed values raise ValueError.
        """
        values = {}

        minutes = {
            "orphaned_transaction_threshold": "RECON_ORPHANED_TRANSACTION_MINUTES",
            "missing_payment_link_threshold": "RECON_MISSING_PAYMENT_LINK_MINUTES",
            "webhook_delay_threshold": "RECON_WEBHOOK_DELAY_MINUTES",
            "checkout_session_threshold": "RECON_CHECKOUT_SESSION_MINUTES",
            "run_interval": "RECON_RUN_INTERVAL_MINUTES",
        }
        for field_name, env_name in minutes.items():
            raw = _getenv(env_name)
            if raw is not None:
                values[field_name] = timedelta(minutes=float(raw))

        raw = _getenv("RECON_STALE_ALERT_DAYS")
        if raw is not None:
            values["stale_alert_retention"] = timedelta(days=float(raw))

        integers = {
            "webhook_min_attempts": "RECON_WEBHOOK_MIN_ATTEMPTS",
            "webhook_medium_attempts": "RECON_WEBHOOK_MEDIUM_ATTEMPTS",
            "webhook_high_attempts": "RECON_WEBHOOK_HIGH_ATTEMPTS",
            "max_alerts_per_type": "RECON_MAX_ALERTS_PER_TYPE",
            "max_checkout_session_alerts": "RECON_MAX_CHECKOUT_SESSION_ALERTS",
        }
        for field_name, env_name in integers.items():
            raw = _getenv(env_name)
            if raw is not None:
                values[field_name] = int(raw)

        raw = _getenv("RECON_DETECTOR_TIMEOUT_SECONDS")
        if raw is not None:
            values["detector_timeout_seconds"] = float(raw)

        raw = _getenv("RECON_PARALLEL_DETECTORS")
        if raw is not None:
            values["parallel_detectors"] = raw.strip().lower() in ("1", "true", "yes", "on")

        if values:
            logger.info(f"Reconciliation policy overrides from environment: {sorted(values)}")
        return cls(**values)


def _getenv(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value


def get_run_rate_limit() -> str:
    """Rate limit applied to manually triggered runs (slowapi syntax)."""
    return os.getenv("RECON_RUN_RATE_LIMIT", "1/minute")
