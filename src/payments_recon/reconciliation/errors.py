"""Error taxonomy for reconciliation runs.

None of these are fatal: the service catches them at the detector, alert or
resolution boundary and turns them into outcome values.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class DetectionError(ReconciliationError):
    """A source stream read failed or timed out."""

    def __init__(self, detector: str, message: str, timed_out: bool = False):
        super().__init__(f"{detector}: {message}")
        self.detector = detector
        self.timed_out = timed_out


class AlertPersistenceError(ReconciliationError):
    """Creating or updating an alert failed."""

    def __init__(self, message: str, alert_id: Optional[str] = None):
        super().__init__(message)
        self.alert_id = alert_id


class AlertNotFoundError(AlertPersistenceError):
    """No unresolved alert exists under the requested id."""


class ResolutionError(ReconciliationError):
    """Resolving an alert failed; surfaced to callers as ``False``."""
