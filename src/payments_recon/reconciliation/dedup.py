"""Deterministic alert identity and the duplicate gate."""

import logging
from typing import Optional, Union

from .models import AlertDraft, AlertType, ReconciliationAlert
from .ports import AlertStore

logger = logging.getLogger(__name__)


def alert_id(alert_type: Union[AlertType, str], resource_id: str) -> str:
    """Build the dedup key for an alert: ``{type}_{resource_id}``."""
    type_value = alert_type.value if isinstance(alert_type, AlertType) else str(alert_type)
    return f"{type_value}_{resource_id}"


class Deduplicator:
    """Gate that stops a draft when an unresolved alert already covers it.

    Resolved alerts never block: a resource detected again after resolution
    gets a fresh alert.
    """

    def __init__(self, store: AlertStore):
        self.store = store

    async def find_existing(self, draft: AlertDraft) -> Optional[ReconciliationAlert]:
        """Return the unresolved alert covering this draft, if any."""
        existing = await self.store.find_unresolved_alert_by_id(draft.id)
        if existing is not None:
            logger.debug(f"Alert {draft.id} already active, skipping creation")
        return existing

    async def exists(self, alert_type: AlertType, resource_id: str) -> bool:
        """Boolean view of the gate for callers that only hold (type, resource_id).

        The orchestrator calls find_existing instead, because it reports the
        existing alert in the run result.
        """
        existing = await self.store.find_unresolved_alert_by_id(alert_id(alert_type, resource_id))
        return existing is not None
