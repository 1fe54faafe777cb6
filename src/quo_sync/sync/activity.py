"""Best-effort activity logging of Quo SMS and calls into the CRM.

A failed activity write must never fail the webhook or work item that
triggered it, so ActivityLogger returns a BestEffortOutcome instead of
raising: ``ok`` on success, ``degraded(reason)`` with a warning log on
failure.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.quo_sync.adapters.base import PersonAdapter
from src.quo_sync.sync.schemas import ActivityRecord, BestEffortOutcome

logger = structlog.get_logger(__name__)


def sms_to_activity(sms: dict[str, Any]) -> ActivityRecord:
    """Map a Quo message payload to an activity record."""
    return ActivityRecord(
        type="sms",
        direction=sms.get("direction"),
        content=sms.get("body"),
        timestamp=sms.get("createdAt"),
        contact_external_id=sms.get("contactId"),
    )


def call_to_activity(call: dict[str, Any]) -> ActivityRecord:
    """Map a Quo call payload to an activity record."""
    return ActivityRecord(
        type="call",
        direction=call.get("direction"),
        duration=call.get("duration"),
        summary=call.get("aiSummary"),
        timestamp=call.get("createdAt"),
        contact_external_id=call.get("contactId"),
    )


class ActivityLogger:
    """Writes SMS/call activity through the CRM adapter.

    Args:
        adapter: CRM connector that owns the activity APIs.
    """

    def __init__(self, adapter: PersonAdapter) -> None:
        self._adapter = adapter

    async def log_sms(self, sms: dict[str, Any]) -> BestEffortOutcome:
        try:
            activity = sms_to_activity(sms)
            await self._adapter.log_sms_to_activity(activity)
        except Exception as exc:
            return self._degraded("sms", sms, exc)
        logger.debug("activity.sms_logged", message_id=sms.get("id"))
        return BestEffortOutcome.ok()

    async def log_call(self, call: dict[str, Any]) -> BestEffortOutcome:
        try:
            activity = call_to_activity(call)
            await self._adapter.log_call_to_activity(activity)
        except Exception as exc:
            return self._degraded("call", call, exc)
        logger.debug("activity.call_logged", call_id=call.get("id"))
        return BestEffortOutcome.ok()

    def _degraded(
        self, kind: str, payload: dict[str, Any], exc: Exception
    ) -> BestEffortOutcome:
        reason = f"{type(exc).__name__}: {exc}"
        logger.warning(
            "activity.log_failed",
            kind=kind,
            source_id=payload.get("id"),
            contact_id=payload.get("contactId"),
            reason=reason,
        )
        return BestEffortOutcome.degraded(reason)
