"""Aggregate webhook setup -- Quo (mandatory) and CRM-side (optional) together.

Both setups run concurrently and independently. The result records each
outcome plus an overall status:

    Quo ok,     CRM ok      -> success
    Quo ok,     CRM failed  -> partial
    Quo failed, any         -> failed, and WebhookSetupError is raised

A setup "fails" if it raises or returns ``{"status": "failed"}``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, Literal

import structlog
from pydantic import BaseModel, Field

from src.quo_sync.quo.client import QuoClient
from src.quo_sync.sync.errors import WebhookSetupError
from src.quo_sync.webhooks.config import (
    ENABLED_RESOURCE_IDS,
    WEBHOOK_BATCHES,
    IntegrationConfig,
)
from src.quo_sync.webhooks.resources import ConfigSaver, WebhookResourceManager

logger = structlog.get_logger(__name__)

SetupCall = Callable[[], Awaitable[Mapping[str, Any]]]


class SetupOutcome(BaseModel):
    status: Literal["success", "failed", "skipped"]
    detail: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "failed"


class WebhookSetupResult(BaseModel):
    """Outcome of both webhook setups with the combined status."""

    quo: SetupOutcome
    crm: SetupOutcome
    overall: Literal["success", "partial", "failed"]


def _to_outcome(result: Mapping[str, Any] | BaseException | None) -> SetupOutcome:
    if isinstance(result, BaseException):
        return SetupOutcome(status="failed", error=str(result))
    detail = dict(result or {})
    if detail.get("status") == "failed":
        return SetupOutcome(status="failed", detail=detail, error=detail.get("error"))
    return SetupOutcome(status="success", detail=detail)


async def setup_all_webhooks(
    quo_setup: SetupCall,
    crm_setup: SetupCall | None = None,
) -> WebhookSetupResult:
    """Run both setups concurrently and combine their outcomes.

    Raises:
        WebhookSetupError: The Quo setup failed. The aggregate result is
            attached as ``result``.
    """
    calls = [quo_setup()]
    if crm_setup is not None:
        calls.append(crm_setup())

    settled = await asyncio.gather(*calls, return_exceptions=True)

    quo = _to_outcome(settled[0])
    crm = (
        _to_outcome(settled[1])
        if crm_setup is not None
        else SetupOutcome(status="skipped")
    )

    if not quo.ok:
        overall = "failed"
    elif not crm.ok:
        overall = "partial"
    else:
        overall = "success"

    result = WebhookSetupResult(quo=quo, crm=crm, overall=overall)
    logger.info(
        "webhooks.setup_completed",
        overall=overall,
        quo_status=quo.status,
        crm_status=crm.status,
    )

    if overall == "failed":
        raise WebhookSetupError(
            f"Quo webhook setup failed: {quo.error}", result=result
        )

    if overall == "partial":
        logger.warning("webhooks.crm_setup_failed", error=crm.error)
    return result


async def setup_quo_webhooks(
    manager: WebhookResourceManager,
    quo: QuoClient,
    config: IntegrationConfig,
    persist: ConfigSaver | None = None,
) -> dict[str, Any]:
    """Provision Quo webhooks for the integration's enabled phone lines.

    When the enabled set has never been configured (key absent or null), every
    workspace phone line is enabled. An explicit empty list means all lines
    were disabled and is kept.

    Re-provisions when no batches are stored yet, so it also repairs an
    integration whose webhooks were never created.
    """
    enabled = list(config.get(ENABLED_RESOURCE_IDS) or [])
    if config.get(ENABLED_RESOURCE_IDS) is None:
        enabled = [p["id"] for p in await quo.list_phone_numbers() if p.get("id")]

    has_batches = any((config.get(WEBHOOK_BATCHES) or {}).values())
    new_config = await manager.apply_config_update(
        config,
        {ENABLED_RESOURCE_IDS: enabled},
        persist=persist,
        force=not has_batches,
    )
    return {
        "status": "configured",
        "resource_count": len(enabled),
        "webhooks": dict(new_config.get(WEBHOOK_BATCHES) or {}),
    }
