"""Tests for aggregate webhook setup and Quo webhook provisioning."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from src.quo_sync.sync.errors import WebhookSetupError
from src.quo_sync.webhooks.config import ENABLED_RESOURCE_IDS, WEBHOOK_BATCHES, freeze
from src.quo_sync.webhooks.setup import setup_all_webhooks, setup_quo_webhooks


class TestSetupAllWebhooks:
    """Status combination of the Quo and CRM setups."""

    @pytest.mark.asyncio
    async def test_both_succeed(self):
        result = await setup_all_webhooks(
            AsyncMock(return_value={"status": "configured"}),
            AsyncMock(return_value={"status": "success"}),
        )
        assert result.overall == "success"
        assert result.quo.detail == {"status": "configured"}

    @pytest.mark.asyncio
    async def test_crm_failure_is_partial(self):
        """CRM failure does not raise; overall is partial."""
        result = await setup_all_webhooks(
            AsyncMock(return_value={"status": "configured"}),
            AsyncMock(side_effect=RuntimeError("crm down")),
        )
        assert result.overall == "partial"
        assert result.crm.status == "failed"
        assert result.crm.error == "crm down"

    @pytest.mark.asyncio
    async def test_failed_status_dict_counts_as_failure(self):
        result = await setup_all_webhooks(
            AsyncMock(return_value={}),
            AsyncMock(return_value={"status": "failed", "error": "no scope"}),
        )
        assert result.overall == "partial"
        assert result.crm.error == "no scope"

    @pytest.mark.asyncio
    async def test_quo_failure_raises_with_result(self):
        """A Quo failure raises WebhookSetupError carrying both outcomes."""
        crm = AsyncMock(return_value={"status": "success"})

        with pytest.raises(WebhookSetupError, match="quo down") as exc_info:
            await setup_all_webhooks(AsyncMock(side_effect=RuntimeError("quo down")), crm)

        result = exc_info.value.result
        assert result.overall == "failed"
        assert result.crm.status == "success"
        crm.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_crm_setup(self):
        result = await setup_all_webhooks(AsyncMock(return_value={}))
        assert result.overall == "success"
        assert result.crm.status == "skipped"


class TestSetupQuoWebhooks:
    """Tests for provisioning Quo webhooks from integration config."""

    @pytest.mark.asyncio
    async def test_defaults_to_every_phone_line_and_forces(self):
        """With nothing enabled or stored, all lines are enabled and provisioned."""
        quo = AsyncMock()
        quo.list_phone_numbers = AsyncMock(return_value=[{"id": "PN1"}, {"id": "PN2"}, {}])
        manager = AsyncMock()
        manager.apply_config_update = AsyncMock(
            return_value=freeze({WEBHOOK_BATCHES: {"message": [{"id": "wh-1"}]}})
        )

        result = await setup_quo_webhooks(manager, quo, freeze({}))

        args, kwargs = manager.apply_config_update.call_args
        assert args[1] == {ENABLED_RESOURCE_IDS: ["PN1", "PN2"]}
        assert kwargs["force"] is True
        assert result["status"] == "configured"
        assert result["resource_count"] == 2
        assert result["webhooks"] == {"message": [{"id": "wh-1"}]}

    @pytest.mark.asyncio
    async def test_existing_batches_are_not_forced(self):
        quo = AsyncMock()
        manager = AsyncMock()
        manager.apply_config_update = AsyncMock(return_value=freeze({}))
        config = freeze({
            ENABLED_RESOURCE_IDS: ["PN9"],
            WEBHOOK_BATCHES: {"message": [{"id": "wh-1", "resource_ids": ["PN9"]}]},
        })

        await setup_quo_webhooks(manager, quo, config)

        quo.list_phone_numbers.assert_not_called()
        assert manager.apply_config_update.call_args[1]["force"] is False

    @pytest.mark.asyncio
    async def test_explicit_empty_selection_is_kept(self):
        """Disabling every line is a choice, not a missing setting."""
        quo = AsyncMock()
        manager = AsyncMock()
        manager.apply_config_update = AsyncMock(return_value=freeze({WEBHOOK_BATCHES: {}}))
        config = freeze({ENABLED_RESOURCE_IDS: [], WEBHOOK_BATCHES: {}})

        result = await setup_quo_webhooks(manager, quo, config)

        quo.list_phone_numbers.assert_not_called()
        args, _ = manager.apply_config_update.call_args
        assert args[1] == {ENABLED_RESOURCE_IDS: []}
        assert result["resource_count"] == 0

    @pytest.mark.asyncio
    async def test_null_selection_defaults_to_every_line(self):
        quo = AsyncMock()
        quo.list_phone_numbers = AsyncMock(return_value=[{"id": "PN1"}])
        manager = AsyncMock()
        manager.apply_config_update = AsyncMock(return_value=freeze({}))

        await setup_quo_webhooks(manager, quo, freeze({ENABLED_RESOURCE_IDS: None}))

        assert manager.apply_config_update.call_args[0][1] == {ENABLED_RESOURCE_IDS: ["PN1"]}
