"""Sync worker entry point.

Wires settings, logging, Redis, the process/mapping repositories, the Quo
client and the configured CRM adapter into a SyncWorker, then runs it
until interrupted:

  python -m src.quo_sync.main --integration-id int_123 \\
      --adapter-module mycrm.adapter --consumer worker-1

Concrete CRM adapters live outside this package. ``--adapter-module`` is
imported first so that its ``@register_adapter`` classes are available
to ``Settings.CRM_ADAPTER``.

``--post-create`` queues the delayed POST_CREATE_SETUP item for a freshly
connected integration before the worker starts consuming.
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import signal
import socket
from typing import Any

import structlog

from src.quo_sync.adapters.base import Integration
from src.quo_sync.adapters.registry import get_adapter_registry
from src.quo_sync.config import Settings, get_settings
from src.quo_sync.core.database import close_db, get_session, init_db
from src.quo_sync.core.logging import configure_structlog
from src.quo_sync.core.redis import close_redis, get_redis_pool
from src.quo_sync.quo.client import QuoClient
from src.quo_sync.sync.dlq import DeadLetterQueue
from src.quo_sync.sync.handlers import SyncWorkHandlers
from src.quo_sync.sync.mapping_store import MappingRepository
from src.quo_sync.sync.orchestrator import SyncOrchestrator
from src.quo_sync.sync.process_manager import ProcessManager
from src.quo_sync.sync.process_store import ProcessRepository
from src.quo_sync.sync.queue import RedisStreamQueue
from src.quo_sync.sync.queue_manager import QueueManager
from src.quo_sync.sync.reconciliation import BatchReconciler
from src.quo_sync.sync.worker import SyncWorker
from src.quo_sync.webhooks.config import IntegrationConfig, freeze
from src.quo_sync.webhooks.resources import WebhookResourceManager
from src.quo_sync.webhooks.setup import setup_all_webhooks, setup_quo_webhooks

logger = structlog.get_logger(__name__)


def build_worker(
    settings: Settings,
    integration: Integration,
    consumer_name: str,
    config: IntegrationConfig | None = None,
) -> SyncWorker:
    """Assemble a SyncWorker for one integration."""
    redis = get_redis_pool()
    queue = RedisStreamQueue(redis, settings.SYNC_STREAM, maxlen=settings.SYNC_STREAM_MAXLEN)
    queue_manager = QueueManager(queue)
    process_manager = ProcessManager(ProcessRepository(get_session))
    quo = QuoClient(settings.QUO_API_BASE_URL, settings.QUO_API_KEY)
    reconciler = BatchReconciler(quo, MappingRepository(get_session))
    orchestrator = SyncOrchestrator(
        process_manager,
        queue_manager,
        estimated_sync_minutes=settings.ESTIMATED_SYNC_MINUTES,
    )

    current: dict[str, Any] = {"config": freeze(config or integration.record.get("config"))}

    async def persist(new_config: IntegrationConfig) -> None:
        current["config"] = new_config
        logger.info("integration.config_updated", integration_id=integration.id)

    async def webhook_setup() -> Any:
        manager = WebhookResourceManager(quo, f"{settings.WEBHOOK_BASE_URL}/quo/{integration.id}")
        return await setup_all_webhooks(
            quo_setup=lambda: setup_quo_webhooks(manager, quo, current["config"], persist=persist),
            crm_setup=integration.adapter.setup_webhooks,
        )

    handlers = SyncWorkHandlers(
        integration=integration,
        process_manager=process_manager,
        queue_manager=queue_manager,
        reconciler=reconciler,
        orchestrator=orchestrator,
        webhook_setup=webhook_setup,
    )
    return SyncWorker(
        queue=queue,
        group=settings.SYNC_CONSUMER_GROUP,
        consumer_name=consumer_name,
        dlq=DeadLetterQueue(redis, maxlen=settings.SYNC_STREAM_MAXLEN),
        handler=handlers.dispatch,
    )


async def run(args: argparse.Namespace) -> None:
    settings = get_settings()
    configure_structlog()

    for module in args.adapter_module:
        importlib.import_module(module)

    adapter = get_adapter_registry().create(settings.CRM_ADAPTER)
    integration = Integration(
        adapter=adapter,
        id=args.integration_id,
        user_id=args.user_id,
    )

    await init_db()
    worker = build_worker(settings, integration, args.consumer)

    if args.post_create:
        orchestrator = SyncOrchestrator(
            ProcessManager(ProcessRepository(get_session)),
            QueueManager(RedisStreamQueue(get_redis_pool(), settings.SYNC_STREAM)),
        )
        await orchestrator.schedule_post_create_setup(
            integration.id, delay_seconds=adapter.on_create_delay_seconds
        )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await close_redis()
        await close_db()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a CRM -> Quo sync worker.")
    parser.add_argument("--integration-id", required=True)
    parser.add_argument("--user-id", default=None)
    parser.add_argument(
        "--adapter-module",
        action="append",
        default=[],
        help="Module to import for adapter registration (repeatable).",
    )
    parser.add_argument("--consumer", default=socket.gethostname())
    parser.add_argument(
        "--post-create",
        action="store_true",
        help="Schedule webhook setup and the initial sync for a new integration.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    main()
