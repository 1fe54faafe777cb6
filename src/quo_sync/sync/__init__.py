"""CRM -> Quo person sync engine.

Process tracking, work queueing, orchestration, batch reconciliation and
the worker that runs queued work items.

Exports:
    ProcessState, SyncType, WorkItem, WorkItemType: Core value types.
    SyncError and subclasses: Sync exception hierarchy.
    ProcessManager: Process lifecycle, state and metrics.
    QueueManager: Typed work item enqueueing and page fan-out.
    SyncOrchestrator: Initial, ongoing and webhook-triggered syncs.
    BatchReconciler: Bulk create + lookup + mapping reconciliation.
    SyncWorkHandlers: Handlers per work item type.
    SyncWorker: Consumer-group worker with retry and DLQ.
    DeadLetterQueue: DLQ for failed work items.
    RedisStreamQueue: Redis Streams queue transport.
"""

from __future__ import annotations

from src.quo_sync.sync.errors import (
    InvalidStateTransitionError,
    ProcessNotFoundError,
    SyncConfigurationError,
    SyncError,
    WebhookSetupError,
)
from src.quo_sync.sync.schemas import ProcessState, SyncType, WorkItem, WorkItemType

__all__ = [
    "BatchReconciler",
    "DeadLetterQueue",
    "InvalidStateTransitionError",
    "ProcessManager",
    "ProcessNotFoundError",
    "ProcessState",
    "QueueManager",
    "RedisStreamQueue",
    "SyncConfigurationError",
    "SyncError",
    "SyncOrchestrator",
    "SyncType",
    "SyncWorkHandlers",
    "SyncWorker",
    "WebhookSetupError",
    "WorkItem",
    "WorkItemType",
]

_LAZY = {
    "BatchReconciler": "src.quo_sync.sync.reconciliation",
    "DeadLetterQueue": "src.quo_sync.sync.dlq",
    "ProcessManager": "src.quo_sync.sync.process_manager",
    "QueueManager": "src.quo_sync.sync.queue_manager",
    "RedisStreamQueue": "src.quo_sync.sync.queue",
    "SyncOrchestrator": "src.quo_sync.sync.orchestrator",
    "SyncWorkHandlers": "src.quo_sync.sync.handlers",
    "SyncWorker": "src.quo_sync.sync.worker",
}


def __getattr__(name: str):  # noqa: N807
    """Lazy-load services so adapters can import sync.schemas without cycles."""
    module_path = _LAZY.get(name)
    if module_path is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)
    import importlib

    return getattr(importlib.import_module(module_path), name)
