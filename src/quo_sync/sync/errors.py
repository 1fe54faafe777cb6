"""Exception hierarchy for the sync engine."""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for sync engine errors."""


class SyncConfigurationError(SyncError):
    """Required setup is missing (person object types, base URL, user id).

    Raised before any side effect and never retried.
    """


class ProcessNotFoundError(SyncError):
    """No process record exists for the given id."""

    def __init__(self, process_id: str) -> None:
        super().__init__(f"Process not found: {process_id}")
        self.process_id = process_id


class InvalidStateTransitionError(ValueError):
    """A process in a terminal state was asked to move elsewhere."""


class WebhookSetupError(SyncError):
    """Mandatory webhook provisioning failed.

    ``result`` carries the aggregate setup outcome when one exists.
    """

    def __init__(self, message: str, result: Any = None) -> None:
        super().__init__(message)
        self.result = result
