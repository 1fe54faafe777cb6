"""Async HTTP client for the Quo (Directory Service) public API.

Provides QuoClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s) on transient HTTP failures. Array limits the API enforces
are checked client-side before any request is sent:

- list_contacts: at most 20 external ids and maxResults <= 20
- webhook creation: at most 10 resource ids per webhook

Covers contacts (bulk create, lookup by external id, create, delete),
webhooks (message, call, call-summary create; delete) and phone numbers.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.quo_sync.sync.errors import SyncConfigurationError
from src.quo_sync.sync.schemas import QuoContact

logger = structlog.get_logger(__name__)

LIST_CONTACTS_MAX_RESULTS = 20
WEBHOOK_MAX_RESOURCE_IDS = 10

MESSAGE_WEBHOOK_EVENTS = ["message.received", "message.delivered"]
CALL_WEBHOOK_EVENTS = ["call.completed", "call.recording.completed"]
CALL_SUMMARY_WEBHOOK_EVENTS = ["call.summary.completed"]

_quo_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class QuoClient:
    """Async client for the Quo REST API.

    Args:
        base_url: API root, e.g. https://api.openphone.com.
        api_key: Workspace API key, sent as the Authorization header.

    Raises:
        SyncConfigurationError: If base_url is empty.
    """

    TIMEOUT_MUTATE = 30.0
    TIMEOUT_READ = 10.0

    def __init__(self, base_url: str | None, api_key: str) -> None:
        if not base_url:
            raise SyncConfigurationError("Quo API base URL is not configured")
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": api_key,
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            headers=self._headers,
            timeout=timeout,
        )

    # ── Contacts ────────────────────────────────────────────────────────────

    @_quo_retry
    async def bulk_create_contacts(
        self, contacts: list[QuoContact | dict[str, Any]]
    ) -> dict:
        """Submit contacts for asynchronous bulk creation.

        POST /v1/contacts/bulk. The API accepts the batch (202) and creates
        contacts in the background, so callers reconcile via list_contacts.
        """
        payload = [c.to_api() if isinstance(c, QuoContact) else c for c in contacts]
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(
                f"{self._base_url}/v1/contacts/bulk",
                json={"contacts": payload},
            )
            response.raise_for_status()
            logger.info("quo.contacts_bulk_submitted", count=len(payload))
            return response.json() if response.content else {}

    async def list_contacts(
        self,
        external_ids: list[str] | None = None,
        max_results: int = LIST_CONTACTS_MAX_RESULTS,
        page_token: str | None = None,
    ) -> dict:
        """List contacts, optionally filtered by external id.

        GET /v1/contacts?externalIds=...&maxResults=...

        Raises:
            ValueError: More than 20 external ids or max_results above 20.
        """
        external_ids = external_ids or []
        if len(external_ids) > LIST_CONTACTS_MAX_RESULTS:
            raise ValueError(
                f"list_contacts accepts at most {LIST_CONTACTS_MAX_RESULTS} "
                f"external ids, got {len(external_ids)}"
            )
        if not 0 < max_results <= LIST_CONTACTS_MAX_RESULTS:
            raise ValueError(
                f"max_results must be between 1 and {LIST_CONTACTS_MAX_RESULTS}"
            )

        params: list[tuple[str, str | int]] = [("maxResults", max_results)]
        params.extend(("externalIds", eid) for eid in external_ids)
        if page_token:
            params.append(("pageToken", page_token))

        return await self._get("/v1/contacts", params=params)

    @_quo_retry
    async def create_contact(self, contact: QuoContact | dict[str, Any]) -> dict:
        """POST /v1/contacts."""
        body = contact.to_api() if isinstance(contact, QuoContact) else contact
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(f"{self._base_url}/v1/contacts", json=body)
            response.raise_for_status()
            data = response.json()
            logger.info(
                "quo.contact_created",
                contact_id=(data.get("data") or {}).get("id"),
                external_id=body.get("externalId"),
            )
            return data

    async def delete_contact(self, contact_id: str) -> None:
        """DELETE /v1/contacts/{id}."""
        await self._delete(f"/v1/contacts/{contact_id}")
        logger.info("quo.contact_deleted", contact_id=contact_id)

    # ── Webhooks ────────────────────────────────────────────────────────────

    async def create_message_webhook(
        self,
        url: str,
        resource_ids: list[str],
        events: list[str] | None = None,
        label: str | None = None,
    ) -> dict:
        """POST /v1/webhooks/messages. Returns the created webhook (id, key...)."""
        return await self._create_webhook(
            "/v1/webhooks/messages", url, resource_ids, events or MESSAGE_WEBHOOK_EVENTS, label
        )

    async def create_call_webhook(
        self,
        url: str,
        resource_ids: list[str],
        events: list[str] | None = None,
        label: str | None = None,
    ) -> dict:
        """POST /v1/webhooks/calls."""
        return await self._create_webhook(
            "/v1/webhooks/calls", url, resource_ids, events or CALL_WEBHOOK_EVENTS, label
        )

    async def create_call_summary_webhook(
        self,
        url: str,
        resource_ids: list[str],
        events: list[str] | None = None,
        label: str | None = None,
    ) -> dict:
        """POST /v1/webhooks/call-summaries."""
        return await self._create_webhook(
            "/v1/webhooks/call-summaries",
            url,
            resource_ids,
            events or CALL_SUMMARY_WEBHOOK_EVENTS,
            label,
        )

    async def delete_webhook(self, webhook_id: str) -> None:
        """DELETE /v1/webhooks/{id}."""
        await self._delete(f"/v1/webhooks/{webhook_id}")
        logger.info("quo.webhook_deleted", webhook_id=webhook_id)

    async def _create_webhook(
        self,
        path: str,
        url: str,
        resource_ids: list[str],
        events: list[str],
        label: str | None,
    ) -> dict:
        if len(resource_ids) > WEBHOOK_MAX_RESOURCE_IDS:
            raise ValueError(
                f"A webhook accepts at most {WEBHOOK_MAX_RESOURCE_IDS} "
                f"resource ids, got {len(resource_ids)}"
            )

        body: dict[str, Any] = {
            "url": url,
            "events": events,
            "resourceIds": resource_ids,
        }
        if label:
            body["label"] = label

        data = await self._post(path, body)
        webhook = data.get("data", data)
        logger.info(
            "quo.webhook_created",
            path=path,
            webhook_id=webhook.get("id"),
            resource_count=len(resource_ids),
        )
        return webhook

    # ── Phone Numbers ───────────────────────────────────────────────────────

    async def list_phone_numbers(self) -> list[dict]:
        """GET /v1/phone-numbers. Returns the workspace's phone lines."""
        data = await self._get("/v1/phone-numbers")
        return data.get("data", [])

    # ── Transport ───────────────────────────────────────────────────────────

    @_quo_retry
    async def _get(self, path: str, params: Any = None) -> dict:
        async with self._client(self.TIMEOUT_READ) as client:
            response = await client.get(f"{self._base_url}{path}", params=params)
            response.raise_for_status()
            return response.json()

    @_quo_retry
    async def _post(self, path: str, body: dict[str, Any]) -> dict:
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(f"{self._base_url}{path}", json=body)
            response.raise_for_status()
            return response.json()

    @_quo_retry
    async def _delete(self, path: str) -> None:
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.delete(f"{self._base_url}{path}")
            response.raise_for_status()
