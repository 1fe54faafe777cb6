"""Batch reconciliation -- bulk-create contacts in Quo and map them back to source ids.

Bulk creation is asynchronous on the Quo side and returns no ids, so after
submitting a batch the engine looks the contacts up again by external id.
The lookup endpoint accepts at most 20 external ids per call, so lookups
are chunked and issued concurrently.

Failure policy: if the bulk create or any lookup chunk raises, the whole
call fails and every contact is reported as an error (success_count = 0),
even when other chunks came back. Mapping-write failures are per-record.

Each matched contact gets two mappings: one keyed by its external id and
one keyed by its phone number, the secondary match key for inbound Quo
events (see MappingStore.get_external_id_by_phone).
"""

from __future__ import annotations

import asyncio
from typing import Any

import structlog

from src.quo_sync.quo.client import LIST_CONTACTS_MAX_RESULTS, QuoClient
from src.quo_sync.sync.mapping_store import PHONE_ENTITY_TYPE, MappingStore
from src.quo_sync.sync.schemas import (
    Mapping,
    QuoContact,
    SyncMethod,
    UpsertError,
    UpsertResult,
)

logger = structlog.get_logger(__name__)

NO_PHONE_ERROR = "No phone number available"
NOT_FOUND_ERROR = "Contact not found after bulk create"


def chunk(items: list[Any], size: int) -> list[list[Any]]:
    """Split ``items`` into consecutive chunks of at most ``size``."""
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [items[i : i + size] for i in range(0, len(items), size)]


def _first_phone(found: dict[str, Any]) -> str | None:
    phones = (found.get("defaultFields") or {}).get("phoneNumbers") or []
    for phone in phones:
        if phone.get("value"):
            return phone["value"]
    return None


class BatchReconciler:
    """Upserts contacts into Quo and records external-id mappings.

    Args:
        quo: Directory Service client.
        mappings: Mapping store written on every matched contact.
        entity_type: Mapping entity type for person records.
        settle_seconds: Pause between bulk create and lookup, giving the
            asynchronous bulk job time to land.
    """

    def __init__(
        self,
        quo: QuoClient,
        mappings: MappingStore,
        entity_type: str = "people",
        settle_seconds: float = 1.0,
    ) -> None:
        self._quo = quo
        self._mappings = mappings
        self._entity_type = entity_type
        self._settle_seconds = settle_seconds

    async def bulk_upsert_to_quo(self, contacts: list[QuoContact]) -> UpsertResult:
        """Bulk-create ``contacts`` and map each one back to its Quo id.

        Args:
            contacts: Transformed contacts, each with external_id and phones.

        Returns:
            UpsertResult with per-contact errors.
        """
        errors: list[UpsertError] = []
        eligible: list[QuoContact] = []

        for contact in contacts:
            if contact.primary_phone_number is None:
                errors.append(
                    UpsertError(external_id=contact.external_id, error=NO_PHONE_ERROR)
                )
            else:
                eligible.append(contact)

        if errors:
            logger.info(
                "reconciliation.contacts_without_phone",
                count=len(errors),
                external_ids=[e.external_id for e in errors],
            )

        if not eligible:
            return UpsertResult(success_count=0, error_count=len(errors), errors=errors)

        try:
            found_by_id = await self._create_and_lookup(eligible)
        except Exception as exc:
            logger.error(
                "reconciliation.batch_failed",
                contact_count=len(contacts),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            errors.extend(
                UpsertError(external_id=c.external_id, error=str(exc)) for c in eligible
            )
            return UpsertResult(success_count=0, error_count=len(errors), errors=errors)

        success_count = 0
        for contact in eligible:
            found = found_by_id.get(contact.external_id)
            if found is None:
                errors.append(
                    UpsertError(external_id=contact.external_id, error=NOT_FOUND_ERROR)
                )
                continue

            phone_number = _first_phone(found) or contact.primary_phone_number
            try:
                await self._mappings.upsert(
                    Mapping(
                        external_id=contact.external_id,
                        entity_type=self._entity_type,
                        quo_contact_id=found.get("id"),
                        sync_method=SyncMethod.BATCH,
                        provenance={"action": "created", "phone_number": phone_number},
                    )
                )
                await self._mappings.upsert(
                    Mapping(
                        external_id=phone_number,
                        entity_type=PHONE_ENTITY_TYPE,
                        quo_contact_id=found.get("id"),
                        sync_method=SyncMethod.BATCH,
                        provenance={
                            "action": "created",
                            "external_id": contact.external_id,
                            "entity_type": self._entity_type,
                        },
                    )
                )
            except Exception as exc:
                logger.warning(
                    "reconciliation.mapping_failed",
                    external_id=contact.external_id,
                    error=str(exc),
                )
                errors.append(UpsertError(external_id=contact.external_id, error=str(exc)))
                continue

            success_count += 1

        logger.info(
            "reconciliation.completed",
            submitted=len(contacts),
            success_count=success_count,
            error_count=len(errors),
        )
        return UpsertResult(
            success_count=success_count, error_count=len(errors), errors=errors
        )

    async def _create_and_lookup(
        self, contacts: list[QuoContact]
    ) -> dict[str, dict[str, Any]]:
        """Bulk-create, then fetch the created contacts keyed by external id."""
        await self._quo.bulk_create_contacts(contacts)

        if self._settle_seconds > 0:
            await asyncio.sleep(self._settle_seconds)

        chunks = chunk([c.external_id for c in contacts], LIST_CONTACTS_MAX_RESULTS)
        responses = await asyncio.gather(
            *(
                self._quo.list_contacts(external_ids=ids, max_results=len(ids))
                for ids in chunks
            )
        )

        found: dict[str, dict[str, Any]] = {}
        for response in responses:
            for item in (response or {}).get("data") or []:
                external_id = item.get("externalId")
                if external_id:
                    found[external_id] = item

        logger.debug(
            "reconciliation.lookup_completed",
            chunks=len(chunks),
            found=len(found),
        )
        return found
