# redirect-service/store.py
"""Client for the Directus REST API that holds the short links."""

import json
import logging
from typing import Any, Dict, List, Sequence

import httpx

from config import Settings
from errors import (
    IncrementConflictError,
    InvalidRecordError,
    RecordMissingError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

Record = Dict[str, Any]


async def connect_to_store(settings: Settings) -> httpx.AsyncClient:
    client = httpx.AsyncClient(
        base_url=settings.directus_url,
        headers={"Authorization": f"Bearer {settings.directus_token}"},
        timeout=settings.request_timeout,
    )
    try:
        await DirectusStore(client, settings.links_collection).ping()
        logger.info("Connected to Directus at %s", settings.directus_url)
        return client
    except StoreUnavailableError as e:
        logger.error("Directus connection failed: %s", e)
        await client.aclose()
        raise


async def close_store_connection(client: httpx.AsyncClient):
    await client.aclose()
    logger.info("Disconnected from Directus.")


class DirectusStore:
    """Query, fetch and increment records of one collection.

    Directus has no atomic increment, so ``increment`` does a conditional
    update: the PATCH only matches while the field still holds the value that
    was read, and is retried with a fresh read when another writer got there
    first.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        collection: str,
        max_retries: int = 10,
    ):
        self.client = client
        self.collection = collection
        self.max_retries = max_retries

    async def ping(self) -> None:
        try:
            response = await self.client.get("/server/ping")
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"Directus unreachable: {e}") from e
        if response.status_code != 200:
            raise StoreUnavailableError(
                f"Directus ping answered {response.status_code}",
                status_code=response.status_code,
            )

    async def query(
        self, filter: Dict[str, Any], sort: Sequence[str] = ("date_created", "id")
    ) -> List[Record]:
        params = {"filter": json.dumps(filter)}
        if sort:
            params["sort"] = ",".join(sort)
        data = await self._request("GET", f"/items/{self.collection}", params=params)
        if not isinstance(data, list):
            raise StoreUnavailableError("Directus returned a non-list query result")
        return data

    async def fetch(self, record_id) -> Record:
        # Directus answers 403 rather than 404 for ids it does not know.
        data = await self._request(
            "GET",
            f"/items/{self.collection}/{record_id}",
            missing=(403, 404),
            record_id=record_id,
        )
        if not isinstance(data, dict):
            raise RecordMissingError(record_id)
        return data

    async def increment(self, record_id, field: str, delta: int = 1) -> Record:
        record = await self.fetch(record_id)
        for attempt in range(1, self.max_retries + 1):
            current = record.get(field)
            expected = {"_null": True} if current is None else {"_eq": current}
            count = _counter_value(record_id, field, current)
            updated = await self._request(
                "PATCH",
                f"/items/{self.collection}",
                json={
                    "query": {
                        "filter": {"id": {"_eq": record_id}, field: expected}
                    },
                    "data": {field: count + delta},
                },
            )
            if not isinstance(updated, list):
                raise StoreUnavailableError("Directus returned a non-list update result")
            if updated:
                return updated[0]
            logger.debug(
                "Write conflict on %s/%s.%s (attempt %d/%d)",
                self.collection,
                record_id,
                field,
                attempt,
                self.max_retries,
            )
            if attempt < self.max_retries:
                record = await self.fetch(record_id)
        raise IncrementConflictError(record_id, self.max_retries)

    async def _request(
        self, method: str, path: str, missing=(), record_id=None, **kwargs
    ) -> Any:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise StoreUnavailableError(f"Directus timed out on {method} {path}") from e
        except httpx.HTTPError as e:
            raise StoreUnavailableError(f"Directus unreachable: {e}") from e

        if response.status_code in missing:
            raise RecordMissingError(record_id)
        if response.status_code >= 400:
            raise StoreUnavailableError(
                f"Directus answered {response.status_code} on {method} {path}",
                status_code=response.status_code,
            )
        try:
            return response.json()["data"]
        except (ValueError, KeyError, TypeError) as e:
            raise StoreUnavailableError(
                f"Malformed Directus response on {method} {path}"
            ) from e


def _counter_value(record_id, field: str, raw) -> int:
    # bigInteger fields come back as JSON strings.
    if raw is None:
        return 0
    if isinstance(raw, bool):
        raise InvalidRecordError(f"Record {record_id!r} has a boolean {field}")
    try:
        return int(raw)
    except (TypeError, ValueError) as e:
        raise InvalidRecordError(
            f"Record {record_id!r} has a non-numeric {field}: {raw!r}"
        ) from e
