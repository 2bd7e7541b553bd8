"""
Remote gateway: the sync core's view of the remote data store.

The abstract contract is three calls per entity type (upsert, delete, fetch
all). ``RestGateway`` implements it over a PostgREST-style HTTP API such as
the one a hosted Postgres backend exposes.

Features:
- Async HTTP client with connection pooling
- Transient (network, timeout, 5xx, 408, 429) vs permanent (other 4xx) errors
- API key / bearer token headers
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from .exceptions import PermanentRemoteError, TransientRemoteError
from .models import EntityRecord, EntityType

logger = logging.getLogger(__name__)

TABLE_NAMES: dict[EntityType, str] = {
    EntityType.TASK: "tasks",
    EntityType.GOAL: "goals",
    EntityType.ACHIEVEMENT: "achievements",
    EntityType.USER: "users",
    EntityType.STREAK: "streaks",
}

TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


class RemoteGateway(ABC):
    """
    Contract of the remote store.

    Every call either succeeds as a unit or raises a ``RemoteError``:
    ``TransientRemoteError`` when a retry may succeed, ``PermanentRemoteError``
    when it will not.
    """

    @abstractmethod
    async def create_or_update(self, entity_type: EntityType, record: dict[str, Any]) -> None:
        """Insert the record or overwrite the existing one with the same id."""

    @abstractmethod
    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        """Delete the record with the given id. Deleting a missing record succeeds."""

    @abstractmethod
    async def fetch_all(self, entity_type: EntityType) -> list[EntityRecord]:
        """Return the full remote collection for an entity type."""

    async def close(self) -> None:
        """Release network resources."""
        return None


def classify_status(response: httpx.Response, action: str) -> None:
    """Raise the matching RemoteError for a non-2xx response."""
    if response.is_success:
        return

    code = response.status_code
    message = f"{action} failed: {code} - {response.text[:200]}"
    if code >= 500 or code in TRANSIENT_STATUS_CODES:
        raise TransientRemoteError(message, status_code=code)
    raise PermanentRemoteError(message, status_code=code)


class RestGateway(RemoteGateway):
    """PostgREST-style HTTP gateway."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        rest_path: str = "/rest/v1",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.rest_path = "/" + rest_path.strip("/")
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers=self._default_headers(),
                transport=self._transport,
            )
        return self._http_client

    def _default_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _table_url(self, entity_type: EntityType) -> str:
        return f"{self.base_url}{self.rest_path}/{TABLE_NAMES[EntityType(entity_type)]}"

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        client = await self._get_http_client()
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientRemoteError(f"{action} timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientRemoteError(f"{action} network error: {e}") from e

        classify_status(response, action)
        return response

    async def create_or_update(self, entity_type: EntityType, record: dict[str, Any]) -> None:
        entity_type = EntityType(entity_type)
        await self._request(
            "POST",
            self._table_url(entity_type),
            f"Upsert {entity_type.value} {record.get('id')}",
            json=[record],
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        logger.debug(f"Upserted {entity_type.value} {record.get('id')}")

    async def delete(self, entity_type: EntityType, entity_id: str) -> None:
        entity_type = EntityType(entity_type)
        await self._request(
            "DELETE",
            self._table_url(entity_type),
            f"Delete {entity_type.value} {entity_id}",
            params={"id": f"eq.{entity_id}"},
        )
        logger.debug(f"Deleted {entity_type.value} {entity_id}")

    async def fetch_all(self, entity_type: EntityType) -> list[EntityRecord]:
        entity_type = EntityType(entity_type)
        response = await self._request(
            "GET",
            self._table_url(entity_type),
            f"Fetch {entity_type.value}",
            params={"select": "*"},
        )
        try:
            rows = response.json()
        except ValueError as e:
            raise TransientRemoteError(f"Fetch {entity_type.value} returned invalid JSON: {e}") from e
        if not isinstance(rows, list):
            raise PermanentRemoteError(
                f"Fetch {entity_type.value} returned {type(rows).__name__}, expected a list"
            )

        records = []
        for row in rows:
            try:
                records.append(EntityRecord.from_row(entity_type, row))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed {entity_type.value} row: {e}")
        logger.info(f"Fetched {len(records)} {entity_type.value} record(s)")
        return records
