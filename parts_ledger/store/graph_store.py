"""SharePoint list store reached through the Microsoft Graph API.

Each collection is a SharePoint list on one site; records are list items with
their columns under ``fields``. Authentication is handled elsewhere: this
store only needs a bearer token (static from settings or supplied by an async
token provider).

No call is retried. A timed-out write may still have been applied on the
server, so callers re-read state instead of repeating the request.

See: https://learn.microsoft.com/graph/api/resources/listitem
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, cast

import httpx
from prometheus_client import Counter

from parts_ledger.shared.config import Settings
from parts_ledger.shared.errors import (
    ConfigurationError,
    StoreUnavailableError,
    store_error_for_status,
)
from parts_ledger.store.base import Collection, ListQuery, RemoteListStore, StoreRecord

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]

store_requests_total = Counter(
    "list_store_requests_total",
    "Total remote list store requests",
    ["collection", "operation", "outcome"],
)


class GraphListStore(RemoteListStore):
    """List store backed by SharePoint lists over Microsoft Graph."""

    def __init__(
        self,
        settings: Settings,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Graph list store.

        Args:
            settings: Application settings with graph_* and *_list_name fields
            token_provider: Async callable returning a bearer token; defaults to
                settings.graph_access_token
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        super().__init__(settings)
        self._token_provider = token_provider
        self._site_id = settings.graph_site_id
        self._list_names = {
            Collection.PARTS: settings.parts_list_name,
            Collection.BUYERS: settings.buyers_list_name,
            Collection.INVOICES: settings.invoices_list_name,
            Collection.TRANSACTIONS: settings.transactions_list_name,
        }
        self._client = httpx.AsyncClient(
            base_url=settings.graph_base_url.rstrip("/"),
            timeout=settings.graph_timeout_seconds,
            transport=transport,
        )

    @property
    def provider_name(self) -> str:
        return "graph"

    def is_available(self) -> bool:
        """Check that a site and a credential source are configured."""
        if not self._site_id:
            return False
        return bool(self._token_provider or self.settings.graph_access_token)

    async def close(self) -> None:
        await self._client.aclose()

    def _items_path(self, collection: Collection) -> str:
        return f"/sites/{self._site_id}/lists/{self._list_names[collection]}/items"

    async def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        if self._token_provider is not None:
            token = await self._token_provider()
        else:
            token = self.settings.graph_access_token
        if not token:
            raise ConfigurationError(
                "Graph access token not configured. "
                "Set APP_GRAPH_ACCESS_TOKEN or pass a token provider."
            )
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        return response.reason_phrase

    async def _request(
        self,
        method: str,
        url: str,
        collection: str,
        operation: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        allow_not_found: bool = False,
    ) -> httpx.Response | None:
        """Send one request and translate failures into store errors.

        Returns:
            The response, or None for a 404 when allow_not_found is set

        Raises:
            StoreUnavailableError: Transport failure, timeout, or HTTP error status
        """
        request_headers = await self._headers(headers)
        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers=request_headers
            )
        except httpx.TimeoutException as e:
            store_requests_total.labels(collection, operation, "timeout").inc()
            logger.error(f"{operation} on {collection} timed out: {e}")
            raise StoreUnavailableError(
                f"{operation} on {collection} timed out; the write may still have been applied"
            ) from e
        except httpx.TransportError as e:
            store_requests_total.labels(collection, operation, "transport_error").inc()
            logger.error(f"{operation} on {collection} failed to reach the store: {e}")
            raise StoreUnavailableError(f"{operation} on {collection} failed: {e}") from e

        if response.status_code == 404 and allow_not_found:
            store_requests_total.labels(collection, operation, "not_found").inc()
            return None

        if response.is_error:
            store_requests_total.labels(collection, operation, str(response.status_code)).inc()
            message = self._error_message(response)
            logger.error(
                f"{operation} on {collection} failed with {response.status_code}: {message}"
            )
            raise store_error_for_status(
                response.status_code, f"{operation} on {collection} failed: {message}"
            )

        store_requests_total.labels(collection, operation, "success").inc()
        logger.debug(f"{operation} on {collection} successful")
        return response

    @staticmethod
    def _quote(value: str | int | float | bool) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int | float):
            return str(value)
        escaped = str(value).replace("'", "''")
        return f"'{escaped}'"

    def _build_params(self, query: ListQuery) -> dict[str, str]:
        params = {"$expand": "fields"}
        if query.filters:
            params["$filter"] = " and ".join(
                f"fields/{name} eq {self._quote(value)}" for name, value in query.filters.items()
            )
        if query.order_by:
            direction = " desc" if query.descending else ""
            params["$orderby"] = f"fields/{query.order_by}{direction}"
        if query.top:
            params["$top"] = str(query.top)
        return params

    async def list(self, collection: Collection, query: ListQuery | None = None) -> list[StoreRecord]:
        """List items, following @odata.nextLink pages until exhausted or top is reached."""
        query = query or ListQuery()
        # Filtering on non-indexed columns is rejected without this header
        headers = {"Prefer": "HonorNonIndexedQueriesWarningMayFailRandomly"}
        records: list[StoreRecord] = []
        url: str | None = self._items_path(collection)
        params: dict[str, str] | None = self._build_params(query)

        while url:
            response = cast(
                httpx.Response,
                await self._request(
                    "GET", url, collection.value, "list", params=params, headers=headers
                ),
            )
            body = response.json()
            records.extend(body.get("value", []))
            if query.top and len(records) >= query.top:
                return records[: query.top]
            # nextLink is absolute and already carries the query string
            url = body.get("@odata.nextLink")
            params = None

        return records

    async def get(self, collection: Collection, item_id: str) -> StoreRecord | None:
        response = await self._request(
            "GET",
            f"{self._items_path(collection)}/{item_id}",
            collection.value,
            "get",
            params={"$expand": "fields"},
            allow_not_found=True,
        )
        if response is None:
            return None
        result: StoreRecord = response.json()
        return result

    async def create(self, collection: Collection, fields: dict[str, Any]) -> StoreRecord:
        response = cast(
            httpx.Response,
            await self._request(
                "POST",
                self._items_path(collection),
                collection.value,
                "create",
                json={"fields": fields},
            ),
        )
        result: StoreRecord = response.json()
        return result

    async def update(
        self,
        collection: Collection,
        item_id: str,
        fields: dict[str, Any],
        etag: str | None = None,
    ) -> StoreRecord:
        """Patch the item's fieldValueSet, conditionally on etag when given."""
        headers = {"If-Match": etag} if etag else None
        response = cast(
            httpx.Response,
            await self._request(
                "PATCH",
                f"{self._items_path(collection)}/{item_id}/fields",
                collection.value,
                "update",
                json=fields,
                headers=headers,
            ),
        )
        field_values: dict[str, Any] = response.json()
        return {
            "id": item_id,
            "@odata.etag": field_values.get("@odata.etag"),
            "lastModifiedDateTime": field_values.get("Modified"),
            "createdDateTime": field_values.get("Created"),
            "fields": field_values,
        }

    async def delete(self, collection: Collection, item_id: str) -> None:
        await self._request(
            "DELETE",
            f"{self._items_path(collection)}/{item_id}",
            collection.value,
            "delete",
        )

    async def health_check(self) -> dict[str, bool]:
        """Check that each configured list answers a metadata request."""
        results: dict[str, bool] = {}
        for collection, list_name in self._list_names.items():
            try:
                await self._request(
                    "GET",
                    f"/sites/{self._site_id}/lists/{list_name}",
                    collection.value,
                    "health",
                )
                results[collection.value] = True
            except (StoreUnavailableError, ConfigurationError) as e:
                logger.warning(f"Health check failed for list {list_name}: {e}")
                results[collection.value] = False
        return results
