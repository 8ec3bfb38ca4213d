"""HTTP clients for the relational store and the blob store.

Both speak the PostgREST/storage dialect exposed by the backend. Transport
and HTTP failures are translated into ``StoreError``/``BlobStoreError`` here
so callers never handle httpx exceptions directly.
"""

import logging
from typing import Any
from urllib.parse import quote

import httpx

from .config import BlobConfig, StoreConfig
from .errors import BlobStoreError, StoreError

logger = logging.getLogger(__name__)


class _BackendClient:
    """Shared lazily-created ``httpx.AsyncClient`` with auth headers."""

    def __init__(self, config: StoreConfig):
        self.config = config
        self.base_url = config.url.rstrip("/")
        self._client: httpx.AsyncClient | None = None

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.config.timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class RestStore(_BackendClient):
    """Ordered query and insert against PostgREST tables."""

    async def query(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Select rows from a table.

        Args:
            table: Table name.
            filters: Column equality filters.
            order: ``(column, ascending)`` pair.
            limit: Maximum rows to return.

        Returns:
            List of row dicts.

        Raises:
            StoreError: On transport failure, a non-2xx response or a
                body that is not JSON.
        """
        params: dict[str, str] = {"select": "*"}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        if order:
            column, ascending = order
            params["order"] = f"{column}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)

        client = await self._get_client()
        try:
            response = await client.get(f"/rest/v1/{table}", params=params)
        except httpx.HTTPError as e:
            raise StoreError(f"Query on {table} failed: {e}") from e

        if response.status_code != 200:
            raise StoreError(
                f"Query on {table} returned HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            rows = response.json()
        except ValueError as e:
            raise StoreError(
                f"Query on {table} returned a non-JSON body: {e}",
                status_code=response.status_code,
            ) from e
        if not isinstance(rows, list):
            raise StoreError(
                f"Query on {table} returned {type(rows).__name__}, expected a list",
                status_code=response.status_code,
            )
        logger.debug(f"Fetched {len(rows)} rows from {table}")
        return rows

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert one record and return the stored row.

        Raises:
            StoreError: On transport failure, a non-2xx response or a
                body that is not JSON.
        """
        client = await self._get_client()
        try:
            response = await client.post(
                f"/rest/v1/{table}",
                json=record,
                headers={"Prefer": "return=representation"},
            )
        except httpx.HTTPError as e:
            raise StoreError(f"Insert into {table} failed: {e}") from e

        if response.status_code not in (200, 201):
            raise StoreError(
                f"Insert into {table} returned HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(
                f"Insert into {table} returned a non-JSON body: {e}",
                status_code=response.status_code,
            ) from e
        if isinstance(data, list):
            return data[0] if data else {}
        return data

    async def health_check(self) -> bool:
        """Check if the store answers at all.

        Returns:
            True if the REST root responds without a server error.
        """
        try:
            client = await self._get_client()
            response = await client.get("/rest/v1/")
            return response.status_code < 500
        except Exception as e:
            logger.debug(f"Health check failed: {e}")
            return False


class BlobStore(_BackendClient):
    """Upload blobs to a storage bucket and build their public URLs."""

    def __init__(self, config: StoreConfig, blob_config: BlobConfig):
        super().__init__(config)
        self.bucket = blob_config.bucket

    async def put(
        self,
        path: str,
        blob: bytes,
        content_type: str | None = None,
    ) -> None:
        """Upload a blob.

        Raises:
            BlobStoreError: On transport failure or a non-2xx response.
        """
        client = await self._get_client()
        headers = {"Content-Type": content_type or "application/octet-stream"}
        try:
            response = await client.post(
                f"/storage/v1/object/{self.bucket}/{quote(path)}",
                content=blob,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Upload of {path} failed: {e}") from e

        if response.status_code not in (200, 201):
            raise BlobStoreError(
                f"Upload of {path} returned HTTP {response.status_code}: {response.text}"
            )
        logger.debug(f"Uploaded {len(blob)} bytes to {self.bucket}/{path}")

    def public_url_for(self, path: str) -> str:
        """Public URL of an uploaded blob."""
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"
