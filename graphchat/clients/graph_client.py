"""
Knowledge graph ("memory") REST client.

connect() reads the backend's OpenAPI document, records the operations it
exposes and derives the base URL. Every operation is a thin wrapper around
request(); responses are returned as decoded JSON.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

import httpx
from pydantic import BaseModel, Field

from graphchat.errors import TransportError

logger = logging.getLogger(__name__)

HTTP_OK = 200
HTTP_BAD_REQUEST = 400


class APIEndpoint(BaseModel):
    """One operation advertised by the backend's OpenAPI document."""

    path: str
    method: str
    summary: str = ""
    description: str = ""
    tags: list[str] = Field(default_factory=list)


class GraphClient:
    """Client for the memory server's /tools REST surface."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._api_key = ""
        self.base_url = ""
        self.endpoints: list[APIEndpoint] = []
        self._connected = False

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport, trust_env=False)
        return self._client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    # ---- system -----------------------------------------------------------

    async def connect(self, api_url: str, api_key: str = "") -> None:
        """Fetch the OpenAPI document at api_url and record the endpoints."""
        logger.info("→ GRAPH: connecting to %s", api_url)
        self._api_key = api_key

        try:
            response = await self.client.get(api_url, headers=self._headers())
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to connect to memory server: {e}") from e

        if response.status_code != HTTP_OK:
            raise TransportError(f"Failed to connect to memory server: {response.text[:500]}", response.status_code)

        try:
            openapi = response.json()
        except ValueError as e:
            raise TransportError(f"Memory server returned an invalid OpenAPI document: {e}") from e

        parts = urlsplit(api_url)
        self.base_url = f"{parts.scheme}://{parts.netloc}"
        self.endpoints = self.parse_endpoints(openapi)
        self._connected = True

        info = openapi.get("info") or {}
        logger.info(
            "← GRAPH: connected to %s %s, %d endpoints",
            info.get("title", "memory server"),
            info.get("version", ""),
            len(self.endpoints),
        )

    @staticmethod
    def parse_endpoints(openapi: dict[str, Any]) -> list[APIEndpoint]:
        """Every path operation that carries an operationId."""
        endpoints: list[APIEndpoint] = []
        for path, path_item in (openapi.get("paths") or {}).items():
            if not isinstance(path_item, dict):
                continue
            for method, operation in path_item.items():
                if isinstance(operation, dict) and "operationId" in operation:
                    endpoints.append(
                        APIEndpoint(
                            path=path,
                            method=method.upper(),
                            summary=operation.get("summary") or "",
                            description=operation.get("description") or "",
                            tags=operation.get("tags") or [],
                        )
                    )
        return endpoints

    async def disconnect(self) -> None:
        logger.info("Disconnecting from memory server")
        self._connected = False
        self.base_url = ""
        self.endpoints = []
        self._api_key = ""

    def is_connected(self) -> bool:
        return self._connected and bool(self.base_url)

    async def request(
        self,
        path: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send one request; statuses of 400 and above raise TransportError."""
        if not self.is_connected():
            raise TransportError("Memory server client is not connected")

        url = f"{self.base_url}{path}"
        logger.debug("→ GRAPH: %s %s", method, url)

        try:
            response = await self.client.request(
                method,
                url,
                headers=self._headers(),
                params=params,
                json=body,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}") from e

        if response.status_code >= HTTP_BAD_REQUEST:
            logger.error("← GRAPH: %s %s failed (%d): %s", method, path, response.status_code, response.text[:500])
            raise TransportError(response.text[:1000], response.status_code)

        if not response.content:
            return None
        return response.json()

    async def health_check(self) -> Any:
        return await self.request("/health")

    async def get_status(self) -> Any:
        return await self.request("/status")

    # ---- create -----------------------------------------------------------

    async def create_entities(self, entities: list[dict[str, Any]]) -> Any:
        return await self.request("/tools/entities/create", "POST", {"entities": entities})

    async def add_observations(self, observations: list[dict[str, Any]]) -> Any:
        return await self.request("/tools/entities/add_observations", "POST", {"observations": observations})

    async def create_relations(self, relations: list[dict[str, Any]], auto_create_entities: bool = False) -> Any:
        return await self.request(
            "/tools/relations/create",
            "POST",
            {"relations": relations},
            params={"auto_create_entities": str(auto_create_entities).lower()},
        )

    async def generate_embeddings(self, entity_names: list[str] | None = None, limit: int = 20) -> Any:
        """Generate embeddings for the named entities, or up to limit pending ones."""
        return await self.request(
            "/tools/search/embeddings",
            "POST",
            {"entity_names": entity_names},
            params={"limit": limit},
        )

    # ---- search -----------------------------------------------------------

    async def search_nodes(self, query: str) -> Any:
        return await self.request("/tools/search/nodes", params={"query": query})

    async def semantic_search(self, query: str, limit: int = 10) -> Any:
        return await self.request("/tools/search/semantic", params={"query": query, "limit": limit})

    async def read_graph(self, limit: int | None = None, offset: int = 0) -> Any:
        params: dict[str, Any] = {"offset": offset}
        if limit:
            params["limit"] = limit
        return await self.request("/tools/search/read_graph", params=params)

    async def open_nodes(self, names: list[str]) -> Any:
        return await self.request("/tools/search/open", "POST", {"names": names})

    # ---- delete -----------------------------------------------------------

    async def delete_entities(self, entity_names: list[str]) -> Any:
        return await self.request("/tools/entities/delete", "POST", {"entity_names": entity_names})

    async def delete_observations(self, deletions: list[dict[str, Any]]) -> Any:
        return await self.request("/tools/entities/delete_observations", "POST", {"deletions": deletions})

    async def delete_relations(self, relations: list[dict[str, Any]]) -> Any:
        return await self.request("/tools/relations/delete", "POST", {"relations": relations})

    async def view_trash(self, limit: int = 20, offset: int = 0) -> Any:
        return await self.request("/tools/trash/view", params={"limit": limit, "offset": offset})

    async def restore_deleted(
        self,
        entity_names: list[str] | None = None,
        observations: list[dict[str, Any]] | None = None,
    ) -> Any:
        body: dict[str, Any] = {}
        if entity_names:
            body["entity_names"] = entity_names
        if observations:
            body["observations"] = observations
        return await self.request("/tools/trash/restore", "POST", body)

    async def close(self) -> None:
        await self.disconnect()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
