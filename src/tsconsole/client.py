"""
Typesense client with node failover and typed resource operations.

Provides ``TypesenseClient`` for scripts and the CLI and
``AsyncTypesenseClient`` for the event-loop driven search session. Both hold
one persistent httpx client, one :class:`~tsconsole.nodes.NodePool` and one
request executor; every resource method is a thin typed wrapper over the
executor.

Usage:
    from tsconsole import ClientConfig, Node, TypesenseClient

    config = ClientConfig(nodes=[Node("localhost", 8108)], api_key="xyz")
    with TypesenseClient(config) as client:
        client.health()
        page = client.search("books", SearchParameters(q="dune", query_by="title"))

Bulk import is the one operation that does not fail over: it issues exactly
one request against the current node, because replaying a partially applied
import is not safe.
"""

from __future__ import annotations

import importlib.metadata
import json
import logging
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import quote

import httpx

from tsconsole.config import ClientConfig
from tsconsole.executor import AsyncRequestExecutor, RequestExecutor
from tsconsole.models import (
    CollectionSchema,
    ImportResult,
    SearchParameters,
    SearchResponse,
    TypesenseResponseError,
)
from tsconsole.nodes import NodePool

logger = logging.getLogger(__name__)

try:
    _PKG_VERSION = importlib.metadata.version("tsconsole")
except importlib.metadata.PackageNotFoundError:
    _PKG_VERSION = "dev"

_USER_AGENT = f"tsconsole/{_PKG_VERSION}"

IMPORT_ACTIONS = ("create", "update", "upsert")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _segment(value: str) -> str:
    """Quote one path segment (collection name or document id)."""
    return quote(str(value), safe="")


def _collection_path(name: str) -> str:
    return f"/collections/{_segment(name)}"


def _documents_path(collection: str, doc_id: str | None = None) -> str:
    path = f"{_collection_path(collection)}/documents"
    return f"{path}/{_segment(doc_id)}" if doc_id is not None else path


def _schema_body(schema: CollectionSchema | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(schema, CollectionSchema):
        return schema.to_dict()
    return dict(schema)


def _expect_document(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise TypesenseResponseError(
            f"Expected document object, got {type(data).__name__}", raw_body=str(data)
        )
    return data


def _parse_collections(data: Any) -> list[CollectionSchema]:
    if not isinstance(data, list):
        raise TypesenseResponseError(
            f"Expected list of collections, got {type(data).__name__}", raw_body=str(data)
        )
    return [CollectionSchema.from_dict(c) for c in data]


def _parse_health(data: Any) -> bool:
    if not isinstance(data, dict) or not isinstance(data.get("ok"), bool):
        raise TypesenseResponseError("Health response is missing 'ok'", raw_body=str(data))
    return data["ok"]


def _parse_multi_search(data: Any) -> list[SearchResponse]:
    results = data.get("results") if isinstance(data, dict) else None
    if not isinstance(results, list):
        raise TypesenseResponseError(
            "Multi-search response is missing 'results'", raw_body=str(data)
        )
    return [SearchResponse.from_dict(r) for r in results]


def _import_request(
    documents: Iterable[Mapping[str, Any]], action: str
) -> tuple[bytes, dict[str, str]]:
    if action not in IMPORT_ACTIONS:
        raise ValueError(f"action must be one of {IMPORT_ACTIONS}, got {action!r}")
    body = "\n".join(json.dumps(doc) for doc in documents)
    return body.encode("utf-8"), {"action": action}


def parse_import_response(text: str) -> list[ImportResult]:
    """Decode a newline-delimited import response, one result per non-blank line.

    A line reporting ``success: false`` is a normal result, not an error.
    """
    results: list[ImportResult] = []
    for lineno, line in enumerate(text.split("\n"), 1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
        except ValueError as exc:
            raise TypesenseResponseError(
                f"Import response line {lineno} is not valid JSON: {exc}", raw_body=text
            ) from exc
        results.append(ImportResult.from_dict(data))
    return results


def _multi_search_body(searches: Sequence[tuple[str, SearchParameters]]) -> dict[str, Any]:
    return {
        "searches": [
            {"collection": collection, **params.to_dict()} for collection, params in searches
        ]
    }


def _log_import(collection: str, results: list[ImportResult]) -> None:
    logger.info(
        "Imported into %s: %d ok, %d failed",
        collection,
        sum(r.success for r in results),
        sum(not r.success for r in results),
    )


def _log_search(collection: str, params: SearchParameters, response: SearchResponse) -> None:
    logger.info(
        "Search collection=%s q=%r found=%d page=%d search_time_ms=%d",
        collection,
        params.q,
        response.found,
        response.page,
        response.search_time_ms,
    )


def _http_settings(config: ClientConfig) -> dict[str, Any]:
    return {
        "timeout": httpx.Timeout(config.connection_timeout_seconds),
        "headers": {"Accept": "application/json", "User-Agent": _USER_AGENT},
    }


# ---------------------------------------------------------------------------
# TypesenseClient
# ---------------------------------------------------------------------------


class TypesenseClient:
    """Synchronous Typesense client with connection pooling and context manager support."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        _transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config or ClientConfig.from_env()
        self._pool = NodePool(self._config.nodes)
        transport = _transport or httpx.HTTPTransport(
            verify=self._config.verify_ssl,  # type: ignore[arg-type]
        )
        self._http = httpx.Client(transport=transport, **_http_settings(self._config))
        self._executor = RequestExecutor(self._config, self._pool, self._http)
        self._closed = False

        logger.debug(
            "TypesenseClient created nodes=%d timeout=%.1f retries=%d",
            len(self._pool),
            self._config.connection_timeout_seconds,
            self._config.num_retries,
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def pool(self) -> NodePool:
        return self._pool

    def _executor_or_raise(self) -> RequestExecutor:
        if self._closed:
            raise RuntimeError("TypesenseClient is closed")
        return self._executor

    # Collections

    def create_collection(self, schema: CollectionSchema | Mapping[str, Any]) -> CollectionSchema:
        data = self._executor_or_raise().execute(
            "POST", "/collections", body=_schema_body(schema)
        )
        return CollectionSchema.from_dict(data)

    def get_collection(self, name: str) -> CollectionSchema:
        return CollectionSchema.from_dict(
            self._executor_or_raise().execute("GET", _collection_path(name))
        )

    def list_collections(self) -> list[CollectionSchema]:
        return _parse_collections(self._executor_or_raise().execute("GET", "/collections"))

    def delete_collection(self, name: str) -> CollectionSchema:
        return CollectionSchema.from_dict(
            self._executor_or_raise().execute("DELETE", _collection_path(name))
        )

    # Documents

    def index_document(
        self,
        collection: str,
        document: Mapping[str, Any],
        *,
        action: str | None = None,
    ) -> dict[str, Any]:
        """Create (or, with *action*, upsert/update) one document.

        A retried create is not idempotent: if the first attempt reached the
        service but its response was lost, the retry may create a duplicate
        or fail with a conflict. Dedupe on document id upstream.
        """
        data = self._executor_or_raise().execute(
            "POST",
            _documents_path(collection),
            body=dict(document),
            params={"action": action} if action else None,
        )
        return _expect_document(data)

    def import_documents(
        self,
        collection: str,
        documents: Iterable[Mapping[str, Any]],
        *,
        action: str = "upsert",
    ) -> list[ImportResult]:
        """Bulk import as newline-delimited JSON in a single request (no failover)."""
        content, params = _import_request(documents, action)
        response = self._executor_or_raise().send_once(
            "POST",
            f"{_documents_path(collection)}/import",
            content=content,
            content_type="text/plain",
            params=params,
        )
        results = parse_import_response(response.text)
        _log_import(collection, results)
        return results

    def get_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        return _expect_document(
            self._executor_or_raise().execute("GET", _documents_path(collection, doc_id))
        )

    def update_document(
        self, collection: str, doc_id: str, partial: Mapping[str, Any]
    ) -> dict[str, Any]:
        return _expect_document(
            self._executor_or_raise().execute(
                "PATCH", _documents_path(collection, doc_id), body=dict(partial)
            )
        )

    def delete_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        return _expect_document(
            self._executor_or_raise().execute("DELETE", _documents_path(collection, doc_id))
        )

    # Search

    def search(self, collection: str, params: SearchParameters) -> SearchResponse:
        data = self._executor_or_raise().execute(
            "GET",
            f"{_documents_path(collection)}/search",
            params=params.to_query_params(),
        )
        response = SearchResponse.from_dict(data)
        _log_search(collection, params, response)
        return response

    def multi_search(
        self, searches: Sequence[tuple[str, SearchParameters]]
    ) -> list[SearchResponse]:
        data = self._executor_or_raise().execute(
            "POST", "/multi_search", body=_multi_search_body(searches)
        )
        return _parse_multi_search(data)

    # Operations

    def health(self) -> bool:
        return _parse_health(self._executor_or_raise().execute("GET", "/health"))

    def stats(self) -> dict[str, Any]:
        return _expect_document(self._executor_or_raise().execute("GET", "/stats.json"))

    def metrics(self) -> str:
        """Raw ``/metrics.json`` body, passed through undecoded."""
        return self._executor_or_raise().execute_text("GET", "/metrics.json")

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if not self._closed:
            self._http.close()
            self._closed = True
            logger.debug("TypesenseClient closed")

    def __enter__(self) -> TypesenseClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# AsyncTypesenseClient
# ---------------------------------------------------------------------------


class AsyncTypesenseClient:
    """Async variant of :class:`TypesenseClient` for use on an event loop."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ClientConfig.from_env()
        self._pool = NodePool(self._config.nodes)
        transport = _transport or httpx.AsyncHTTPTransport(
            verify=self._config.verify_ssl,  # type: ignore[arg-type]
        )
        self._http = httpx.AsyncClient(transport=transport, **_http_settings(self._config))
        self._executor = AsyncRequestExecutor(self._config, self._pool, self._http)
        self._closed = False

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def pool(self) -> NodePool:
        return self._pool

    def _executor_or_raise(self) -> AsyncRequestExecutor:
        if self._closed:
            raise RuntimeError("AsyncTypesenseClient is closed")
        return self._executor

    async def create_collection(
        self, schema: CollectionSchema | Mapping[str, Any]
    ) -> CollectionSchema:
        data = await self._executor_or_raise().execute(
            "POST", "/collections", body=_schema_body(schema)
        )
        return CollectionSchema.from_dict(data)

    async def get_collection(self, name: str) -> CollectionSchema:
        return CollectionSchema.from_dict(
            await self._executor_or_raise().execute("GET", _collection_path(name))
        )

    async def list_collections(self) -> list[CollectionSchema]:
        return _parse_collections(await self._executor_or_raise().execute("GET", "/collections"))

    async def delete_collection(self, name: str) -> CollectionSchema:
        return CollectionSchema.from_dict(
            await self._executor_or_raise().execute("DELETE", _collection_path(name))
        )

    async def index_document(
        self,
        collection: str,
        document: Mapping[str, Any],
        *,
        action: str | None = None,
    ) -> dict[str, Any]:
        data = await self._executor_or_raise().execute(
            "POST",
            _documents_path(collection),
            body=dict(document),
            params={"action": action} if action else None,
        )
        return _expect_document(data)

    async def import_documents(
        self,
        collection: str,
        documents: Iterable[Mapping[str, Any]],
        *,
        action: str = "upsert",
    ) -> list[ImportResult]:
        content, params = _import_request(documents, action)
        response = await self._executor_or_raise().send_once(
            "POST",
            f"{_documents_path(collection)}/import",
            content=content,
            content_type="text/plain",
            params=params,
        )
        results = parse_import_response(response.text)
        _log_import(collection, results)
        return results

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        return _expect_document(
            await self._executor_or_raise().execute("GET", _documents_path(collection, doc_id))
        )

    async def update_document(
        self, collection: str, doc_id: str, partial: Mapping[str, Any]
    ) -> dict[str, Any]:
        return _expect_document(
            await self._executor_or_raise().execute(
                "PATCH", _documents_path(collection, doc_id), body=dict(partial)
            )
        )

    async def delete_document(self, collection: str, doc_id: str) -> dict[str, Any]:
        return _expect_document(
            await self._executor_or_raise().execute("DELETE", _documents_path(collection, doc_id))
        )

    async def search(self, collection: str, params: SearchParameters) -> SearchResponse:
        data = await self._executor_or_raise().execute(
            "GET",
            f"{_documents_path(collection)}/search",
            params=params.to_query_params(),
        )
        response = SearchResponse.from_dict(data)
        _log_search(collection, params, response)
        return response

    async def multi_search(
        self, searches: Sequence[tuple[str, SearchParameters]]
    ) -> list[SearchResponse]:
        data = await self._executor_or_raise().execute(
            "POST", "/multi_search", body=_multi_search_body(searches)
        )
        return _parse_multi_search(data)

    async def health(self) -> bool:
        return _parse_health(await self._executor_or_raise().execute("GET", "/health"))

    async def stats(self) -> dict[str, Any]:
        return _expect_document(await self._executor_or_raise().execute("GET", "/stats.json"))

    async def metrics(self) -> str:
        return await self._executor_or_raise().execute_text("GET", "/metrics.json")

    async def aclose(self) -> None:
        """Close the underlying async HTTP client."""
        if not self._closed:
            await self._http.aclose()
            self._closed = True
            logger.debug("AsyncTypesenseClient closed")

    async def __aenter__(self) -> AsyncTypesenseClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()
