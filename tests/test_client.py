"""Tests for tsconsole.client and tsconsole.executor.

Uses httpx MockTransport so no real Typesense or network is required.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable

import httpx
import pytest
from conftest import Recorder

from tsconsole.client import AsyncTypesenseClient, TypesenseClient, parse_import_response
from tsconsole.config import ClientConfig, Node
from tsconsole.executor import build_url, normalize_path
from tsconsole.models import (
    CollectionSchema,
    SearchParameters,
    SearchResponse,
    TypesenseConnectionError,
    TypesenseHTTPError,
    TypesenseResponseError,
)

MakeConfig = Callable[..., ClientConfig]


def _client(config: ClientConfig, recorder: Recorder) -> TypesenseClient:
    return TypesenseClient(config, _transport=httpx.MockTransport(recorder))


class TestUrlBuilding:
    @pytest.mark.parametrize("path", ["health", "/health", "//health"])
    def test_exactly_one_leading_slash(self, path: str) -> None:
        assert normalize_path(path) == "/health"

    def test_build_url(self) -> None:
        node = Node("ts.local", 443, "https")
        assert build_url(node, "collections") == "https://ts.local:443/collections"


class TestRequestExecutor:
    def test_headers_on_get(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, json={"ok": True}))
        with _client(make_config(), rec) as client:
            assert client.health() is True

        request = rec.requests[0]
        assert request.headers["X-TYPESENSE-API-KEY"] == "secret"
        assert "content-type" not in request.headers
        assert str(request.url) == "http://ts-a:8108/health"

    def test_json_body_on_post(self, make_config: MakeConfig, books_schema: dict) -> None:
        rec = Recorder(httpx.Response(201, json=books_schema))
        with _client(make_config(), rec) as client:
            client.create_collection({"name": "books", "fields": []})

        request = rec.requests[0]
        assert request.headers["Content-Type"] == "application/json"
        assert json.loads(request.content) == {"name": "books", "fields": []}

    def test_every_failure_exhausts_retry_budget(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(503, json={"message": "Not Ready or Lagging"}))
        with _client(make_config(num_retries=3), rec) as client:
            with pytest.raises(TypesenseHTTPError, match=r"Typesense Error \(503\): Not Ready"):
                client.health()
        assert len(rec.requests) == 4

    def test_failover_rotates_nodes(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.ConnectError("refused"))
        with _client(make_config(num_retries=3), rec) as client:
            with pytest.raises(TypesenseConnectionError, match="Cannot connect"):
                client.health()
            # retry count is per attempt, not per node
            assert rec.hosts == ["ts-a", "ts-b", "ts-a", "ts-b"]
            assert client.pool.index == 1

    def test_recovers_on_next_node(self, make_config: MakeConfig) -> None:
        rec = Recorder(
            httpx.ConnectError("refused"),
            httpx.Response(200, json={"ok": True}),
        )
        with _client(make_config(), rec) as client:
            assert client.health() is True
            assert rec.hosts == ["ts-a", "ts-b"]
            # the next request starts on the node that answered
            client.health()
            assert rec.hosts[-1] == "ts-b"

    def test_zero_retries_single_attempt(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(500, text="boom"))
        with _client(make_config(num_retries=0), rec) as client:
            with pytest.raises(TypesenseHTTPError):
                client.health()
            assert client.pool.index == 0
        assert len(rec.requests) == 1

    def test_unstructured_error_uses_status_line(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(502, text="<html>bad gateway</html>"))
        with _client(make_config(num_retries=0), rec) as client:
            with pytest.raises(TypesenseHTTPError, match="HTTP 502: Bad Gateway") as exc_info:
                client.health()
        assert exc_info.value.status_code == 502

    def test_structured_error_prefers_http_code(self, make_config: MakeConfig) -> None:
        rec = Recorder(
            httpx.Response(404, json={"message": "Not Found", "http_code": 404})
        )
        with _client(make_config(num_retries=0), rec) as client:
            with pytest.raises(TypesenseHTTPError, match=r"Typesense Error \(404\): Not Found"):
                client.get_collection("missing")

    def test_timeout_is_retried(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.ReadTimeout("timed out"), httpx.Response(200, json={"ok": True}))
        with _client(make_config(), rec) as client:
            assert client.health() is True
        assert len(rec.requests) == 2

    def test_timeout_message(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.ConnectTimeout("timed out"))
        with _client(make_config(num_retries=0), rec) as client:
            with pytest.raises(TypesenseConnectionError, match="Timeout") as exc_info:
                client.health()
        assert exc_info.value.base_url == "http://ts-a:8108"

    def test_bad_json_on_success_not_retried(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, text="not json"))
        with _client(make_config(), rec) as client:
            with pytest.raises(TypesenseResponseError, match="decode"):
                client.stats()
            assert client.pool.index == 0
        assert len(rec.requests) == 1

    def test_waits_retry_interval(
        self, make_config: MakeConfig, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        delays: list[float] = []
        monkeypatch.setattr(time, "sleep", delays.append)
        rec = Recorder(httpx.Response(503, text=""))
        with _client(make_config(num_retries=2, retry_interval_seconds=1.5), rec) as client:
            with pytest.raises(TypesenseHTTPError):
                client.health()
        assert delays == [1.5, 1.5]

    def test_closed_client_raises(self, make_config: MakeConfig) -> None:
        client = _client(make_config(), Recorder(httpx.Response(200, json={"ok": True})))
        client.close()
        with pytest.raises(RuntimeError, match="closed"):
            client.health()


class TestCollectionOperations:
    def test_create_collection_from_schema(
        self, make_config: MakeConfig, books_schema: dict
    ) -> None:
        rec = Recorder(httpx.Response(201, json=books_schema))
        schema = CollectionSchema.from_dict(books_schema)
        with _client(make_config(), rec) as client:
            created = client.create_collection(schema)

        sent = json.loads(rec.requests[0].content)
        assert sent["name"] == "books"
        assert "num_documents" not in sent
        assert created.num_documents == 3

    def test_get_collection(self, make_config: MakeConfig, books_schema: dict) -> None:
        rec = Recorder(httpx.Response(200, json=books_schema))
        with _client(make_config(), rec) as client:
            schema = client.get_collection("books")
        assert schema.field_names == ["title", "genre", "year"]
        assert rec.requests[0].url.path == "/collections/books"

    def test_list_collections(self, make_config: MakeConfig, books_schema: dict) -> None:
        rec = Recorder(httpx.Response(200, json=[books_schema, {"name": "authors", "fields": []}]))
        with _client(make_config(), rec) as client:
            names = [c.name for c in client.list_collections()]
        assert names == ["books", "authors"]

    def test_list_collections_wrong_shape(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, json={"collections": []}))
        with _client(make_config(), rec) as client:
            with pytest.raises(TypesenseResponseError, match="list of collections"):
                client.list_collections()

    def test_delete_collection_quotes_name(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, json={"name": "my books", "fields": []}))
        with _client(make_config(), rec) as client:
            deleted = client.delete_collection("my books")
        assert deleted.name == "my books"
        assert rec.requests[0].method == "DELETE"
        assert rec.requests[0].url.raw_path == b"/collections/my%20books"


class TestDocumentOperations:
    def test_index_document(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(201, json={"id": "1", "title": "Dune"}))
        with _client(make_config(), rec) as client:
            doc = client.index_document("books", {"id": "1", "title": "Dune"})
        assert doc["title"] == "Dune"
        assert rec.requests[0].url.path == "/collections/books/documents"
        assert "action" not in rec.requests[0].url.params

    def test_index_document_with_action(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(201, json={"id": "1"}))
        with _client(make_config(), rec) as client:
            client.index_document("books", {"id": "1"}, action="upsert")
        assert rec.requests[0].url.params["action"] == "upsert"

    def test_get_update_delete(self, make_config: MakeConfig) -> None:
        rec = Recorder(
            httpx.Response(200, json={"id": "1", "year": 1965}),
            httpx.Response(200, json={"id": "1", "year": 1966}),
            httpx.Response(200, json={"id": "1"}),
        )
        with _client(make_config(), rec) as client:
            assert client.get_document("books", "1")["year"] == 1965
            assert client.update_document("books", "1", {"year": 1966})["year"] == 1966
            assert client.delete_document("books", "1") == {"id": "1"}

        methods = [(r.method, r.url.path) for r in rec.requests]
        assert methods == [
            ("GET", "/collections/books/documents/1"),
            ("PATCH", "/collections/books/documents/1"),
            ("DELETE", "/collections/books/documents/1"),
        ]
        assert json.loads(rec.requests[1].content) == {"year": 1966}


class TestBulkImport:
    def test_posts_ndjson_and_parses_each_line(self, make_config: MakeConfig) -> None:
        body = (
            '{"success": true}\n'
            '{"success": false, "error": "Document already exists.", "code": 409}\n'
        )
        rec = Recorder(httpx.Response(200, text=body))
        with _client(make_config(), rec) as client:
            results = client.import_documents("books", [{"id": "1"}, {"id": "2"}])

        request = rec.requests[0]
        assert request.content == b'{"id": "1"}\n{"id": "2"}'
        assert request.headers["Content-Type"] == "text/plain"
        assert request.headers["X-TYPESENSE-API-KEY"] == "secret"
        assert request.url.path == "/collections/books/documents/import"
        assert request.url.params["action"] == "upsert"

        assert len(results) == 2
        assert results[0].success is True
        assert results[1].success is False
        assert results[1].code == 409

    def test_action_passed_through(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, text='{"success": true}'))
        with _client(make_config(), rec) as client:
            client.import_documents("books", [{"id": "1"}], action="create")
        assert rec.requests[0].url.params["action"] == "create"

    def test_invalid_action(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, text=""))
        with _client(make_config(), rec) as client:
            with pytest.raises(ValueError, match="action"):
                client.import_documents("books", [{"id": "1"}], action="replace")
        assert rec.requests == []

    def test_no_retry_or_failover(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(503, text="unavailable"))
        with _client(make_config(num_retries=3), rec) as client:
            with pytest.raises(TypesenseHTTPError, match="503"):
                client.import_documents("books", [{"id": "1"}])
            assert client.pool.index == 0
        assert len(rec.requests) == 1

    def test_transport_failure_surfaces_immediately(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.ConnectError("refused"))
        with _client(make_config(num_retries=3), rec) as client:
            with pytest.raises(TypesenseConnectionError):
                client.import_documents("books", [{"id": "1"}])
        assert len(rec.requests) == 1

    def test_parse_skips_blank_lines(self) -> None:
        results = parse_import_response('{"success": true}\n\n  \n{"success": true}\n')
        assert len(results) == 2

    def test_parse_bad_line(self) -> None:
        with pytest.raises(TypesenseResponseError, match="line 2"):
            parse_import_response('{"success": true}\n{oops')


class TestSearchOperations:
    def test_search_query_string(self, make_config: MakeConfig, search_payload: dict) -> None:
        rec = Recorder(httpx.Response(200, json=search_payload))
        params = SearchParameters(
            q="dune", query_by="title", page=2, per_page=10, prefix=False
        )
        with _client(make_config(), rec) as client:
            response = client.search("books", params)

        assert isinstance(response, SearchResponse)
        assert response.found == 25
        request = rec.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/collections/books/documents/search"
        assert dict(request.url.params) == {
            "q": "dune",
            "query_by": "title",
            "page": "2",
            "per_page": "10",
            "prefix": "false",
        }

    def test_search_rejects_unknown_shape(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, json={"results": []}))
        with _client(make_config(), rec) as client:
            with pytest.raises(TypesenseResponseError):
                client.search("books", SearchParameters(q="x", query_by="title"))

    def test_multi_search(self, make_config: MakeConfig, search_payload: dict) -> None:
        rec = Recorder(httpx.Response(200, json={"results": [search_payload, search_payload]}))
        with _client(make_config(), rec) as client:
            results = client.multi_search(
                [
                    ("books", SearchParameters(q="dune", query_by="title")),
                    ("authors", SearchParameters(q="herbert", query_by="name", per_page=5)),
                ]
            )

        assert len(results) == 2
        assert rec.requests[0].url.path == "/multi_search"
        assert json.loads(rec.requests[0].content) == {
            "searches": [
                {"collection": "books", "q": "dune", "query_by": "title"},
                {"collection": "authors", "q": "herbert", "query_by": "name", "per_page": 5},
            ]
        }


class TestOperationalEndpoints:
    def test_health_wrong_shape(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, json={"status": "ok"}))
        with _client(make_config(), rec) as client:
            with pytest.raises(TypesenseResponseError, match="ok"):
                client.health()

    def test_stats(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, json={"search_requests_per_second": 1.5}))
        with _client(make_config(), rec) as client:
            assert client.stats() == {"search_requests_per_second": 1.5}
        assert rec.requests[0].url.path == "/stats.json"

    def test_metrics_raw_text(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, text='{"system_cpu_active_percentage": "3.2"}'))
        with _client(make_config(), rec) as client:
            assert client.metrics() == '{"system_cpu_active_percentage": "3.2"}'
        assert rec.requests[0].url.path == "/metrics.json"


class TestAsyncClient:
    def _client(self, config: ClientConfig, recorder: Recorder) -> AsyncTypesenseClient:
        return AsyncTypesenseClient(config, _transport=httpx.MockTransport(recorder))

    async def test_search(self, make_config: MakeConfig, search_payload: dict[str, Any]) -> None:
        rec = Recorder(httpx.Response(200, json=search_payload))
        async with self._client(make_config(), rec) as client:
            response = await client.search("books", SearchParameters(q="dune", query_by="title"))
        assert response.hits[0].document["id"] == "1"

    async def test_retry_bound(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.ConnectError("refused"))
        async with self._client(make_config(num_retries=3), rec) as client:
            with pytest.raises(TypesenseConnectionError):
                await client.health()
        assert rec.hosts == ["ts-a", "ts-b", "ts-a", "ts-b"]

    async def test_bulk_import_single_call(self, make_config: MakeConfig) -> None:
        rec = Recorder(httpx.Response(200, text='{"success": true}\n{"success": true}'))
        async with self._client(make_config(), rec) as client:
            results = await client.import_documents("books", [{"id": "1"}, {"id": "2"}])
        assert [r.success for r in results] == [True, True]
        assert len(rec.requests) == 1

    async def test_collections_and_documents(
        self, make_config: MakeConfig, books_schema: dict[str, Any]
    ) -> None:
        rec = Recorder(
            httpx.Response(200, json=[books_schema]),
            httpx.Response(201, json={"id": "9"}),
            httpx.Response(200, json={"id": "9"}),
        )
        async with self._client(make_config(), rec) as client:
            collections = await client.list_collections()
            await client.index_document("books", {"id": "9"})
            await client.delete_document("books", "9")
        assert collections[0].name == "books"
        assert [r.method for r in rec.requests] == ["GET", "POST", "DELETE"]

    async def test_closed_client_raises(self, make_config: MakeConfig) -> None:
        client = self._client(make_config(), Recorder(httpx.Response(200, json={"ok": True})))
        await client.aclose()
        with pytest.raises(RuntimeError, match="closed"):
            await client.health()

    async def test_search_and_import_are_logged(
        self,
        make_config: MakeConfig,
        search_payload: dict[str, Any],
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO, logger="tsconsole")
        rec = Recorder(
            httpx.Response(200, json=search_payload),
            httpx.Response(200, text='{"success": true}\n{"success": false, "error": "x"}'),
        )
        async with self._client(make_config(), rec) as client:
            await client.search("books", SearchParameters(q="dune", query_by="title"))
            await client.import_documents("books", [{"id": "1"}, {"id": "2"}])

        messages = [r.getMessage() for r in caplog.records if r.name == "tsconsole.client"]
        assert "Search collection=books q='dune' found=25 page=2 search_time_ms=3" in messages
        assert "Imported into books: 1 ok, 1 failed" in messages

    async def test_overlapping_failures_rotate_pool_once(self, make_config: MakeConfig) -> None:
        both_arrived = asyncio.Event()
        hosts: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            hosts.append(request.url.host)
            if request.url.host == "ts-a":
                if hosts.count("ts-a") == 2:
                    both_arrived.set()
                await both_arrived.wait()
                raise httpx.ConnectError("refused")
            return httpx.Response(200, json={"ok": True})

        config = make_config(
            nodes=[Node("ts-a", 8108), Node("ts-b", 8108), Node("ts-c", 8108)], num_retries=1
        )
        async with AsyncTypesenseClient(config, _transport=httpx.MockTransport(handler)) as client:
            results = await asyncio.gather(client.health(), client.health())
            # both requests failed on ts-a, but the pool moved past it only once
            assert client.pool.index == 1

        assert results == [True, True]
        assert sorted(hosts) == ["ts-a", "ts-a", "ts-b", "ts-b"]
