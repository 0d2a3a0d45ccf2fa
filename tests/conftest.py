"""
Pytest configuration and shared fixtures.

All HTTP traffic goes through ``httpx.MockTransport``; ``Recorder`` keeps the
requests it saw and replays a scripted list of responses (or exceptions).
"""

from __future__ import annotations

import copy
from typing import Any, Callable

import httpx
import pytest

from tsconsole.config import ClientConfig, Node

SEARCH_PAYLOAD: dict[str, Any] = {
    "found": 25,
    "out_of": 100,
    "page": 2,
    "search_time_ms": 3,
    "hits": [
        {
            "document": {"id": "1", "title": "Dune", "genre": "scifi"},
            "text_match": 578730123365187705,
            "highlights": [{"field": "title", "snippet": "<mark>Dune</mark>"}],
        }
    ],
    "facet_counts": [
        {
            "field_name": "genre",
            "counts": [
                {"value": "scifi", "count": 20, "highlighted": "scifi"},
                {"value": "fantasy", "count": 5, "highlighted": "fantasy"},
            ],
            "stats": {"total_values": 2},
        }
    ],
    "request_params": {"collection_name": "books", "per_page": 10, "q": "dune"},
}

BOOKS_SCHEMA: dict[str, Any] = {
    "name": "books",
    "fields": [
        {"name": "title", "type": "string"},
        {"name": "genre", "type": "string", "facet": True},
        {"name": "year", "type": "int32", "optional": True},
    ],
    "default_sorting_field": "",
    "num_documents": 3,
    "created_at": 1700000000,
}


class Recorder:
    """Mock-transport handler that records requests and replays responses.

    The last scripted item is repeated once the script runs out.
    """

    def __init__(self, *script: httpx.Response | Exception) -> None:
        self.requests: list[httpx.Request] = []
        self._script = list(script)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        item = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def hosts(self) -> list[str]:
        return [r.url.host for r in self.requests]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in (
        "TYPESENSE_NODES",
        "TYPESENSE_HOST",
        "TYPESENSE_PORT",
        "TYPESENSE_PROTOCOL",
        "TYPESENSE_API_KEY",
        "TYPESENSE_CONNECTION_TIMEOUT",
        "TYPESENSE_HEALTHCHECK_INTERVAL",
        "TYPESENSE_NUM_RETRIES",
        "TYPESENSE_RETRY_INTERVAL",
        "TYPESENSE_VERIFY_SSL",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def make_config() -> Callable[..., ClientConfig]:
    def _make(**overrides: Any) -> ClientConfig:
        kwargs: dict[str, Any] = {
            "nodes": [Node("ts-a", 8108), Node("ts-b", 8108)],
            "api_key": "secret",
            "retry_interval_seconds": 0.0,
        }
        kwargs.update(overrides)
        return ClientConfig(**kwargs)

    return _make


@pytest.fixture
def search_payload() -> dict[str, Any]:
    return copy.deepcopy(SEARCH_PAYLOAD)


@pytest.fixture
def books_schema() -> dict[str, Any]:
    return copy.deepcopy(BOOKS_SCHEMA)
