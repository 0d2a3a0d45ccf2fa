"""
Request execution with per-attempt timeout, node failover and retry.

``RequestExecutor`` (sync) and ``AsyncRequestExecutor`` share the URL,
header, error-mapping and decoding helpers in this module; only the I/O and
the sleep between attempts differ.

Retry policy: any transport failure or non-2xx status is a failed attempt.
While retries remain the executor advances the node pool, waits the fixed
retry interval and tries the next node. A 2xx response whose body is not
valid JSON is terminal: the service already processed the request, so it is
not replayed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Mapping

import httpx
from opentelemetry import trace

from tsconsole.config import ClientConfig, Node
from tsconsole.models import (
    TypesenseConnectionError,
    TypesenseError,
    TypesenseHTTPError,
    TypesenseResponseError,
)
from tsconsole.nodes import NodePool

logger = logging.getLogger(__name__)

_tracer = trace.get_tracer("tsconsole")

API_KEY_HEADER = "X-TYPESENSE-API-KEY"


def _elapsed_ms(t0: float) -> float:
    return (time.monotonic() - t0) * 1000


def normalize_path(path: str) -> str:
    """Return *path* with exactly one leading slash."""
    return "/" + path.lstrip("/")


def build_url(node: Node, path: str) -> str:
    return f"{node.base_url}{normalize_path(path)}"


def _request_headers(api_key: str, content_type: str | None) -> dict[str, str]:
    headers = {API_KEY_HEADER: api_key}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


def _encode_body(body: Any) -> bytes | None:
    if body is None:
        return None
    return json.dumps(body).encode("utf-8")


def _http_error(response: httpx.Response) -> TypesenseHTTPError:
    """Map a non-2xx response, preferring the service's ``{message}`` body."""
    message = f"HTTP {response.status_code}: {response.reason_phrase}"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        http_code = payload.get("http_code", response.status_code)
        message = f"Typesense Error ({http_code}): {payload['message']}"
    return TypesenseHTTPError(response.status_code, message)


def _transport_error(exc: httpx.RequestError, node: Node) -> TypesenseConnectionError:
    if isinstance(exc, httpx.TimeoutException):
        message = f"Timeout connecting to Typesense at {node.base_url}: {exc}"
    elif isinstance(exc, httpx.ConnectError):
        message = f"Cannot connect to Typesense at {node.base_url}: {exc}"
    else:
        message = f"Typesense request to {node.base_url} failed: {exc}"
    return TypesenseConnectionError(message, base_url=node.base_url)


def _decoding_error(exc: httpx.DecodingError) -> TypesenseResponseError:
    return TypesenseResponseError(f"Failed to decode Typesense response body: {exc}")


def decode_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TypesenseResponseError(
            f"Failed to decode Typesense response: {exc}", raw_body=response.text
        ) from exc


def _span(method: str, path: str) -> Any:
    return _tracer.start_as_current_span(
        "typesense.request",
        attributes={"http.method": method, "typesense.path": path},
    )


class _BaseExecutor:
    def __init__(self, config: ClientConfig, pool: NodePool) -> None:
        self._config = config
        self._pool = pool

    @property
    def pool(self) -> NodePool:
        return self._pool

    def _prepare(
        self,
        node: Node,
        method: str,
        path: str,
        body: Any,
        params: Mapping[str, str] | None,
    ) -> dict[str, Any]:
        return {
            "method": method,
            "url": build_url(node, path),
            "params": params,
            "content": _encode_body(body),
            "headers": _request_headers(
                self._config.api_key, "application/json" if body is not None else None
            ),
        }

    def _on_failure(
        self,
        exc: TypesenseError,
        method: str,
        path: str,
        index: int,
        attempt: int,
    ) -> int | None:
        """Record a failed attempt; return the next node index or ``None`` when exhausted."""
        node = self._pool.node_at(index)
        logger.warning(
            "Typesense %s %s failed on %s (attempt %d/%d): %s",
            method,
            path,
            node.base_url,
            attempt + 1,
            self._config.max_attempts,
            exc,
        )
        if attempt >= self._config.num_retries:
            return None
        self._pool.advance(expected=index)
        next_index = (index + 1) % len(self._pool)
        logger.info(
            "Typesense retry %d/%d on %s after %.1fs",
            attempt + 1,
            self._config.num_retries,
            self._pool.node_at(next_index).base_url,
            self._config.retry_interval_seconds,
        )
        return next_index


class RequestExecutor(_BaseExecutor):
    """Synchronous executor backed by a shared ``httpx.Client``."""

    def __init__(self, config: ClientConfig, pool: NodePool, http: httpx.Client) -> None:
        super().__init__(config, pool)
        self._http = http

    def send(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Issue the request with failover; return the first 2xx response."""
        path = normalize_path(path)
        index = self._pool.index
        t0 = time.monotonic()

        with _span(method, path):
            for attempt in range(self._config.max_attempts):
                node = self._pool.node_at(index)
                try:
                    response = self._http.request(**self._prepare(node, method, path, body, params))
                    if not response.is_success:
                        raise _http_error(response)
                except httpx.DecodingError as exc:
                    raise _decoding_error(exc) from exc
                except httpx.RequestError as exc:
                    error: TypesenseError = _transport_error(exc, node)
                    error.__cause__ = exc
                except TypesenseHTTPError as exc:
                    error = exc
                else:
                    logger.debug(
                        "Typesense %s %s -> %d via %s (%.1fms)",
                        method,
                        path,
                        response.status_code,
                        node.base_url,
                        _elapsed_ms(t0),
                    )
                    return response

                next_index = self._on_failure(error, method, path, index, attempt)
                if next_index is None:
                    raise error
                index = next_index
                time.sleep(self._config.retry_interval_seconds)

        raise AssertionError("unreachable")

    def execute(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        """Send with failover and decode the JSON body."""
        return decode_json(self.send(method, path, body=body, params=params))

    def execute_text(self, method: str, path: str) -> str:
        return self.send(method, path).text

    def send_once(
        self,
        method: str,
        path: str,
        *,
        content: bytes,
        content_type: str,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Issue exactly one request against the current node, without failover."""
        node = self._pool.current()
        path = normalize_path(path)
        try:
            response = self._http.request(
                method,
                build_url(node, path),
                params=params,
                content=content,
                headers=_request_headers(self._config.api_key, content_type),
            )
        except httpx.DecodingError as exc:
            raise _decoding_error(exc) from exc
        except httpx.RequestError as exc:
            raise _transport_error(exc, node) from exc
        if not response.is_success:
            raise _http_error(response)
        return response


class AsyncRequestExecutor(_BaseExecutor):
    """Asynchronous executor backed by a shared ``httpx.AsyncClient``."""

    def __init__(self, config: ClientConfig, pool: NodePool, http: httpx.AsyncClient) -> None:
        super().__init__(config, pool)
        self._http = http

    async def send(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        """Async variant of :meth:`RequestExecutor.send`."""
        path = normalize_path(path)
        index = self._pool.index
        t0 = time.monotonic()

        with _span(method, path):
            for attempt in range(self._config.max_attempts):
                node = self._pool.node_at(index)
                try:
                    response = await self._http.request(
                        **self._prepare(node, method, path, body, params)
                    )
                    if not response.is_success:
                        raise _http_error(response)
                except httpx.DecodingError as exc:
                    raise _decoding_error(exc) from exc
                except httpx.RequestError as exc:
                    error: TypesenseError = _transport_error(exc, node)
                    error.__cause__ = exc
                except TypesenseHTTPError as exc:
                    error = exc
                else:
                    logger.debug(
                        "Typesense %s %s -> %d via %s (%.1fms)",
                        method,
                        path,
                        response.status_code,
                        node.base_url,
                        _elapsed_ms(t0),
                    )
                    return response

                next_index = self._on_failure(error, method, path, index, attempt)
                if next_index is None:
                    raise error
                index = next_index
                await asyncio.sleep(self._config.retry_interval_seconds)

        raise AssertionError("unreachable")

    async def execute(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Mapping[str, str] | None = None,
    ) -> Any:
        return decode_json(await self.send(method, path, body=body, params=params))

    async def execute_text(self, method: str, path: str) -> str:
        return (await self.send(method, path)).text

    async def send_once(
        self,
        method: str,
        path: str,
        *,
        content: bytes,
        content_type: str,
        params: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        node = self._pool.current()
        path = normalize_path(path)
        try:
            response = await self._http.request(
                method,
                build_url(node, path),
                params=params,
                content=content,
                headers=_request_headers(self._config.api_key, content_type),
            )
        except httpx.DecodingError as exc:
            raise _decoding_error(exc) from exc
        except httpx.RequestError as exc:
            raise _transport_error(exc, node) from exc
        if not response.is_success:
            raise _http_error(response)
        return response
