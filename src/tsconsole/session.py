"""
Search session: the state behind the console's search screen.

A :class:`SearchSession` owns everything the screen renders (collections,
the selected collection and its fields, the current parameters, the
selected facets, the last page of results, the last error) and turns each
user gesture into one async operation:

    gesture -> build_search_parameters -> client.search -> SearchPage

Failures never clear state that was loaded earlier; they are logged and
exposed as :attr:`SearchSession.error`. Nothing here cancels an in-flight
request. Instead every search takes a generation number, and a response
whose generation is no longer the latest is dropped on arrival so a slow
stale search cannot overwrite a newer one. Switching collection also
starts a new generation, so a search still running against the previous
collection is dropped and never supplies the new collection's facets.

:meth:`SearchSession.connect` is the connect screen: it validates a saved
connection record, probes ``/health`` and loads the collection list.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from tsconsole.client import AsyncTypesenseClient
from tsconsole.config import ClientConfig
from tsconsole.logging import bind_context, bind_request_id
from tsconsole.models import (
    ConnectionConfig,
    PreconditionError,
    SearchParameters,
    SearchResponse,
    TypesenseConnectionError,
    TypesenseError,
)
from tsconsole.results import DEFAULT_PER_PAGE, SearchPage, with_page_size
from tsconsole.search import SelectedFacets, build_search_parameters

logger = logging.getLogger(__name__)


def default_parameters() -> SearchParameters:
    return SearchParameters(q="", query_by="", page=1, per_page=DEFAULT_PER_PAGE)


class SearchSession:
    """Search-screen state driven by an :class:`AsyncTypesenseClient`."""

    def __init__(self, client: AsyncTypesenseClient) -> None:
        self._client = client
        self.collections: list[str] = []
        self.collection: str | None = None
        self.fields: list[str] = []
        self.params: SearchParameters = default_parameters()
        self.selected_facets = SelectedFacets()
        self.response: SearchResponse | None = None
        self.page: SearchPage | None = None
        self.error: str | None = None
        self._generation = 0
        self._in_flight = 0

    @classmethod
    async def connect(
        cls,
        connection: ConnectionConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
        **overrides: Any,
    ) -> SearchSession:
        """Open a session against a saved connection.

        The record is validated first (:class:`ConfigurationError` with the
        same messages as the connect form), then the node must answer
        ``/health`` before the collection list is loaded.

        Raises:
            ConfigurationError: Missing host or API key, or a bad port.
            TypesenseConnectionError: The node is unreachable, rejected the
                request, or reported itself unhealthy. The message names the
                node's URL.
        """
        config = ClientConfig.from_connection(connection, **overrides)
        base_url = config.nodes[0].base_url
        client = AsyncTypesenseClient(config, _transport=_transport)
        try:
            healthy = await client.health()
        except TypesenseError as exc:
            await client.aclose()
            logger.warning("Connection to %s failed: %s", base_url, exc)
            raise TypesenseConnectionError(
                f"Failed to connect to Typesense at {base_url}: {exc}", base_url=base_url
            ) from exc
        if not healthy:
            await client.aclose()
            raise TypesenseConnectionError(
                f"Typesense at {base_url} reports it is not healthy", base_url=base_url
            )

        logger.info("Connected to %s", base_url)
        session = cls(client)
        await session.load_collections()
        return session

    async def aclose(self) -> None:
        await self._client.aclose()

    @property
    def loading(self) -> bool:
        return self._in_flight > 0

    @property
    def generation(self) -> int:
        return self._generation

    def _fail(self, message: str, exc: Exception) -> None:
        logger.warning("%s (%s)", message, exc)
        self.error = message

    async def load_collections(self) -> list[str]:
        """Refresh the collection list; select the first one if none is selected."""
        self._in_flight += 1
        try:
            schemas = await self._client.list_collections()
        except TypesenseError as exc:
            self._fail("Failed to load collections. Please check your connection.", exc)
            return self.collections
        finally:
            self._in_flight -= 1

        self.collections = [s.name for s in schemas]
        self.error = None
        if self.collection is None and self.collections:
            await self.select_collection(self.collections[0])
        return self.collections

    async def select_collection(self, name: str) -> None:
        """Switch collection: reset parameters, facets and results, then load its fields."""
        self.collection = name
        self.params = default_parameters()
        self.selected_facets.clear()
        self.response = None
        self.page = None
        # searches still running against the previous collection go stale
        self._generation += 1
        bind_context(collection=name)

        self._in_flight += 1
        try:
            schema = await self._client.get_collection(name)
        except TypesenseError as exc:
            self._fail(f"Failed to load fields for collection {name}.", exc)
            return
        finally:
            self._in_flight -= 1

        self.fields = schema.field_names
        self.error = None

    async def search(self, params: SearchParameters) -> SearchPage | None:
        """Run a search with new parameters (the search button)."""
        self.params = params
        return await self._perform(params)

    async def change_page(self, page: int) -> SearchPage | None:
        self.params = self.params.replace(page=page)
        return await self._perform(self.params)

    async def change_page_size(self, per_page: int) -> SearchPage | None:
        self.params = with_page_size(self.params, per_page)
        return await self._perform(self.params)

    async def toggle_facet(self, field_name: str, value: str, selected: bool) -> SearchPage | None:
        self.selected_facets.toggle(field_name, value, selected)
        return await self._perform(self.params)

    async def _perform(self, params: SearchParameters) -> SearchPage | None:
        """Build and send one search; return the page, or ``None`` if it failed or went stale."""
        collection = self.collection
        try:
            outbound = build_search_parameters(
                collection, params, self.selected_facets, self.response
            )
        except PreconditionError as exc:
            self.error = str(exc)
            logger.info("Search rejected locally: %s", exc)
            return None

        self._generation += 1
        generation = self._generation
        bind_request_id()
        bind_context(generation=generation)

        self._in_flight += 1
        try:
            response = await self._client.search(collection, outbound)  # type: ignore[arg-type]
        except TypesenseError as exc:
            if generation == self._generation:
                self._fail("Search failed. Please check your query and try again.", exc)
            return None
        finally:
            self._in_flight -= 1

        if generation != self._generation:
            logger.info(
                "Discarding stale search response (generation %d, latest %d)",
                generation,
                self._generation,
            )
            return None

        self.response = response
        self.page = SearchPage.from_response(response)
        self.error = None
        return self.page
