"""tsconsole: fault-tolerant Typesense client and search-composition core."""

from tsconsole.client import AsyncTypesenseClient, TypesenseClient
from tsconsole.config import ClientConfig, Node
from tsconsole.logging import bind_context, bind_request_id, configure_logging, get_request_id
from tsconsole.models import (
    CollectionField,
    CollectionSchema,
    ConfigurationError,
    ConnectionConfig,
    FacetCount,
    ImportResult,
    PreconditionError,
    SearchHit,
    SearchParameters,
    SearchResponse,
    TypesenseConnectionError,
    TypesenseError,
    TypesenseHTTPError,
    TypesenseResponseError,
)
from tsconsole.nodes import NodePool
from tsconsole.results import SearchPage, total_pages, visible_range
from tsconsole.search import SelectedFacets, build_search_parameters, compose_filter_by
from tsconsole.session import SearchSession

__version__ = "0.1.0"

__all__ = [
    "AsyncTypesenseClient",
    "ClientConfig",
    "CollectionField",
    "CollectionSchema",
    "ConfigurationError",
    "ConnectionConfig",
    "FacetCount",
    "ImportResult",
    "Node",
    "NodePool",
    "PreconditionError",
    "SearchHit",
    "SearchPage",
    "SearchParameters",
    "SearchResponse",
    "SearchSession",
    "SelectedFacets",
    "TypesenseClient",
    "TypesenseConnectionError",
    "TypesenseError",
    "TypesenseHTTPError",
    "TypesenseResponseError",
    "__version__",
    "bind_context",
    "bind_request_id",
    "build_search_parameters",
    "compose_filter_by",
    "configure_logging",
    "get_request_id",
    "total_pages",
    "visible_range",
]
