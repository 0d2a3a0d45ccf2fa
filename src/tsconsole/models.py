"""
Wire models and exception hierarchy for the Typesense client.

Every JSON payload the service returns is decoded into one of the frozen
dataclasses below. Decoding is strict about required fields: a payload of
the wrong shape raises :class:`TypesenseResponseError` instead of leaking
half-populated objects into the caller.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from typing import Any, Mapping

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TypesenseError(Exception):
    """Base exception for all client errors."""


class ConfigurationError(TypesenseError, ValueError):
    """The client configuration is unusable (no nodes, missing key, bad port)."""


class PreconditionError(TypesenseError, ValueError):
    """A request was rejected locally before reaching the network."""


class TypesenseConnectionError(TypesenseError):
    """A node is unreachable or a transport-level error occurred (DNS, TCP, TLS, timeout)."""

    def __init__(self, message: str, base_url: str = "") -> None:
        self.base_url = base_url
        super().__init__(message)


class TypesenseHTTPError(TypesenseError):
    """The service answered with a non-2xx status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(message)


class TypesenseResponseError(TypesenseError):
    """A response could not be decoded (bad JSON, unexpected shape)."""

    def __init__(self, message: str, raw_body: str = "") -> None:
        self.raw_body = raw_body[:2000]
        super().__init__(message)


# ---------------------------------------------------------------------------
# Decoding helpers
# ---------------------------------------------------------------------------


def _expect_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise TypesenseResponseError(
            f"Expected {what} object, got {type(data).__name__}",
            raw_body=str(data),
        )
    return data


def _is_kind(value: Any, kind: type) -> bool:
    # bool is an int subclass; never accept it where a number is expected
    return isinstance(value, kind) and (kind is bool or not isinstance(value, bool))


def _require(data: Mapping[str, Any], key: str, kind: type, what: str) -> Any:
    value = data.get(key)
    if not _is_kind(value, kind):
        raise TypesenseResponseError(
            f"{what} is missing required field {key!r}",
            raw_body=str(dict(data)),
        )
    return value


def _optional(data: Mapping[str, Any], key: str, kind: type) -> Any:
    value = data.get(key)
    return value if _is_kind(value, kind) else None


def _strip_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CollectionField:
    """One field of a collection schema.

    ``type`` is passed through untouched; the service owns type semantics.
    Keys the client does not model are kept in ``extra`` so a schema read
    from the service can be written back unchanged.
    """

    name: str
    type: str
    facet: bool | None = None
    optional: bool | None = None
    index: bool | None = None
    sort: bool | None = None
    infix: bool | None = None
    locale: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> CollectionField:
        data = _expect_mapping(data, "collection field")
        known = {f.name for f in dataclasses.fields(cls)} - {"extra"}
        return cls(
            name=_require(data, "name", str, "Collection field"),
            type=_require(data, "type", str, "Collection field"),
            facet=_optional(data, "facet", bool),
            optional=_optional(data, "optional", bool),
            index=_optional(data, "index", bool),
            sort=_optional(data, "sort", bool),
            infix=_optional(data, "infix", bool),
            locale=_optional(data, "locale", str),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        out = _strip_none(
            {
                "name": self.name,
                "type": self.type,
                "facet": self.facet,
                "optional": self.optional,
                "index": self.index,
                "sort": self.sort,
                "infix": self.infix,
                "locale": self.locale,
            }
        )
        return {**self.extra, **out}


@dataclass(frozen=True)
class CollectionSchema:
    """A collection definition as sent to and returned by ``/collections``."""

    name: str
    fields: list[CollectionField] = field(default_factory=list)
    default_sorting_field: str | None = None
    token_separators: list[str] | None = None
    symbols_to_index: list[str] | None = None
    enable_nested_fields: bool | None = None
    num_documents: int | None = None
    created_at: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> CollectionSchema:
        data = _expect_mapping(data, "collection")
        raw_fields = data.get("fields", [])
        if not isinstance(raw_fields, list):
            raise TypesenseResponseError(
                f"Collection 'fields' must be a list, got {type(raw_fields).__name__}",
                raw_body=str(dict(data)),
            )
        known = {f.name for f in dataclasses.fields(cls)} - {"extra"}
        return cls(
            name=_require(data, "name", str, "Collection"),
            fields=[CollectionField.from_dict(f) for f in raw_fields],
            default_sorting_field=_optional(data, "default_sorting_field", str) or None,
            token_separators=_optional(data, "token_separators", list),
            symbols_to_index=_optional(data, "symbols_to_index", list),
            enable_nested_fields=_optional(data, "enable_nested_fields", bool),
            num_documents=_optional(data, "num_documents", int),
            created_at=_optional(data, "created_at", int),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for ``POST /collections``.

        Server-populated counters (``num_documents``, ``created_at``) are not
        part of a create request and are left out.
        """
        out = _strip_none(
            {
                "name": self.name,
                "fields": [f.to_dict() for f in self.fields],
                "default_sorting_field": self.default_sorting_field,
                "token_separators": self.token_separators,
                "symbols_to_index": self.symbols_to_index,
                "enable_nested_fields": self.enable_nested_fields,
            }
        )
        return {**self.extra, **out}

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]


# ---------------------------------------------------------------------------
# Search parameters
# ---------------------------------------------------------------------------


def _wire_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True)
class SearchParameters:
    """Outbound search contract for ``/collections/{name}/documents/search``.

    Only ``q`` and ``query_by`` are always sent. Every other field is
    omitted from the wire when it is ``None``.
    """

    q: str = ""
    query_by: str = ""
    query_by_weights: str | None = None
    prefix: bool | str | None = None
    filter_by: str | None = None
    sort_by: str | None = None
    facet_by: str | None = None
    max_facet_values: int | None = None
    facet_query: str | None = None
    num_typos: str | int | None = None
    page: int | None = None
    per_page: int | None = None
    group_by: str | None = None
    group_limit: int | None = None
    include_fields: str | None = None
    exclude_fields: str | None = None
    highlight_fields: str | None = None
    highlight_full_fields: str | None = None
    highlight_affix_num_tokens: int | None = None
    highlight_start_tag: str | None = None
    highlight_end_tag: str | None = None
    snippet_threshold: int | None = None
    drop_tokens_threshold: int | None = None
    typo_tokens_threshold: int | None = None
    pinned_hits: str | None = None
    hidden_hits: str | None = None
    enable_overrides: bool | None = None
    pre_segmented_query: bool | None = None
    vector_query: str | None = None
    remote_embedding_timeout_ms: int | None = None
    remote_embedding_num_tries: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SearchParameters:
        """Build from a mapping such as a response's ``request_params``.

        Unknown keys are ignored; values are taken as given.
        """
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known and v is not None}
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        """Non-``None`` parameters with native JSON types (for ``/multi_search``)."""
        return _strip_none(dataclasses.asdict(self))

    def to_query_params(self) -> dict[str, str]:
        """Non-``None`` parameters stringified once each, for the query string."""
        return {k: _wire_value(v) for k, v in self.to_dict().items()}

    def replace(self, **changes: Any) -> SearchParameters:
        return dataclasses.replace(self, **changes)


# ---------------------------------------------------------------------------
# Search responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FacetCountValue:
    value: str
    count: int
    highlighted: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> FacetCountValue:
        data = _expect_mapping(data, "facet value")
        value = data.get("value")
        if value is None:
            raise TypesenseResponseError(
                "Facet value is missing required field 'value'", raw_body=str(dict(data))
            )
        return cls(
            value=str(value),
            count=_require(data, "count", int, "Facet value"),
            highlighted=str(data.get("highlighted", value)),
        )


@dataclass(frozen=True)
class FacetCount:
    """Aggregated value counts for one faceted field."""

    field_name: str
    counts: list[FacetCountValue] = field(default_factory=list)
    stats: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> FacetCount:
        data = _expect_mapping(data, "facet count")
        raw_counts = data.get("counts", [])
        if not isinstance(raw_counts, list):
            raise TypesenseResponseError(
                "Facet 'counts' must be a list", raw_body=str(dict(data))
            )
        stats = data.get("stats") or {}
        return cls(
            field_name=_require(data, "field_name", str, "Facet count"),
            counts=[FacetCountValue.from_dict(c) for c in raw_counts],
            stats=dict(stats) if isinstance(stats, Mapping) else {},
        )


@dataclass(frozen=True)
class SearchHit:
    """One matching document plus its relevance and highlight data."""

    document: dict[str, Any]
    text_match: int = 0
    highlight: dict[str, Any] = field(default_factory=dict)
    highlights: list[dict[str, Any]] = field(default_factory=list)
    text_match_info: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: Any) -> SearchHit:
        data = _expect_mapping(data, "search hit")
        document = _require(data, "document", dict, "Search hit")
        highlights = data.get("highlights") or []
        return cls(
            document=document,
            text_match=_optional(data, "text_match", int) or 0,
            highlight=_optional(data, "highlight", dict) or {},
            highlights=[h for h in highlights if isinstance(h, dict)],
            text_match_info=_optional(data, "text_match_info", dict),
        )


@dataclass(frozen=True)
class SearchResponse:
    """A decoded search response.

    ``facet_counts`` is ``None`` when the service omitted faceting, which is
    distinct from an empty list: the search builder treats the former as
    "no information" and the latter as "no faceted fields".
    """

    found: int
    out_of: int
    page: int
    search_time_ms: int
    hits: list[SearchHit]
    request_params: dict[str, Any] = field(default_factory=dict)
    facet_counts: list[FacetCount] | None = None
    search_cutoff: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> SearchResponse:
        data = _expect_mapping(data, "search response")
        raw_hits = data.get("hits", [])
        if not isinstance(raw_hits, list):
            raise TypesenseResponseError(
                "Search response 'hits' must be a list", raw_body=str(dict(data))
            )
        raw_facets = data.get("facet_counts")
        if raw_facets is not None and not isinstance(raw_facets, list):
            raise TypesenseResponseError(
                "Search response 'facet_counts' must be a list", raw_body=str(dict(data))
            )
        return cls(
            found=_require(data, "found", int, "Search response"),
            out_of=_optional(data, "out_of", int) or 0,
            page=_require(data, "page", int, "Search response"),
            search_time_ms=_optional(data, "search_time_ms", int) or 0,
            hits=[SearchHit.from_dict(h) for h in raw_hits],
            request_params=dict(_optional(data, "request_params", dict) or {}),
            facet_counts=(
                [FacetCount.from_dict(f) for f in raw_facets] if raw_facets is not None else None
            ),
            search_cutoff=bool(data.get("search_cutoff", False)),
        )

    @property
    def facet_fields(self) -> frozenset[str] | None:
        """Names of the faceted fields, or ``None`` if faceting was omitted."""
        if self.facet_counts is None:
            return None
        return frozenset(f.field_name for f in self.facet_counts)

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


# ---------------------------------------------------------------------------
# Bulk import
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImportResult:
    """Outcome of one document in a bulk import."""

    success: bool
    error: str | None = None
    document: str | None = None
    code: int | None = None
    id: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> ImportResult:
        data = _expect_mapping(data, "import result")
        return cls(
            success=_require(data, "success", bool, "Import result"),
            error=_optional(data, "error", str),
            document=_optional(data, "document", str),
            code=_optional(data, "code", int),
            id=_optional(data, "id", str),
        )


# ---------------------------------------------------------------------------
# Connection records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConnectionConfig:
    """A saved connection as kept by the connection-history screen.

    Only read here, to build a :class:`~tsconsole.config.ClientConfig`.
    ``port`` is kept as entered: it may be blank.
    """

    host: str
    api_key: str
    protocol: str = "http"
    port: str = ""
    name: str = ""
    id: str = ""
    created_at: str = ""
    last_used: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ConnectionConfig:
        return cls(
            host=str(data.get("host", "")),
            api_key=str(data.get("apiKey", data.get("api_key", ""))),
            protocol=str(data.get("protocol", "http")),
            port=str(data.get("port", "") or ""),
            name=str(data.get("name", "")),
            id=str(data.get("id", "")),
            created_at=str(data.get("createdAt", data.get("created_at", ""))),
            last_used=str(data.get("lastUsed", data.get("last_used", ""))),
        )
