"""
Compose the outbound search request from UI state.

The console keeps three pieces of state that feed a search: the
:class:`~tsconsole.models.SearchParameters` the user edited, the facet
values picked in the sidebar (:class:`SelectedFacets`), and the previous
response, whose ``facet_counts`` tell which fields are facetable. This module
folds them into one parameter set.

Facet values are quoted and their double quotes escaped. Nothing else is
escaped: a value containing ``)``, ``||`` or ``&&`` still ends up inside the
quoted literal, but the service's parser is what decides how it reads.

The base filter is not parenthesized either. A base such as ``a:1 || b:2``
becomes ``a:1 || b:2 && (genre:="x")``, where ``&&`` binds tighter than
``||``; callers that need the whole base ANDed with the facets wrap it
themselves.
"""

from __future__ import annotations

import logging
from typing import AbstractSet, Iterator, Mapping

from tsconsole.models import PreconditionError, SearchParameters, SearchResponse

logger = logging.getLogger(__name__)


class SelectedFacets:
    """Facet values chosen in the sidebar: field -> unique values.

    Fields keep the order in which they were first selected, which fixes the
    order of the clauses in the composed filter.
    """

    def __init__(self, initial: Mapping[str, list[str]] | None = None) -> None:
        self._values: dict[str, list[str]] = {}
        for field_name, values in (initial or {}).items():
            for value in values:
                self.select(field_name, value)

    def select(self, field_name: str, value: str) -> None:
        values = self._values.setdefault(field_name, [])
        if value not in values:
            values.append(value)

    def deselect(self, field_name: str, value: str) -> None:
        values = self._values.get(field_name)
        if values and value in values:
            values.remove(value)

    def toggle(self, field_name: str, value: str, selected: bool) -> None:
        if selected:
            self.select(field_name, value)
        else:
            self.deselect(field_name, value)

    def is_selected(self, field_name: str, value: str) -> bool:
        return value in self._values.get(field_name, ())

    def clear(self) -> None:
        self._values.clear()

    def active(self) -> Iterator[tuple[str, list[str]]]:
        """Yield ``(field, values)`` for every field with at least one value."""
        for field_name, values in self._values.items():
            if values:
                yield field_name, list(values)

    def to_dict(self) -> dict[str, list[str]]:
        return {f: list(v) for f, v in self._values.items()}

    def __bool__(self) -> bool:
        return any(self._values.values())

    def __repr__(self) -> str:
        return f"SelectedFacets({self.to_dict()!r})"


def escape_filter_value(value: str) -> str:
    return str(value).replace('"', '\\"')


def facet_clause(field_name: str, values: list[str]) -> str:
    """``(field:="a" || field:="b")``, parenthesized even for a single value."""
    terms = " || ".join(f'{field_name}:="{escape_filter_value(v)}"' for v in values)
    return f"({terms})"


def compose_filter_by(
    base: str | None,
    selected: SelectedFacets,
    facet_fields: AbstractSet[str] | None = None,
) -> str:
    """Join the base filter and one clause per selected facet field with `` && ``.

    *facet_fields* are the fields the previous response reported in
    ``facet_counts``. ``None`` means there is nothing to check against yet,
    and every selected field is allowed so the first search can establish
    them. Fields outside *facet_fields* are dropped.
    """
    parts: list[str] = [base] if base else []
    for field_name, values in selected.active():
        if facet_fields is not None and field_name not in facet_fields:
            logger.debug("Dropping facet %r: not in previous facet_counts", field_name)
            continue
        parts.append(facet_clause(field_name, values))
    return " && ".join(parts)


def query_by_fields(query_by: str | None) -> list[str]:
    return [f.strip() for f in (query_by or "").split(",") if f.strip()]


def build_search_parameters(
    collection: str | None,
    params: SearchParameters,
    selected: SelectedFacets,
    previous: SearchResponse | None = None,
) -> SearchParameters:
    """Return the parameters to send, or raise :class:`PreconditionError`.

    Everything except ``filter_by`` passes through unchanged. An empty
    composed filter is sent as no filter at all.
    """
    if not collection:
        raise PreconditionError("Please select a collection first.")
    if not params.q and not query_by_fields(params.query_by):
        raise PreconditionError(
            "Please enter a search query or select at least one search field."
        )

    facet_fields = previous.facet_fields if previous is not None else None
    filter_by = compose_filter_by(params.filter_by, selected, facet_fields)
    return params.replace(filter_by=filter_by or None)
