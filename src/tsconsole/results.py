"""Normalize a search response into what the results table and pager render."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from tsconsole.models import FacetCount, SearchHit, SearchParameters, SearchResponse

DEFAULT_PER_PAGE = 10


def total_pages(found: int, per_page: int) -> int:
    return math.ceil(found / per_page) if per_page > 0 else 0


def visible_range(found: int, page: int, per_page: int) -> tuple[int, int]:
    """1-based ``(first, last)`` result numbers shown on *page*; ``(0, 0)`` when empty."""
    if found <= 0:
        return 0, 0
    return (page - 1) * per_page + 1, min(page * per_page, found)


def with_page_size(params: SearchParameters, per_page: int) -> SearchParameters:
    """Change the page size and go back to page 1 so the page stays in range."""
    return params.replace(per_page=per_page, page=1)


def _per_page(response: SearchResponse) -> int:
    raw = response.request_params.get("per_page")
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_PER_PAGE
    return value if value > 0 else DEFAULT_PER_PAGE


@dataclass(frozen=True)
class SearchPage:
    """One page of results with derived paging metadata."""

    hits: list[SearchHit]
    found: int
    out_of: int
    page: int
    per_page: int
    search_time_ms: int
    facets: list[FacetCount] = field(default_factory=list)

    @classmethod
    def from_response(cls, response: SearchResponse) -> SearchPage:
        return cls(
            hits=list(response.hits),
            found=response.found,
            out_of=response.out_of,
            page=response.page,
            per_page=_per_page(response),
            search_time_ms=response.search_time_ms,
            facets=list(response.facet_counts or []),
        )

    @property
    def total_pages(self) -> int:
        return total_pages(self.found, self.per_page)

    @property
    def visible_range(self) -> tuple[int, int]:
        return visible_range(self.found, self.page, self.per_page)

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def summary(self) -> str:
        first, last = self.visible_range
        return f"Showing {first} to {last} of {self.found} results"
