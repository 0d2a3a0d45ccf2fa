"""
Grouped filter conditions rendered as a Typesense ``filter_by`` expression.

Backs the advanced-search filter editor: the user edits groups of
``field / operator / value`` rows, and the result becomes the base filter
that :func:`tsconsole.search.compose_filter_by` extends with facet clauses.
Values are inserted verbatim; ``in`` / ``not in`` expect comma-separated
values.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class FilterOperator(str, enum.Enum):
    EQ = "=="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    CONTAINS = "contains"
    IN = "in"
    NOT_IN = "not in"


class Combinator(str, enum.Enum):
    AND = "AND"
    OR = "OR"


_TEMPLATES = {
    FilterOperator.EQ: "{field}:{value}",
    FilterOperator.NE: "{field}:!{value}",
    FilterOperator.GT: "{field}:>{value}",
    FilterOperator.GE: "{field}:>={value}",
    FilterOperator.LT: "{field}:<{value}",
    FilterOperator.LE: "{field}:<={value}",
    FilterOperator.CONTAINS: "{field}:{value}",
    FilterOperator.IN: "{field}:[{value}]",
    FilterOperator.NOT_IN: "{field}:![{value}]",
}


@dataclass(frozen=True)
class FilterCondition:
    field: str
    operator: FilterOperator = FilterOperator.EQ
    value: str = ""

    def render(self) -> str:
        """Render the condition, or ``""`` while field or value is still blank."""
        if not self.field or not self.value:
            return ""
        return _TEMPLATES[FilterOperator(self.operator)].format(
            field=self.field, value=self.value
        )


@dataclass(frozen=True)
class FilterGroup:
    conditions: list[FilterCondition] = field(default_factory=list)
    combinator: Combinator = Combinator.AND

    def render(self) -> str:
        rendered = [c.render() for c in self.conditions]
        rendered = [r for r in rendered if r]
        if not rendered:
            return ""
        joiner = " && " if Combinator(self.combinator) is Combinator.AND else " || "
        joined = joiner.join(rendered)
        return f"({joined})" if len(rendered) > 1 else joined


def build_filter_expression(groups: list[FilterGroup]) -> str:
    """AND together every non-empty group."""
    return " && ".join(r for r in (g.render() for g in groups) if r)
