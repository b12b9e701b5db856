"""Immutable boolean expression tree handed to storage backends.

A tree is built from four node kinds: ``And``, ``Or``, ``Search`` (free text)
and ``FilterExpression`` (a single field predicate).  ``purge`` removes the
degenerate nodes that query-string parsing naturally produces, so backends
never have to special-case empty groups or blank search terms.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Union

from elepy.services.filter_types import FilterType


@dataclass(frozen=True)
class Filter:
    property_name: str
    operator: FilterType
    values: tuple[str, ...] = field(default=())

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(str(v) for v in self.values))

    @property
    def value(self) -> str | None:
        return self.values[0] if self.values else None


@dataclass(frozen=True)
class And:
    children: tuple[Expression, ...] = ()


@dataclass(frozen=True)
class Or:
    children: tuple[Expression, ...] = ()


@dataclass(frozen=True)
class Search:
    term: str = ""


@dataclass(frozen=True)
class FilterExpression:
    filter: Filter


Expression = Union[And, Or, Search, FilterExpression]


def and_(*children: Expression | Iterable[Expression]) -> And:
    return And(tuple(_flatten_args(children)))


def or_(*children: Expression | Iterable[Expression]) -> Or:
    return Or(tuple(_flatten_args(children)))


def search(term: str) -> Search:
    return Search(str(term or ""))


def filter_(property_name: str, operator: FilterType, *values: str) -> FilterExpression:
    return FilterExpression(Filter(property_name, operator, tuple(values)))


def _flatten_args(children) -> list:
    out = []
    for child in children:
        if isinstance(child, Filter):
            out.append(FilterExpression(child))
        elif isinstance(child, (And, Or, Search, FilterExpression)):
            out.append(child)
        else:
            out.extend(_flatten_args(child))
    return out


def purge(expression: Expression | None) -> Expression | None:
    if expression is None:
        return None
    if isinstance(expression, Search):
        return expression if expression.term.strip() else None
    if isinstance(expression, FilterExpression):
        return expression

    children = tuple(c for c in (purge(child) for child in expression.children) if c is not None)
    if not children:
        return None
    if len(children) == 1:
        return children[0]
    return type(expression)(children)


def iter_filters(expression: Expression | None) -> Iterable[Filter]:
    if expression is None or isinstance(expression, Search):
        return
    if isinstance(expression, FilterExpression):
        yield expression.filter
        return
    for child in expression.children:
        yield from iter_filters(child)
