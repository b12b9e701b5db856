"""Turns request query parameters into a backend-agnostic ``Query``.

Supported keys: ``q`` (free text), ``sort`` (repeatable), ``pageSize``,
``pageNumber`` and ``<property>_<operator>`` field filters.  Unknown operator
tokens are skipped; every other problem is a 400 raised before any backend
is touched.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping

from fastapi import HTTPException

from elepy.schemas.model import Property, Schema, SortOption
from elepy.schemas.query import UNBOUNDED_PAGE_SIZE, Query, SortingSpecification
from elepy.services.coercion import coerce_value
from elepy.services.expressions import Filter, FilterExpression, and_, iter_filters, or_, search
from elepy.services.filter_types import FilterType
from elepy.services.search_parser import parse_search

_LOG = logging.getLogger("elepy.query")

SEARCH_PARAM = "q"
SORT_PARAM = "sort"
PAGE_SIZE_PARAM = "pageSize"
PAGE_NUMBER_PARAM = "pageNumber"
_DIGITS_RE = re.compile(r"[0-9]+")


def _multi_items(raw_params: Any) -> list[tuple[str, list[str]]]:
    """Normalize QueryParams / mappings into ordered ``(key, values)`` pairs."""
    if raw_params is None:
        return []
    grouped: dict[str, list[str]] = {}
    if hasattr(raw_params, "multi_items"):
        for key, value in raw_params.multi_items():
            grouped.setdefault(key, []).append(str(value))
        return list(grouped.items())
    if isinstance(raw_params, Mapping):
        items = raw_params.items()
    else:
        items = raw_params
    for key, value in items:
        bucket = grouped.setdefault(str(key), [])
        if isinstance(value, (list, tuple)):
            bucket.extend(str(v) for v in value)
        elif value is not None:
            bucket.append(str(value))
    return list(grouped.items())


def _first(params: list[tuple[str, list[str]]], key: str) -> str | None:
    for name, values in params:
        if name == key and values:
            return values[0]
    return None


def _all(params: list[tuple[str, list[str]]], key: str) -> list[str]:
    for name, values in params:
        if name == key:
            return list(values)
    return []


def _queryable_property(schema: Schema, name: str) -> Property:
    prop = schema.get_property(name)
    if prop is None or prop.hidden:
        raise HTTPException(status_code=400, detail=f"Unknown property '{name}'")
    return prop


def split_filter_key(key: str) -> tuple[str, str] | None:
    """``customer_type_equals`` -> ``("customer_type", "equals")``."""
    if "_" not in key:
        return None
    parts = key.split("_")
    return "_".join(parts[:-1]), parts[-1]


def _filter_values(filter_type: FilterType, values: Iterable[str]) -> tuple[str, ...]:
    if not filter_type.takes_values:
        return tuple(values)
    if filter_type.is_list:
        return tuple(part.strip() for value in values for part in value.split(",") if part.strip())
    return tuple(values)


def filters_for_model(raw_params: Any, schema: Schema | None = None) -> list[Filter]:
    filters: list[Filter] = []
    for key, values in _multi_items(raw_params):
        split = split_filter_key(key)
        if split is None:
            continue
        property_name, token = split
        filter_type = FilterType.get_by_query_string(token)
        if filter_type is None:
            continue
        filter_values = _filter_values(filter_type, values)
        if schema is not None:
            prop = _queryable_property(schema, property_name)
            if not filter_type.can_be_used_by(prop):
                raise HTTPException(
                    status_code=400,
                    detail=f"'{filter_type.pretty_name}' can't be applied to the field '{prop.pretty_name}'",
                )
            if filter_type.takes_values:
                if not filter_values:
                    raise HTTPException(status_code=400, detail=f"Missing value for the filter '{key}'")
                for value in filter_values:
                    coerce_value(prop, value)
        filters.append(Filter(property_name, filter_type, filter_values))
    return filters


def parse_sort(raw_sort_values: Iterable[str] | None, schema: Schema | None = None) -> SortingSpecification:
    sorting = SortingSpecification()
    sorts = [s for s in (raw_sort_values or []) if str(s or "").strip()]
    if not sorts:
        if schema is None:
            return sorting
        return sorting.add(schema.default_sort_field, schema.default_sort_direction)

    for raw in sorts:
        split = [part.strip() for part in str(raw).split(",")]
        property_name = split[0]
        direction = SortOption.ASCENDING
        if len(split) > 1:
            direction = SortOption.get(split[1])
            if direction is None:
                raise HTTPException(status_code=400, detail=f"Unknown sort direction '{split[1]}' for '{property_name}'")
        if schema is not None:
            prop = _queryable_property(schema, property_name)
            if not prop.sortable:
                raise HTTPException(status_code=400, detail=f"The field '{prop.pretty_name}' is not sortable")
        sorting = sorting.add(property_name, direction)
    return sorting


def _positive_int(name: str, raw: str | None, default: int) -> int:
    if raw is None:
        return default
    text = str(raw).strip()
    if not _DIGITS_RE.fullmatch(text):
        raise HTTPException(status_code=400, detail=f"'{name}' must be a positive integer")
    value = int(text)
    if value < 1:
        raise HTTPException(status_code=400, detail=f"'{name}' must be a positive integer")
    return value


def parse_paging(raw_params: Any) -> tuple[int, int]:
    params = _multi_items(raw_params)
    page_number = _positive_int(PAGE_NUMBER_PARAM, _first(params, PAGE_NUMBER_PARAM), 1)
    page_size = _positive_int(PAGE_SIZE_PARAM, _first(params, PAGE_SIZE_PARAM), UNBOUNDED_PAGE_SIZE)
    return page_number, min(page_size, UNBOUNDED_PAGE_SIZE)


def parse_query(raw_params: Any, schema: Schema | None = None) -> Query:
    """Build the purged, sorted and paged ``Query`` for one request.

    Field filters are OR'ed with each other and the union is AND'ed with the
    parsed ``q`` expression. Kept for compatibility with existing clients.
    """
    params = _multi_items(raw_params)
    text = _first(params, SEARCH_PARAM) or ""
    sorting = parse_sort(_all(params, SORT_PARAM), schema)
    page_number, page_size = parse_paging(params)

    filters = filters_for_model(params, schema)
    union = or_(FilterExpression(f) for f in filters)
    expression = and_(parse_search(text), union if union.children else search(""))

    query = Query.create(expression).purge().sort(sorting).page(page_number, page_size)
    _LOG.debug(
        "parsed query schema=%s filters=%d fields=%s sort=%s page=%d size=%d",
        schema.slug if schema is not None else None,
        len(filters),
        sorted({f.property_name for f in iter_filters(query.expression)}),
        sorting.as_pairs(),
        page_number,
        page_size,
    )
    return query
