from __future__ import annotations

import copy
import threading
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import Any

from fastapi import HTTPException

from elepy.dao.base import Crud, CrudProvider
from elepy.schemas.model import Property, PropertyType, Schema, SortOption
from elepy.schemas.query import Query, SortingSpecification
from elepy.services.coercion import coerce_value, is_date_only_literal
from elepy.services.expressions import And, Expression, Filter, FilterExpression, Or, Search
from elepy.services.filter_types import FilterType


def _text(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        return " ".join(_text(v) for v in value)
    return str(value)


class _Evaluator:
    def __init__(self, schema: Schema):
        self.schema = schema

    def matches(self, record: dict[str, Any], expression: Expression | None) -> bool:
        if expression is None:
            return True
        if isinstance(expression, And):
            return all(self.matches(record, child) for child in expression.children)
        if isinstance(expression, Or):
            return any(self.matches(record, child) for child in expression.children)
        if isinstance(expression, Search):
            return self._search(record, expression.term)
        if isinstance(expression, FilterExpression):
            return self._filter(record, expression.filter)
        raise TypeError(f"Unsupported expression node: {type(expression).__name__}")

    def _search(self, record: dict[str, Any], term: str) -> bool:
        needle = term.strip().lower()
        if not needle:
            return True
        for prop in self.schema.searchable_properties:
            value = record.get(prop.name)
            if value is not None and needle in _text(value).lower():
                return True
        return False

    def _filter(self, record: dict[str, Any], flt: Filter) -> bool:
        prop = self.schema.get_property(flt.property_name)
        raw = record.get(flt.property_name)
        op = flt.operator
        if op == FilterType.IS_NULL:
            return raw is None
        if op == FilterType.NOT_NULL:
            return raw is not None
        if raw is None or prop is None:
            return False

        if prop.type == PropertyType.COLLECTION:
            items = raw if isinstance(raw, (list, tuple, set)) else [raw]
            return any(str(item) == value for item in items for value in flt.values)

        actual = coerce_value(prop, raw)
        if op in {FilterType.EQUALS, FilterType.IN}:
            return any(self._equals(prop, actual, value) for value in flt.values)
        if op in {FilterType.NOT_EQUALS, FilterType.NOT_IN}:
            return not any(self._equals(prop, actual, value) for value in flt.values)
        if op == FilterType.CONTAINS:
            return any(value.lower() in str(actual).lower() for value in flt.values)
        if op == FilterType.STARTS_WITH:
            return any(str(actual).lower().startswith(value.lower()) for value in flt.values)

        expected = [coerce_value(prop, value) for value in flt.values]
        if op == FilterType.GREATER_THAN:
            return any(actual > e for e in expected)
        if op == FilterType.GREATER_THAN_OR_EQUALS:
            return any(actual >= e for e in expected)
        if op == FilterType.LESSER_THAN:
            return any(actual < e for e in expected)
        if op == FilterType.LESSER_THAN_OR_EQUALS:
            return any(actual <= e for e in expected)
        raise TypeError(f"Unsupported filter operator: {op.name}")

    @staticmethod
    def _equals(prop: Property, actual: Any, raw_expected: str) -> bool:
        expected = coerce_value(prop, raw_expected)
        if prop.type == PropertyType.DATETIME and is_date_only_literal(raw_expected):
            return expected <= actual < expected + timedelta(days=1)
        if prop.type == PropertyType.STRING:
            return str(actual) == str(expected)
        return actual == expected


def _sort_key(prop: Property | None, value: Any) -> Any:
    if prop is None:
        return str(value)
    if prop.type in {PropertyType.NUMBER, PropertyType.DATE, PropertyType.DATETIME, PropertyType.BOOLEAN}:
        return coerce_value(prop, value)
    return _text(value)


def sort_records(schema: Schema, records: list[dict[str, Any]], sorting: SortingSpecification) -> list[dict[str, Any]]:
    """Stable multi-key sort; the first clause is the primary key, ``None`` always last."""
    ordered = list(records)
    for clause in reversed(sorting.clauses):
        prop = schema.get_property(clause.property_name)
        present = [r for r in ordered if r.get(clause.property_name) is not None]
        missing = [r for r in ordered if r.get(clause.property_name) is None]
        present.sort(
            key=lambda r: _sort_key(prop, r.get(clause.property_name)),
            reverse=clause.direction == SortOption.DESCENDING,
        )
        ordered = present + missing
    return ordered


class MemoryCrud(Crud):
    def __init__(self, schema: Schema):
        self.schema = schema
        self._rows: dict[Any, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._evaluator = _Evaluator(schema)

    def _snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(row) for row in self._rows.values()]

    def find(self, query: Query):
        matched = [r for r in self._snapshot() if self._evaluator.matches(r, query.expression)]
        ordered = sort_records(self.schema, matched, query.sorting)
        if query.is_unbounded:
            values = ordered if query.page_number == 1 else []
        else:
            values = ordered[query.offset : query.offset + query.page_size]
        return self._page(query, values, len(matched))

    def count(self, query: Query | None = None) -> int:
        expression = query.expression if query is not None else None
        return sum(1 for r in self._snapshot() if self._evaluator.matches(r, expression))

    def get_by_id(self, record_id: Any):
        key = self.coerce_id(record_id)
        with self._lock:
            row = self._rows.get(key)
            return copy.deepcopy(row) if row is not None else None

    def _validate_values(self, record: dict[str, Any]) -> None:
        for name, value in record.items():
            prop = self.schema.get_property(name)
            if prop is not None and prop.type != PropertyType.COLLECTION:
                coerce_value(prop, value)

    def _next_numeric_id(self, taken: set) -> int:
        numeric = [k for k in taken if isinstance(k, (int, Decimal)) and not isinstance(k, bool)]
        return int(max(numeric)) + 1 if numeric else 1

    def create(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        id_field = self.schema.id_field
        with self._lock:
            taken = set(self._rows.keys())
            prepared: list[tuple[Any, dict[str, Any]]] = []
            for record in records:
                row = copy.deepcopy(record)
                self._validate_values(row)
                if row.get(id_field) is None:
                    if self.schema.id_property.type == PropertyType.NUMBER:
                        row[id_field] = self._next_numeric_id(taken)
                    else:
                        row[id_field] = str(uuid.uuid4())
                key = self.coerce_id(row[id_field])
                if key in taken:
                    raise HTTPException(status_code=400, detail=f"A record with id '{row[id_field]}' already exists")
                taken.add(key)
                prepared.append((key, row))
            for key, row in prepared:
                self._rows[key] = row
            return [copy.deepcopy(row) for _, row in prepared]

    def update(self, record_id: Any, values: dict[str, Any]) -> dict[str, Any]:
        key = self.coerce_id(record_id)
        with self._lock:
            row = self._rows.get(key)
            if row is None:
                raise HTTPException(status_code=404, detail="Record not found")
            merged = {**row, **copy.deepcopy(values)}
            merged[self.schema.id_field] = row[self.schema.id_field]
            self._validate_values(merged)
            self._rows[key] = merged
            return copy.deepcopy(merged)

    def delete(self, record_id: Any) -> None:
        key = self.coerce_id(record_id)
        with self._lock:
            if self._rows.pop(key, None) is None:
                raise HTTPException(status_code=404, detail="Record not found")


class MemoryCrudProvider(CrudProvider):
    def __init__(self):
        self._stores: dict[str, MemoryCrud] = {}
        self._lock = threading.Lock()

    def crud_for(self, registration, db) -> MemoryCrud:
        with self._lock:
            store = self._stores.get(registration.slug)
            if store is None:
                store = MemoryCrud(registration.schema)
                self._stores[registration.slug] = store
            return store
