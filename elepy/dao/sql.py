from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from fastapi import HTTPException
from sqlalchemy import String, and_, cast, false, not_, or_, true
from sqlalchemy.exc import IntegrityError
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.orm import Session

from elepy.dao.base import Crud, CrudProvider
from elepy.schemas.model import PropertyType, Schema, SortOption
from elepy.schemas.query import Query
from elepy.services.coercion import coerce_value, is_date_only_literal
from elepy.services.expressions import And, Expression, Filter, FilterExpression, Or, Search
from elepy.services.filter_types import FilterType

_LOG = logging.getLogger("elepy.dao.sql")


def escape_like(value: str) -> str:
    """Escape LIKE metacharacters to prevent wildcard injection."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def serialize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: serialize_value(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


def row_to_dict(row: Any) -> dict[str, Any]:
    mapper = sa_inspect(type(row))
    return {column.key: serialize_value(getattr(row, column.key)) for column in mapper.column_attrs}


def _column_python_type(column) -> type | None:
    try:
        return column.property.columns[0].type.python_type
    except Exception:
        return None


class SqlCrud(Crud):
    def __init__(self, model: type, schema: Schema, db: Session):
        self.model = model
        self.schema = schema
        self.db = db

    def _column(self, name: str):
        column = getattr(self.model, name, None)
        if column is None:
            raise HTTPException(status_code=400, detail=f"Unknown property '{name}'")
        return column

    def _bind(self, name: str, value: Any) -> Any:
        """Coerce a raw value for comparison with / storage in column ``name``."""
        prop = self.schema.get_property(name)
        column = self._column(name)
        if prop is not None and prop.type != PropertyType.COLLECTION:
            value = coerce_value(prop, value)
        python_type = _column_python_type(column)
        if value is None or python_type is None:
            return value
        if python_type is uuid.UUID and not isinstance(value, uuid.UUID):
            try:
                return uuid.UUID(str(value).strip())
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Invalid identifier for the field '{name}'")
        if isinstance(value, Decimal):
            if python_type is float:
                return float(value)
            if python_type is int:
                return int(value) if value == value.to_integral_value() else float(value)
        return value

    # -- expression translation ------------------------------------------------

    def _clause(self, expression: Expression):
        if isinstance(expression, And):
            return and_(*(self._clause(child) for child in expression.children))
        if isinstance(expression, Or):
            return or_(*(self._clause(child) for child in expression.children))
        if isinstance(expression, Search):
            return self._search_clause(expression.term)
        if isinstance(expression, FilterExpression):
            return self._filter_clause(expression.filter)
        raise TypeError(f"Unsupported expression node: {type(expression).__name__}")

    def _search_clause(self, term: str):
        needle = term.strip()
        columns = [self._column(p.name) for p in self.schema.searchable_properties]
        if not needle or not columns:
            return false() if needle else true()
        pattern = f"%{escape_like(needle)}%"
        return or_(*(cast(col, String).ilike(pattern, escape="\\") for col in columns))

    def _day_range(self, col, raw: str):
        start = self._bind(col.key, raw)
        return and_(col >= start, col < start + timedelta(days=1))

    def _filter_clause(self, flt: Filter):
        col = self._column(flt.property_name)
        prop = self.schema.get_property(flt.property_name)
        op = flt.operator
        is_datetime = prop is not None and prop.type == PropertyType.DATETIME

        if op == FilterType.IS_NULL:
            return col.is_(None)
        if op == FilterType.NOT_NULL:
            return col.is_not(None)
        if op in {FilterType.EQUALS, FilterType.NOT_EQUALS, FilterType.IN, FilterType.NOT_IN}:
            parts = []
            for raw in flt.values:
                if is_datetime and is_date_only_literal(raw):
                    parts.append(self._day_range(col, raw))
                else:
                    parts.append(col == self._bind(flt.property_name, raw))
            matched = or_(*parts)
            if op in {FilterType.EQUALS, FilterType.IN}:
                return matched
            return and_(col.is_not(None), not_(matched))
        if op == FilterType.CONTAINS:
            target = cast(col, String) if prop is not None and prop.type == PropertyType.COLLECTION else col
            return or_(*(target.ilike(f"%{escape_like(raw)}%", escape="\\") for raw in flt.values))
        if op == FilterType.STARTS_WITH:
            return or_(*(col.ilike(f"{escape_like(raw)}%", escape="\\") for raw in flt.values))

        bound = [self._bind(flt.property_name, raw) for raw in flt.values]
        if op == FilterType.GREATER_THAN:
            return or_(*(col > v for v in bound))
        if op == FilterType.GREATER_THAN_OR_EQUALS:
            return or_(*(col >= v for v in bound))
        if op == FilterType.LESSER_THAN:
            return or_(*(col < v for v in bound))
        if op == FilterType.LESSER_THAN_OR_EQUALS:
            return or_(*(col <= v for v in bound))
        raise TypeError(f"Unsupported filter operator: {op.name}")

    def _filtered(self, query: Query | None):
        q = self.db.query(self.model)
        if query is not None and query.expression is not None:
            q = q.filter(self._clause(query.expression))
        return q

    # -- Crud ------------------------------------------------------------------

    def find(self, query: Query):
        q = self._filtered(query)
        total = q.count()
        for clause in query.sorting:
            col = self._column(clause.property_name)
            ordered = col.desc() if clause.direction == SortOption.DESCENDING else col.asc()
            q = q.order_by(ordered.nulls_last())
        if query.is_unbounded:
            rows = q.all() if query.page_number == 1 else []
        elif query.offset >= total:
            rows = []
        else:
            rows = q.offset(query.offset).limit(query.page_size).all()
        return self._page(query, [row_to_dict(row) for row in rows], total)

    def count(self, query: Query | None = None) -> int:
        return self._filtered(query).count()

    def _load(self, record_id: Any):
        return self.db.get(self.model, self._bind(self.schema.id_field, record_id))

    def _load_or_404(self, record_id: Any):
        row = self._load(record_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Record not found")
        return row

    def get_by_id(self, record_id: Any):
        row = self._load(record_id)
        return row_to_dict(row) if row is not None else None

    def _values(self, record: dict[str, Any]) -> dict[str, Any]:
        return {key: self._bind(key, value) for key, value in record.items()}

    def _commit(self, detail: str = "Data integrity violation") -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            _LOG.info("integrity error on %s: %s", self.schema.slug, exc.orig)
            raise HTTPException(status_code=400, detail=detail)

    def create(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        rows = []
        for record in records:
            values = {k: v for k, v in self._values(record).items() if v is not None or k != self.schema.id_field}
            rows.append(self.model(**values))
        self.db.add_all(rows)
        self._commit()
        for row in rows:
            self.db.refresh(row)
        return [row_to_dict(row) for row in rows]

    def update(self, record_id: Any, values: dict[str, Any]) -> dict[str, Any]:
        row = self._load_or_404(record_id)
        for key, value in self._values(values).items():
            if key == self.schema.id_field:
                continue
            setattr(row, key, value)
        self.db.add(row)
        self._commit()
        self.db.refresh(row)
        return row_to_dict(row)

    def delete(self, record_id: Any) -> None:
        row = self._load_or_404(record_id)
        self.db.delete(row)
        self._commit("The record can't be deleted because of related data")


class SqlCrudProvider(CrudProvider):
    def crud_for(self, registration, db) -> SqlCrud:
        if registration.model is None:
            raise RuntimeError(f"Model '{registration.slug}' has no SQLAlchemy class bound")
        return SqlCrud(registration.model, registration.schema, db)
