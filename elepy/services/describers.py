from __future__ import annotations

import enum
import uuid
from typing import Iterable

from sqlalchemy import JSON, ARRAY
from sqlalchemy.inspection import inspect as sa_inspect
from sqlalchemy.sql.sqltypes import Boolean, Date, DateTime, Enum as SAEnum, Float, Integer, Numeric

from elepy.schemas.model import Property, PropertyType, Schema, SortOption


def column_kind(column) -> PropertyType:
    col_type = column.type
    if isinstance(col_type, Boolean):
        return PropertyType.BOOLEAN
    if isinstance(col_type, (Integer, Numeric, Float)):
        return PropertyType.NUMBER
    if isinstance(col_type, DateTime):
        return PropertyType.DATETIME
    if isinstance(col_type, Date):
        return PropertyType.DATE
    if isinstance(col_type, SAEnum):
        return PropertyType.ENUM
    if isinstance(col_type, (JSON, ARRAY)):
        return PropertyType.COLLECTION
    return PropertyType.STRING


def _enum_values(column) -> tuple[str, ...]:
    col_type = column.type
    if not isinstance(col_type, SAEnum):
        return ()
    enum_class = getattr(col_type, "enum_class", None)
    if enum_class is not None and issubclass(enum_class, enum.Enum):
        return tuple(str(member.name) for member in enum_class)
    return tuple(str(v) for v in col_type.enums)


def describe_model(
    model: type,
    *,
    name: str | None = None,
    slug: str | None = None,
    searchable: Iterable[str] | None = None,
    hidden: Iterable[str] = (),
    unsortable: Iterable[str] = (),
    labels: dict[str, str] | None = None,
    default_sort_field: str | None = None,
    default_sort_direction: SortOption = SortOption.ASCENDING,
) -> Schema:
    """Build a ``Schema`` from a SQLAlchemy declarative class.

    Runs once at registration time.  String columns are searchable unless
    ``searchable`` names the searchable columns explicitly.
    """
    mapper = sa_inspect(model)
    primary_key = mapper.primary_key
    if len(primary_key) != 1:
        raise ValueError(f"{model.__name__}: only models with a single primary key are supported")
    id_field = mapper.get_property_by_column(primary_key[0]).key

    searchable_set = set(searchable) if searchable is not None else None
    hidden_set = set(hidden)
    unsortable_set = set(unsortable)
    labels = labels or {}

    properties = []
    for attr in mapper.column_attrs:
        column = attr.columns[0]
        kind = column_kind(column)
        try:
            is_uuid = column.type.python_type is uuid.UUID
        except NotImplementedError:
            is_uuid = False
        if searchable_set is None:
            is_searchable = kind == PropertyType.STRING and not is_uuid
        else:
            is_searchable = attr.key in searchable_set
        required = (
            not column.nullable
            and column.default is None
            and column.server_default is None
            and not column.primary_key
        )
        properties.append(
            Property(
                name=attr.key,
                type=kind,
                label=labels.get(attr.key, ""),
                searchable=is_searchable,
                sortable=attr.key not in unsortable_set and kind != PropertyType.COLLECTION,
                hidden=attr.key in hidden_set,
                unique=bool(column.unique) or bool(column.primary_key),
                required=required,
                enum_values=_enum_values(column),
            )
        )

    table_name = getattr(model, "__tablename__", model.__name__.lower())
    return Schema(
        name=name or model.__name__,
        slug=slug or table_name,
        properties=tuple(properties),
        id_field=id_field,
        default_sort_field=default_sort_field or id_field,
        default_sort_direction=default_sort_direction,
    )
