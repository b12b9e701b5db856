from __future__ import annotations

from typing import Any

from fastapi import HTTPException

from elepy.dao.base import Crud
from elepy.schemas.model import PropertyType
from elepy.schemas.query import Query
from elepy.services.coercion import coerce_value
from elepy.services.expressions import filter_
from elepy.services.filter_types import FilterType


def _duplicate(label: str, value: Any) -> HTTPException:
    return HTTPException(status_code=400, detail=f"An item with the {label} '{value}' already exists")


def check_unique(crud: Crud, records: list[dict[str, Any]]) -> None:
    """Reject records whose unique values clash with stored rows or with each other.

    A stored row only counts as a clash when its id differs from the record's own id.
    """
    schema = crud.schema
    id_field = schema.id_field
    for prop in schema.unique_properties:
        if prop.type == PropertyType.COLLECTION:
            continue
        seen: set[str] = set()
        for record in records:
            value = record.get(prop.name)
            if value is None:
                continue
            key = str(coerce_value(prop, value))
            if key in seen:
                raise _duplicate(prop.pretty_name, value)
            seen.add(key)

            query = Query(expression=filter_(prop.name, FilterType.EQUALS, str(value)), page_size=2)
            own_id = record.get(id_field)
            own_key = crud.coerce_id(own_id) if own_id is not None else None
            for other in crud.find(query).values:
                if own_key is None or crud.coerce_id(other.get(id_field)) != own_key:
                    raise _duplicate(prop.pretty_name, value)
