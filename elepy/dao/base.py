from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from elepy.schemas.model import Schema
from elepy.schemas.query import Page, Query
from elepy.services.coercion import coerce_value


class Crud(ABC):
    """Storage contract used by the generic handlers.

    Records travel as plain dicts keyed by property name.
    """

    schema: Schema

    @abstractmethod
    def find(self, query: Query) -> Page[dict[str, Any]]: ...

    @abstractmethod
    def count(self, query: Query | None = None) -> int: ...

    @abstractmethod
    def get_by_id(self, record_id: Any) -> dict[str, Any] | None: ...

    @abstractmethod
    def create(self, records: list[dict[str, Any]]) -> list[dict[str, Any]]: ...

    @abstractmethod
    def update(self, record_id: Any, values: dict[str, Any]) -> dict[str, Any]: ...

    @abstractmethod
    def delete(self, record_id: Any) -> None: ...

    def exists(self, record_id: Any) -> bool:
        return self.get_by_id(record_id) is not None

    def coerce_id(self, raw: Any) -> Any:
        return coerce_value(self.schema.id_property, raw)

    def _page(self, query: Query, values: list[dict[str, Any]], total: int) -> Page[dict[str, Any]]:
        return Page[dict[str, Any]](
            values=values,
            total_count=total,
            page_number=query.page_number,
            page_size=query.page_size,
        )


class CrudProvider(ABC):
    """Hands out a ``Crud`` for a registered model within one request."""

    @abstractmethod
    def crud_for(self, registration, db) -> Crud: ...
