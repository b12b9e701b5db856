from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Generic, Iterator, List, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from elepy.schemas.model import SortOption
from elepy.services.expressions import Expression, purge

# Largest page size a client can express; also what "no pageSize" means.
UNBOUNDED_PAGE_SIZE = 2**31 - 1

T = TypeVar("T")


@dataclass(frozen=True)
class SortClause:
    property_name: str
    direction: SortOption = SortOption.ASCENDING


@dataclass(frozen=True)
class SortingSpecification:
    clauses: tuple[SortClause, ...] = ()

    def add(self, property_name: str, direction: SortOption = SortOption.ASCENDING) -> SortingSpecification:
        return SortingSpecification(self.clauses + (SortClause(property_name, direction),))

    def as_pairs(self) -> list[tuple[str, SortOption]]:
        return [(c.property_name, c.direction) for c in self.clauses]

    def __iter__(self) -> Iterator[SortClause]:
        return iter(self.clauses)

    def __len__(self) -> int:
        return len(self.clauses)


@dataclass(frozen=True)
class Query:
    expression: Expression | None = None
    sorting: SortingSpecification = SortingSpecification()
    page_number: int = 1
    page_size: int = UNBOUNDED_PAGE_SIZE

    def __post_init__(self):
        if self.page_number < 1:
            raise ValueError("page_number must be >= 1")
        if self.page_size < 1:
            raise ValueError("page_size must be >= 1")

    @classmethod
    def create(cls, expression: Expression | None = None) -> Query:
        return cls(expression=expression)

    def purge(self) -> Query:
        return replace(self, expression=purge(self.expression))

    def sort(self, sorting: SortingSpecification) -> Query:
        return replace(self, sorting=sorting)

    def page(self, page_number: int, page_size: int) -> Query:
        return replace(self, page_number=page_number, page_size=page_size)

    @property
    def is_unbounded(self) -> bool:
        return self.page_size >= UNBOUNDED_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page_number - 1) * self.page_size


class Page(BaseModel, Generic[T]):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    values: List[T]
    total_count: int
    page_number: int
    page_size: int
