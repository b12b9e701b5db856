from __future__ import annotations

from enum import Enum

from elepy.schemas.model import Property, PropertyType

_ALL = frozenset(PropertyType)
_SCALAR = frozenset(
    {
        PropertyType.STRING,
        PropertyType.NUMBER,
        PropertyType.BOOLEAN,
        PropertyType.DATE,
        PropertyType.DATETIME,
        PropertyType.ENUM,
    }
)
_ORDERED = frozenset({PropertyType.NUMBER, PropertyType.DATE, PropertyType.DATETIME})
_LISTABLE = frozenset(
    {
        PropertyType.STRING,
        PropertyType.NUMBER,
        PropertyType.DATE,
        PropertyType.DATETIME,
        PropertyType.ENUM,
    }
)


class FilterType(Enum):
    """Operators accepted as ``<property>_<token>`` query-string keys."""

    EQUALS = ("equals", "Equals", _SCALAR)
    NOT_EQUALS = ("notEquals", "Not Equals", _SCALAR)
    CONTAINS = ("contains", "Contains", frozenset({PropertyType.STRING, PropertyType.COLLECTION}))
    STARTS_WITH = ("startsWith", "Starts With", frozenset({PropertyType.STRING}))
    GREATER_THAN = ("gt", "Greater Than", _ORDERED)
    GREATER_THAN_OR_EQUALS = ("gte", "Greater Than or Equal", _ORDERED)
    LESSER_THAN = ("lt", "Lesser Than", _ORDERED)
    LESSER_THAN_OR_EQUALS = ("lte", "Lesser Than or Equal", _ORDERED)
    IN = ("in", "In", _LISTABLE)
    NOT_IN = ("notIn", "Not In", _LISTABLE)
    IS_NULL = ("isNull", "Is Null", _ALL)
    NOT_NULL = ("notNull", "Not Null", _ALL)

    def __init__(self, token: str, pretty_name: str, property_types: frozenset):
        self.token = token
        self.pretty_name = pretty_name
        self.property_types = property_types

    @classmethod
    def get_by_query_string(cls, token: str) -> FilterType | None:
        needle = str(token or "").strip().lower()
        if not needle:
            return None
        for filter_type in cls:
            if filter_type.token.lower() == needle:
                return filter_type
        return None

    def can_be_used_by(self, prop: Property | None) -> bool:
        if prop is None:
            return False
        return prop.type in self.property_types

    @property
    def takes_values(self) -> bool:
        return self not in {FilterType.IS_NULL, FilterType.NOT_NULL}

    @property
    def is_list(self) -> bool:
        return self in {FilterType.IN, FilterType.NOT_IN}
