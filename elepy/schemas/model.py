from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class SortOption(str, Enum):
    ASCENDING = "ASCENDING"
    DESCENDING = "DESCENDING"

    @classmethod
    def get(cls, raw: str) -> Optional["SortOption"]:
        token = str(raw or "").strip().lower()
        if token in {"asc", "ascending"}:
            return cls.ASCENDING
        if token in {"desc", "descending"}:
            return cls.DESCENDING
        return None


class PropertyType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    ENUM = "enum"
    COLLECTION = "collection"


class DescriptorModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


def humanize(identifier: str) -> str:
    chars: list[str] = []
    for index, ch in enumerate(identifier or ""):
        if ch in "_-":
            chars.append(" ")
            continue
        if ch.isupper() and index > 0 and identifier[index - 1].islower():
            chars.append(" ")
        chars.append(ch)
    phrase = " ".join("".join(chars).split())
    return phrase[:1].upper() + phrase[1:] if phrase else identifier


class Property(DescriptorModel):
    name: str = Field(min_length=1)
    type: PropertyType = PropertyType.STRING
    label: str = ""
    searchable: bool = False
    sortable: bool = True
    hidden: bool = False
    unique: bool = False
    required: bool = False
    enum_values: tuple[str, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _default_label(cls, data):
        if isinstance(data, dict) and not data.get("label"):
            data = dict(data)
            data["label"] = humanize(str(data.get("name") or ""))
        return data

    @property
    def pretty_name(self) -> str:
        return self.label


class Schema(DescriptorModel):
    """Read-only description of one model: what can be filtered, searched and sorted."""

    name: str
    slug: str
    properties: tuple[Property, ...]
    id_field: str = "id"
    default_sort_field: str = ""
    default_sort_direction: SortOption = SortOption.ASCENDING

    @model_validator(mode="before")
    @classmethod
    def _default_sort_field(cls, data):
        if isinstance(data, dict) and not (data.get("default_sort_field") or data.get("defaultSortField")):
            data = {k: v for k, v in data.items() if k != "defaultSortField"}
            data["default_sort_field"] = data.get("id_field") or data.get("idField") or "id"
        return data

    @model_validator(mode="after")
    def _check_fields(self) -> "Schema":
        names = [p.name for p in self.properties]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate property names in schema '{self.name}'")
        if self.id_field not in names:
            raise ValueError(f"Schema '{self.name}' has no id property '{self.id_field}'")
        if self.default_sort_field not in names:
            raise ValueError(f"Schema '{self.name}' default sort field '{self.default_sort_field}' is unknown")
        default_sort = self.properties[names.index(self.default_sort_field)]
        if default_sort.hidden or not default_sort.sortable:
            raise ValueError(f"Schema '{self.name}' default sort field '{self.default_sort_field}' is not sortable")
        return self

    def get_property(self, name: str) -> Property | None:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    @property
    def id_property(self) -> Property:
        return self.get_property(self.id_field)

    @property
    def searchable_properties(self) -> tuple[Property, ...]:
        return tuple(p for p in self.properties if p.searchable and not p.hidden)

    @property
    def unique_properties(self) -> tuple[Property, ...]:
        return tuple(p for p in self.properties if p.unique and p.name != self.id_field)

    @property
    def hidden_fields(self) -> set[str]:
        return {p.name for p in self.properties if p.hidden}

    def describe(self) -> dict:
        payload = self.model_dump(mode="json", by_alias=True)
        payload["properties"] = [
            p.model_dump(mode="json", by_alias=True) for p in self.properties if not p.hidden
        ]
        return payload
