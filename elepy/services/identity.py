from __future__ import annotations

import unicodedata
import uuid
from abc import ABC, abstractmethod
from typing import Any, Iterable

from fastapi import HTTPException

from elepy.dao.base import Crud
from elepy.schemas.model import PropertyType


def slugify(value: str, fallback: str = "") -> str:
    raw = unicodedata.normalize("NFKD", str(value or "")).encode("ascii", "ignore").decode("ascii")
    raw = raw.strip().lower()
    out: list[str] = []
    prev_dash = False
    for ch in raw:
        if ("a" <= ch <= "z") or ("0" <= ch <= "9"):
            out.append(ch)
            prev_dash = False
            continue
        if not prev_dash:
            out.append("-")
            prev_dash = True
    slug = "".join(out).strip("-")
    return slug or fallback


class IdentityProvider(ABC):
    """Assigns the id of a record that is about to be created.

    ``reserved`` carries ids already handed out earlier in the same batch.
    """

    @abstractmethod
    def provide_id(self, record: dict[str, Any], crud: Crud, reserved: set | None = None) -> dict[str, Any]: ...

    @staticmethod
    def _check_free(crud: Crud, record_id: Any, reserved: set) -> None:
        key = crud.coerce_id(record_id)
        if key in reserved or crud.exists(record_id):
            raise HTTPException(status_code=400, detail=f"A record with id '{record_id}' already exists")


class DefaultIdentityProvider(IdentityProvider):
    """Keeps client ids, generates UUID strings for string ids, leaves numeric ids to the store."""

    def provide_id(self, record, crud, reserved=None):
        reserved = reserved if reserved is not None else set()
        id_field = crud.schema.id_field
        data = dict(record)
        if data.get(id_field) is not None:
            self._check_free(crud, data[id_field], reserved)
        elif crud.schema.id_property.type == PropertyType.STRING:
            data[id_field] = str(uuid.uuid4())
        if data.get(id_field) is not None:
            reserved.add(crud.coerce_id(data[id_field]))
        return data


class SlugIdentityProvider(IdentityProvider):
    """Derives a URL-friendly id from the first non-blank source field.

    Collisions get ``-2``, ``-3``... appended.
    """

    def __init__(self, fields: Iterable[str] = ("name", "title", "slug"), max_length: int = 70):
        self.fields = tuple(fields)
        self.max_length = max_length

    def _base(self, record: dict[str, Any]) -> str:
        for name in self.fields:
            value = record.get(name)
            if value is None or not str(value).strip():
                continue
            slug = slugify(str(value))[: self.max_length].strip("-")
            if slug:
                return slug
        raise HTTPException(
            status_code=400,
            detail="Can't generate an id: none of the fields " + ", ".join(self.fields) + " has a value",
        )

    def _taken(self, crud: Crud, candidate: str, reserved: set) -> bool:
        return candidate in reserved or crud.exists(candidate)

    def provide_id(self, record, crud, reserved=None):
        reserved = reserved if reserved is not None else set()
        id_field = crud.schema.id_field
        data = dict(record)
        if data.get(id_field) is not None and str(data[id_field]).strip():
            self._check_free(crud, data[id_field], reserved)
            reserved.add(crud.coerce_id(data[id_field]))
            return data

        base = self._base(data)
        candidate = base
        idx = 2
        while self._taken(crud, candidate, reserved):
            suffix = f"-{idx}"
            candidate = (base[: self.max_length - len(suffix)] + suffix).strip("-")
            idx += 1
        data[id_field] = candidate
        reserved.add(candidate)
        return data
