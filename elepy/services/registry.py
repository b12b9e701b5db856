from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator

from fastapi import HTTPException
from pydantic import BaseModel

from elepy.core.config import settings
from elepy.dao.base import CrudProvider
from elepy.dao.memory import MemoryCrudProvider
from elepy.dao.sql import SqlCrudProvider
from elepy.schemas.model import Schema
from elepy.services.handlers import CreateHandler, DeleteHandler, FindHandler, UpdateHandler
from elepy.services.identity import DefaultIdentityProvider, IdentityProvider

_LOG = logging.getLogger("elepy.registry")

CRUD_ACTIONS = ("find", "create", "update", "delete")
RESERVED_SLUGS = {"auth", "meta", "health"}


def normalize_slug(raw: str) -> str:
    raw = (raw or "").strip().strip("/").replace("_", "-")
    if not raw:
        return ""
    chars: list[str] = []
    for index, ch in enumerate(raw):
        if ch.isupper() and index > 0 and raw[index - 1].isalnum() and raw[index - 1] != "-":
            chars.append("-")
        chars.append(ch.lower())
    return "".join(chars)


def default_permissions() -> dict[str, tuple[str, ...]]:
    find = settings.split_permissions(settings.DEFAULT_FIND_PERMISSIONS)
    write = settings.split_permissions(settings.DEFAULT_WRITE_PERMISSIONS)
    return {"find": find, "create": write, "update": write, "delete": write}


@dataclass(frozen=True)
class ModelRegistration:
    """Everything the generated routes need to serve one model."""

    schema: Schema
    crud_provider: CrudProvider
    model: type | None = None
    find_handler: FindHandler = field(default_factory=FindHandler)
    create_handler: CreateHandler = field(default_factory=CreateHandler)
    update_handler: UpdateHandler = field(default_factory=UpdateHandler)
    delete_handler: DeleteHandler = field(default_factory=DeleteHandler)
    identity_provider: IdentityProvider = field(default_factory=DefaultIdentityProvider)
    input_model: type[BaseModel] | None = None
    permissions: dict[str, tuple[str, ...]] = field(default_factory=default_permissions)

    @property
    def slug(self) -> str:
        return self.schema.slug

    def permissions_for(self, action: str) -> tuple[str, ...]:
        return tuple(self.permissions.get(action, ()))


class ModelRegistry:
    """Explicit slug -> registration map, filled once at startup."""

    def __init__(self, default_crud_provider: CrudProvider | None = None):
        self.default_crud_provider = default_crud_provider
        self._memory_provider = MemoryCrudProvider()
        self._sql_provider = SqlCrudProvider()
        self._registrations: dict[str, ModelRegistration] = {}

    def _provider_for(self, model: type | None) -> CrudProvider:
        if self.default_crud_provider is not None:
            return self.default_crud_provider
        return self._sql_provider if model is not None else self._memory_provider

    def register(
        self,
        schema: Schema,
        *,
        model: type | None = None,
        crud_provider: CrudProvider | None = None,
        permissions: dict[str, tuple[str, ...] | list[str]] | None = None,
        **options,
    ) -> ModelRegistration:
        slug = normalize_slug(schema.slug)
        if not slug:
            raise ValueError(f"Schema '{schema.name}' has an empty slug")
        if slug in RESERVED_SLUGS:
            raise ValueError(f"Slug '{slug}' is reserved")
        if slug in self._registrations:
            raise ValueError(f"A model is already registered under '{slug}'")
        if slug != schema.slug:
            schema = schema.model_copy(update={"slug": slug})

        resolved_permissions = default_permissions()
        for action, required in (permissions or {}).items():
            if action not in CRUD_ACTIONS:
                raise ValueError(f"Unknown action '{action}', expected one of {', '.join(CRUD_ACTIONS)}")
            resolved_permissions[action] = tuple(required)

        registration = ModelRegistration(
            schema=schema,
            model=model,
            crud_provider=crud_provider or self._provider_for(model),
            permissions=resolved_permissions,
            **options,
        )
        self._registrations[slug] = registration
        _LOG.info("registered model %s at /%s", schema.name, slug)
        return registration

    def get(self, slug: str) -> ModelRegistration:
        registration = self._registrations.get(normalize_slug(slug))
        if registration is None:
            raise HTTPException(status_code=404, detail="Model not found")
        return registration

    def __iter__(self) -> Iterator[ModelRegistration]:
        return iter(self._registrations.values())

    def __len__(self) -> int:
        return len(self._registrations)

    @property
    def schemas(self) -> list[Schema]:
        return [r.schema for r in self]
