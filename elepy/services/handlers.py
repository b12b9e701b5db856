from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fastapi import HTTPException
from pydantic import ValidationError

from elepy.dao.base import Crud
from elepy.schemas.model import Schema
from elepy.schemas.query import Page, Query
from elepy.services.integrity import check_unique

if TYPE_CHECKING:
    from elepy.services.registry import ModelRegistration

_LOG = logging.getLogger("elepy.handlers")


@dataclass
class HandlerContext:
    registration: "ModelRegistration"
    crud: Crud
    user: dict[str, Any] | None = None

    @property
    def schema(self) -> Schema:
        return self.registration.schema


def strip_hidden(schema: Schema, record: dict[str, Any]) -> dict[str, Any]:
    hidden = schema.hidden_fields
    if not hidden:
        return record
    return {key: value for key, value in record.items() if key not in hidden}


def sanitize_payload(schema: Schema, payload: Any, *, is_update: bool) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    known = {p.name for p in schema.properties}
    unknown_fields = sorted(set(payload.keys()) - known)
    if unknown_fields:
        raise HTTPException(status_code=400, detail="Unknown fields: " + ", ".join(unknown_fields))
    if is_update and not payload:
        raise HTTPException(status_code=400, detail="No fields to update")
    return dict(payload)


def check_required(schema: Schema, record: dict[str, Any]) -> None:
    missing = [
        p.name
        for p in schema.properties
        if p.required and p.name != schema.id_field and record.get(p.name) is None
    ]
    if missing:
        raise HTTPException(status_code=400, detail="Missing required fields: " + ", ".join(sorted(missing)))


def validate_input(registration: "ModelRegistration", record: dict[str, Any]) -> None:
    if registration.input_model is None:
        return
    try:
        registration.input_model.model_validate(record)
    except ValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
        raise HTTPException(status_code=400, detail="; ".join(messages))


class FindHandler:
    def find_many(self, ctx: HandlerContext, query: Query) -> Page[dict[str, Any]]:
        page = ctx.crud.find(query)
        return page.model_copy(update={"values": [strip_hidden(ctx.schema, v) for v in page.values]})

    def find_one(self, ctx: HandlerContext, record_id: Any) -> dict[str, Any]:
        record = ctx.crud.get_by_id(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Record not found")
        return strip_hidden(ctx.schema, record)


class CreateHandler:
    """Accepts one object or a list; a list is stored all-or-nothing."""

    def create(self, ctx: HandlerContext, payload: Any) -> dict[str, Any] | list[dict[str, Any]]:
        many = isinstance(payload, list)
        records = payload if many else [payload]
        if not records:
            raise HTTPException(status_code=400, detail="Nothing to create")

        identity = ctx.registration.identity_provider
        reserved: set = set()
        prepared = []
        for raw in records:
            data = sanitize_payload(ctx.schema, raw, is_update=False)
            data = identity.provide_id(data, ctx.crud, reserved)
            check_required(ctx.schema, data)
            validate_input(ctx.registration, data)
            prepared.append(data)
        check_unique(ctx.crud, prepared)

        created = ctx.crud.create(prepared)
        _LOG.info("created %d %s record(s)", len(created), ctx.schema.slug)
        stripped = [strip_hidden(ctx.schema, r) for r in created]
        return stripped if many else stripped[0]


class UpdateHandler:
    """PATCH merges the given fields; PUT replaces every visible field."""

    def update(self, ctx: HandlerContext, record_id: Any, payload: Any, *, partial: bool) -> dict[str, Any]:
        schema = ctx.schema
        id_field = schema.id_field
        data = sanitize_payload(schema, payload, is_update=partial)
        if data.get(id_field) is not None and ctx.crud.coerce_id(data[id_field]) != ctx.crud.coerce_id(record_id):
            raise HTTPException(status_code=400, detail="The id in the body doesn't match the id in the path")
        data.pop(id_field, None)

        current = ctx.crud.get_by_id(record_id)
        if current is None:
            raise HTTPException(status_code=404, detail="Record not found")

        if partial:
            changes = data
        else:
            changes = {
                p.name: data.get(p.name)
                for p in schema.properties
                if p.name != id_field and (not p.hidden or p.name in data)
            }
        merged = {**current, **changes}
        check_required(schema, merged)
        validate_input(ctx.registration, merged)
        check_unique(ctx.crud, [merged])

        updated = ctx.crud.update(record_id, changes)
        _LOG.info("updated %s record %s", schema.slug, record_id)
        return strip_hidden(schema, updated)


class DeleteHandler:
    def delete(self, ctx: HandlerContext, record_id: Any) -> dict[str, Any]:
        record = ctx.crud.get_by_id(record_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Record not found")
        ctx.crud.delete(record_id)
        _LOG.info("deleted %s record %s", ctx.schema.slug, record_id)
        return strip_hidden(ctx.schema, record)
