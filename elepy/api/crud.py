from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from elepy.core.deps import require_permissions
from elepy.dao.base import Crud
from elepy.db.session import get_db
from elepy.services.expressions import iter_filters
from elepy.services.handlers import HandlerContext
from elepy.services.query_parser import parse_query
from elepy.services.registry import ModelRegistration


def build_crud_router(registration: ModelRegistration) -> APIRouter:
    """Routes for one registered model, mounted at ``/{slug}``."""
    slug = registration.slug
    schema = registration.schema
    router = APIRouter(prefix=f"/{slug}", tags=[schema.name])

    def _crud(db: Session = Depends(get_db)) -> Crud:
        return registration.crud_provider.crud_for(registration, db)

    can_find = require_permissions(*registration.permissions_for("find"))
    can_create = require_permissions(*registration.permissions_for("create"))
    can_update = require_permissions(*registration.permissions_for("update"))
    can_delete = require_permissions(*registration.permissions_for("delete"))

    @router.get("")
    def find_many(request: Request, crud: Crud = Depends(_crud), user: dict | None = Depends(can_find)):
        request.state.model_slug = slug
        query = parse_query(request.query_params, schema)
        request.state.filter_count = sum(1 for _ in iter_filters(query.expression))
        ctx = HandlerContext(registration, crud, user)
        page = registration.find_handler.find_many(ctx, query)
        return page.model_dump(by_alias=True)

    @router.get("/{record_id}")
    def find_one(record_id: str, crud: Crud = Depends(_crud), user: dict | None = Depends(can_find)):
        ctx = HandlerContext(registration, crud, user)
        return registration.find_handler.find_one(ctx, record_id)

    @router.post("", status_code=201)
    def create(
        payload: dict[str, Any] | list[dict[str, Any]] = Body(...),
        crud: Crud = Depends(_crud),
        user: dict | None = Depends(can_create),
    ):
        ctx = HandlerContext(registration, crud, user)
        return registration.create_handler.create(ctx, payload)

    @router.put("/{record_id}")
    def replace(
        record_id: str,
        payload: dict[str, Any] = Body(...),
        crud: Crud = Depends(_crud),
        user: dict | None = Depends(can_update),
    ):
        ctx = HandlerContext(registration, crud, user)
        return registration.update_handler.update(ctx, record_id, payload, partial=False)

    @router.patch("/{record_id}")
    def update(
        record_id: str,
        payload: dict[str, Any] = Body(...),
        crud: Crud = Depends(_crud),
        user: dict | None = Depends(can_update),
    ):
        ctx = HandlerContext(registration, crud, user)
        return registration.update_handler.update(ctx, record_id, payload, partial=True)

    @router.delete("/{record_id}")
    def delete(record_id: str, crud: Crud = Depends(_crud), user: dict | None = Depends(can_delete)):
        ctx = HandlerContext(registration, crud, user)
        registration.delete_handler.delete(ctx, record_id)
        return {"status": "deleted", "id": record_id}

    return router
