from fastapi import APIRouter

from elepy.services.filter_types import FilterType
from elepy.services.registry import ModelRegistry


def _filter_types_for(schema) -> dict[str, list[dict]]:
    out: dict[str, list[dict]] = {}
    for prop in schema.properties:
        if prop.hidden:
            continue
        out[prop.name] = [
            {"token": ft.token, "name": ft.pretty_name}
            for ft in FilterType
            if ft.can_be_used_by(prop)
        ]
    return out


def build_meta_router(registry: ModelRegistry) -> APIRouter:
    router = APIRouter()

    def _describe(registration) -> dict:
        payload = registration.schema.describe()
        payload["filterTypes"] = _filter_types_for(registration.schema)
        return payload

    @router.get("/models")
    def list_models():
        return {"models": [_describe(r) for r in registry]}

    @router.get("/models/{slug}")
    def get_model(slug: str):
        return _describe(registry.get(slug))

    return router
