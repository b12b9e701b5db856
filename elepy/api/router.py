from fastapi import APIRouter

from elepy.api import auth
from elepy.api.crud import build_crud_router
from elepy.api.meta import build_meta_router
from elepy.services.registry import ModelRegistry


def build_router(registry: ModelRegistry) -> APIRouter:
    router = APIRouter()
    router.include_router(auth.router, prefix="/auth", tags=["auth"])
    router.include_router(build_meta_router(registry), prefix="/meta", tags=["meta"])
    for registration in registry:
        router.include_router(build_crud_router(registration))
    return router
