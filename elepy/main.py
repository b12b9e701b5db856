from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from elepy.api.router import build_router
from elepy.core.config import Settings, settings as default_settings
from elepy.core.http_hardening import install_http_hardening
from elepy.db.session import Base, engine
from elepy.services.registry import ModelRegistry


def create_app(registry: ModelRegistry, *, app_settings: Settings | None = None, create_tables: bool = False) -> FastAPI:
    """Build the HTTP app serving every model in ``registry``.

    ``create_tables`` runs ``create_all`` on the configured engine; deployments
    that manage their schema with migrations leave it off.
    """
    cfg = app_settings or default_settings
    app = FastAPI(title=cfg.APP_NAME, version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_http_hardening(app)

    if create_tables:
        Base.metadata.create_all(bind=engine)

    app.include_router(build_router(registry), prefix=cfg.API_PREFIX)
    app.state.registry = registry

    @app.get("/", include_in_schema=False)
    def landing():
        return JSONResponse({"service": cfg.APP_NAME, "status": "ok", "models": [r.slug for r in registry]})

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app
