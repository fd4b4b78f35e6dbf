import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from family_manager.api import router
from family_manager.core.config import Settings
from family_manager.core.migration import MigrationRegistry
from family_manager.core.storage import JsonRecordStore, RestRecordStore

logger = logging.getLogger(__name__)


def _build_stores(settings: Settings):
    if settings.use_remote_store:
        logger.info("using remote record store at %s", settings.backend_url)
        return (
            RestRecordStore(settings.backend_url, settings.backend_key, "families"),
            RestRecordStore(settings.backend_url, settings.backend_key, "members"),
        )
    logger.info("using local record store in %s", settings.workspace_dir)
    return (
        JsonRecordStore(settings.workspace_dir, "families"),
        JsonRecordStore(settings.workspace_dir, "members"),
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for store in (app.state.families_store, app.state.members_store):
            close = getattr(store, "aclose", None)
            if close is not None:
                await close()

    app = FastAPI(title="Family Manager Core", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.families_store, app.state.members_store = _build_stores(settings)
    app.state.migrations = MigrationRegistry()

    app.include_router(router, prefix="/api")

    @app.get("/")
    def health_check():
        return {"status": "Family Manager Running"}

    return app


app = create_app()
