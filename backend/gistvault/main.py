import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from gistvault.config import Settings, get_settings
from gistvault.dependencies import DefaultAccessPolicy
from gistvault.routers import git
from gistvault.services.store import GitStore


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="[%(asctime)s][%(name)s][%(levelname)s] %(message)s",
    )


def create_app(settings: Settings | None = None, store: GitStore | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        settings.repos_dir.mkdir(parents=True, exist_ok=True)
        settings.tmp_dir.mkdir(parents=True, exist_ok=True)
        yield

    app = FastAPI(
        title=settings.app_name,
        description="Git-backed gist content engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.git_store = store or GitStore.from_settings(settings)
    app.state.access_policy = DefaultAccessPolicy(allow_push=settings.allow_push)

    app.include_router(git.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "app": settings.app_name}

    return app


app = create_app()
