from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from config.logger import get_logger
from services.dependencies import Services

logger = get_logger(__name__)


def initialize_storage(services: Services) -> None:
    """Verify storage connectivity"""
    if services.storage.ping():
        logger.info("Storage connectivity verified", storage=services.storage.location.value)
    else:
        logger.error("Storage startup validation failed", storage=services.storage.location.value)


def configure_middleware(app: FastAPI, _config) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["GET", "HEAD"],
        allow_headers=["*"],
    )


def mount_local_storage(app: FastAPI, services: Services) -> None:
    """Serve stream paths and download links straight from the local roots"""
    if services.storage.remote:
        return

    paths = services.config.paths
    app.mount("/mp3", StaticFiles(directory=paths.mp3, check_dir=False), name="mp3")
    app.mount(
        "/links",
        StaticFiles(directory=paths.links, check_dir=False, follow_symlink=True),
        name="links",
    )


def create_lifespan_manager(services: Services):
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # Startup
        initialize_storage(services)

        # Shutdown
        yield

        services.close()

    return lifespan


def create_base_app(config) -> FastAPI:
    return FastAPI(
        version="1.0.0",
        title="mp3 cache",
        description="Fetches, caches, converts and publishes audio files",
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )
