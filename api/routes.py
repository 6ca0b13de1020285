from fastapi import FastAPI

from api.factory import (
    configure_middleware,
    create_base_app,
    create_lifespan_manager,
    mount_local_storage,
)
from api.handlers import register_error_handlers, register_routes
from config.logger import get_logger
from services.dependencies import Services

logger = get_logger(__name__)


def create_fastapi_app(config, services: Services) -> FastAPI:
    """Create and configure the FastAPI application"""

    app = create_base_app(config)
    app.state.services = services

    app.router.lifespan_context = create_lifespan_manager(services)

    configure_middleware(app, config)

    register_error_handlers(app)

    # static mounts first, the catch-all download routes would shadow them
    mount_local_storage(app, services)

    register_routes(app)

    return app
