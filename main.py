from typing import Optional

import uvicorn
from fastapi import FastAPI

from api.routes import create_fastapi_app
from config.config import Config
from config.logger import get_logger, setup_logging
from services.dependencies import build_services

logger = get_logger(__name__)


def validate_environment(config: Config) -> list[str]:
    """Validate environment configuration"""
    warnings = []

    if not config.origin_url:
        warnings.append("ORIGIN_URL not set - cache misses will not resolve")

    if config.aws_enabled and not config.cdn_root_url:
        warnings.append("CDN_ROOT_URL not set - serving public urls straight from the bucket")

    if config.proxy_enable and not (config.proxy_username and config.proxy_password):
        warnings.append("Proxy credentials not set - using unauthenticated proxy")

    for w in warnings:
        logger.warning(w)

    config.validate_for_startup()
    return warnings


def create_app(config: Optional[Config] = None) -> FastAPI:
    config = config or Config()
    setup_logging(config.server.debug, config.logs_dir)
    validate_environment(config)

    services = build_services(config)
    return create_fastapi_app(config, services)


def main():
    config = Config()

    uvicorn.run(
        "main:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=config.server.debug,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
