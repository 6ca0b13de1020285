import time
from typing import Dict
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from config.logger import get_logger
from models.delivery import Delivery, DeliveryKind
from services.coordinator import CacheCoordinator
from services.dependencies import CoordinatorDep, Services, ServicesDep
from utils.exceptions import Mp3CacheError

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    timestamp: float
    services: Dict[str, bool]


class BytesResponse(BaseModel):
    bytes: int


def delivery_response(delivery: Delivery) -> RedirectResponse:
    """Translate a delivery into a redirect or an http error"""
    if delivery.kind is DeliveryKind.NOT_FOUND:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=delivery.message)

    if delivery.kind is DeliveryKind.INTERNAL_ERROR:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=delivery.message
        )

    location = delivery.location or ""
    if delivery.kind is not DeliveryKind.REMOTE:
        location = "/" + quote(location)
    return RedirectResponse(location, status_code=status.HTTP_302_FOUND)


def register_error_handlers(app: FastAPI):
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    @app.exception_handler(Mp3CacheError)
    async def cache_error_handler(_: Request, exc: Mp3CacheError):
        logger.error("Unhandled cache error", error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(_: Request, exc: Exception):
        logger.error("Unexpected error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )


def register_routes(app: FastAPI):
    # plain def endpoints: fetching and encoding block, fastapi runs them in its threadpool

    @app.get("/health", response_model=HealthResponse)
    def health_check(services: Services = ServicesDep):
        checks = {
            "storage_operational": services.storage.ping(),
            "cache_operational": services.cache_client.ping(),
        }
        return HealthResponse(
            status="healthy" if all(checks.values()) else "degraded",
            timestamp=time.time(),
            services=checks,
        )

    @app.get("/bytes/{key}/{audio_id}", response_model=BytesResponse)
    def audio_bytes(key: str, audio_id: str, coordinator: CacheCoordinator = CoordinatorDep):
        size = coordinator.bytes(key, audio_id)
        if size is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audio not found")
        return BytesResponse(bytes=size)

    @app.get("/stream/{key}/{audio_id}")
    def stream(key: str, audio_id: str, coordinator: CacheCoordinator = CoordinatorDep):
        return delivery_response(coordinator.stream(key, audio_id))

    @app.get("/{key}/{audio_id}")
    def download(key: str, audio_id: str, coordinator: CacheCoordinator = CoordinatorDep):
        return delivery_response(coordinator.download(key, audio_id))

    @app.get("/{key}/{audio_id}/{bitrate}")
    def bitrate_download(
        key: str, audio_id: str, bitrate: int, coordinator: CacheCoordinator = CoordinatorDep
    ):
        return delivery_response(coordinator.bitrate_download(key, audio_id, bitrate))
