# chatcart/api/__init__.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatcart.api.routers import carts
from chatcart.api.routers.health import router as health_router
from chatcart.exceptions import (
    CartError,
    ConcurrencyError,
    DomainError,
    InfrastructureError,
    ValidationError,
)
from chatcart.utils.logging import get_logger

logger = get_logger(__name__)

RETRY_MESSAGE = "Something went wrong on our side. Please try again."


def _error_body(exc: CartError, message: str | None = None) -> dict:
    return {
        "error": exc.code,
        "message": message or exc.message,
        "retryable": exc.retryable,
        "context": exc.context,
    }


async def validation_error_handler(request: Request, exc: ValidationError):
    logger.info(f"{request.method} {request.url.path} rejected: {exc.message}")
    return JSONResponse(status_code=400, content=_error_body(exc))


async def domain_error_handler(request: Request, exc: DomainError):
    logger.info(f"{request.method} {request.url.path} refused: {exc.message}")
    return JSONResponse(status_code=409, content=_error_body(exc))


async def concurrency_error_handler(request: Request, exc: ConcurrencyError):
    logger.warning(f"{request.method} {request.url.path} lock timeout: {exc.message}")
    return JSONResponse(status_code=503, content=_error_body(exc))


async def infrastructure_error_handler(request: Request, exc: InfrastructureError):
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=503, content=_error_body(exc, RETRY_MESSAGE))


def register(app: FastAPI) -> None:
    app.include_router(health_router)
    app.include_router(carts.router)

    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(ConcurrencyError, concurrency_error_handler)
    app.add_exception_handler(InfrastructureError, infrastructure_error_handler)
