"""Domain errors raised by the service layer.

Routers never catch these; ``register_exception_handlers`` maps each class to an
HTTP status and renders ``{"detail": message}``, the same body FastAPI uses
for ``HTTPException``.
"""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class MarketError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(MarketError):
    status_code = status.HTTP_404_NOT_FOUND


class Forbidden(MarketError):
    status_code = status.HTTP_403_FORBIDDEN


class InvalidState(MarketError):
    status_code = status.HTTP_409_CONFLICT


class Validation(MarketError):
    status_code = status.HTTP_400_BAD_REQUEST


async def market_error_handler(request: Request, exc: MarketError):
    logger.warning(f"{request.method} {request.url.path} rejected: {exc.__class__.__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                        content={"detail": "Internal server error"})


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
