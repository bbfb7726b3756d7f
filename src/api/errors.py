"""
Exception -> HTTP mapping
=========================

================================  ======
``InvalidInput`` subclasses        422
``NotFound`` subclasses            404
``Conflict`` subclasses            409
``SQLAlchemyError``                503
``TimeoutError`` (store budget)    504
================================  ======

Bodies are ``{"detail": <message>, "code": <stable code>}``.
"""

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from src.domain.errors import Conflict, InvalidInput, NotFound, RideServiceError

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[RideServiceError], int]] = [
    (InvalidInput, 422),
    (NotFound, 404),
    (Conflict, 409),
]


def status_for(exc: RideServiceError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 400


async def domain_error_handler(request: Request, exc: RideServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": str(exc), "code": exc.code},
    )


async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"detail": "Ride store unavailable", "code": "store_unavailable"},
    )


async def timeout_handler(request: Request, exc: asyncio.TimeoutError) -> JSONResponse:
    logger.warning("Store call timed out on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=504,
        content={"detail": "Ride store timed out", "code": "store_timeout"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RideServiceError, domain_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
    app.add_exception_handler(asyncio.TimeoutError, timeout_handler)
