"""
Maps the DAASError hierarchy to HTTP responses.

Service code raises typed errors and stays HTTP-agnostic; the handlers
registered here pick the status code and body shape.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from DAAS_Gateway.daas_shared.errors import (
    BalanceError,
    BundleNotFoundError,
    DAASError,
    ExecutionFailed,
    SessionForbiddenError,
    SessionNotFoundError,
    SourceNotFoundError,
    TICKET_INVALID_MESSAGE,
    TicketInvalid,
    UpstreamUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message, **extra})


async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return _error(exc.status_code, "validation_error", exc.message, field=exc.field)


async def balance_error_handler(request: Request, exc: BalanceError) -> JSONResponse:
    snap = exc.snapshot
    return _error(
        402, "insufficient_balance", str(exc),
        balance={
            "address": snap.address,
            "balance": str(snap.balance),
            "required": str(snap.required),
            "coinType": snap.coin_type,
            "sufficient": snap.sufficient,
        },
    )


async def ticket_invalid_handler(request: Request, exc: TicketInvalid) -> JSONResponse:
    # same body for every cause
    return JSONResponse(status_code=401, content={"valid": False, "error": TICKET_INVALID_MESSAGE})


async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return _error(503, "upstream_unavailable", str(exc), service=exc.service)


async def execution_failed_handler(request: Request, exc: ExecutionFailed) -> JSONResponse:
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return _error(500, "execution_failed", str(exc))


async def not_found_handler(request: Request, exc: DAASError) -> JSONResponse:
    return _error(404, "not_found", str(exc))


async def session_forbidden_handler(request: Request, exc: SessionForbiddenError) -> JSONResponse:
    return _error(403, "forbidden", str(exc))


async def generic_error_handler(request: Request, exc: DAASError) -> JSONResponse:
    logger.error("%s %s: unhandled %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    return _error(500, "internal_error", "An unexpected error occurred")


def setup_error_handlers(app: FastAPI) -> None:
    # Starlette picks the handler of the closest class in the MRO
    app.add_exception_handler(ValidationError, validation_error_handler)
    app.add_exception_handler(BalanceError, balance_error_handler)
    app.add_exception_handler(TicketInvalid, ticket_invalid_handler)
    app.add_exception_handler(UpstreamUnavailable, upstream_unavailable_handler)
    app.add_exception_handler(ExecutionFailed, execution_failed_handler)
    app.add_exception_handler(SourceNotFoundError, not_found_handler)
    app.add_exception_handler(BundleNotFoundError, not_found_handler)
    app.add_exception_handler(SessionNotFoundError, not_found_handler)
    app.add_exception_handler(SessionForbiddenError, session_forbidden_handler)
    app.add_exception_handler(DAASError, generic_error_handler)
