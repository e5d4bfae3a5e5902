"""
Application factory for the settlement API.

Kernel errors map to HTTP by category:

    ValidationError  -> 400
    NotFoundError    -> 404
    ForbiddenError   -> 403
    ConflictError    -> 409
    TransactionError -> 503

with body ``{"error": <code>, "message": <text>}``.  Every response echoes
the ``X-Request-Id`` it was called with (or a fresh one), and the id is
bound as ``correlation_id`` on the logs emitted while handling it.
"""

from uuid import uuid4

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from settlement_kernel import __version__
from settlement_kernel.config import Settings, load_settings
from settlement_kernel.db.engine import get_engine, init_engine_from_url
from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SettlementKernelError,
    TransactionError,
    ValidationError,
)
from settlement_kernel.logging_config import LogContext, configure_logging, get_logger
from settlement_kernel.services.notifier import LoggingNotifier, Notifier
from settlement_api.routers import payments, settlements
from settlement_api.schemas import ErrorResponse

logger = get_logger("api")

CORRELATION_HEADER = "X-Request-Id"

_STATUS_BY_CATEGORY: tuple[tuple[type[SettlementKernelError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TransactionError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: SettlementKernelError) -> int:
    for category, code in _STATUS_BY_CATEGORY:
        if isinstance(exc, category):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _kernel_error_handler(request: Request, exc: SettlementKernelError) -> JSONResponse:
    body = ErrorResponse(
        error=exc.code,
        message=str(exc),
        field=exc.field if isinstance(exc, ValidationError) else None,
        current_state=exc.current_state if isinstance(exc, ConflictError) else None,
    )

    code = status_for(exc)
    log = logger.error if code >= 500 else logger.info
    log(
        "request_rejected",
        extra={
            "path": request.url.path,
            "method": request.method,
            "status_code": code,
            "error_code": exc.code,
        },
    )
    return JSONResponse(status_code=code, content=body.model_dump(exclude_none=True))


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "invalid request")
    body = ErrorResponse(
        error=ValidationError.code,
        message=f"{location}: {message}" if location else message,
        field=location or None,
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=body.model_dump(exclude_none=True),
    )


async def _store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "store_error",
        extra={"path": request.url.path, "method": request.method},
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(
            error=TransactionError.code, message="Store unavailable, retry"
        ).model_dump(exclude_none=True),
    )


def create_app(
    settings: Settings | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
    init_engine: bool = True,
) -> FastAPI:
    """
    Build the API.

    Args:
        settings: Runtime settings; ``load_settings()`` when omitted.
        clock: Time source for the services.
        notifier: Receives settlement notifications after commit.
        init_engine: Initialize the kernel engine from ``settings.database_url``
            unless one is already initialized.  Tests pass False and
            override ``get_session``.
    """
    settings = settings or load_settings()
    configure_logging(level=settings.log_level)

    if init_engine:
        try:
            get_engine()
        except RuntimeError:
            init_engine_from_url(
                settings.database_url,
                echo=settings.sql_echo,
                pool_size=settings.pool_size,
            )

    app = FastAPI(title="Settlement API", version=__version__)
    app.state.settings = settings
    app.state.clock = clock or SystemClock()
    app.state.notifier = notifier or LoggingNotifier()

    app.add_exception_handler(SettlementKernelError, _kernel_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, _store_error_handler)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid4())
        with LogContext.bind(correlation_id=correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    app.include_router(payments.router)
    app.include_router(settlements.router)

    @app.get("/health", tags=["health"])
    def health() -> dict:
        return {"status": "ok", "version": __version__}

    return app
