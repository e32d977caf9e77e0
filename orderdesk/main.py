from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from orderdesk.api.routes import router as api_router
from orderdesk.core.config import get_settings
from orderdesk.core.errors import DomainError
from orderdesk.core.events import InternalEvent, event_bus
from orderdesk.logging import configure_logging
from orderdesk.metrics import observe_low_stock_alert
from orderdesk.middleware.correlation_id import CorrelationIdMiddleware
from orderdesk.middleware.request_logging import RequestLoggingMiddleware
from orderdesk.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()
logger = logging.getLogger("orderdesk.lifecycle")
error_logger = logging.getLogger("orderdesk.errors")
_subscriptions_registered = False


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system.started", extra={"event_name": event.name})


def _on_stock_posted(event: InternalEvent) -> None:
    payload: dict[str, Any] = event.payload.get("payload") or {}
    change_amount = payload.get("change_amount")
    new_stock = payload.get("new_stock")
    threshold = payload.get("low_stock_threshold")
    if not isinstance(change_amount, int) or not isinstance(new_stock, int) or not isinstance(threshold, int):
        return
    if change_amount < 0 and new_stock <= threshold:
        observe_low_stock_alert()
        logger.warning(
            "inventory.low_stock",
            extra={
                "event_name": event.name,
                "product_id": payload.get("product_id"),
                "new_stock": new_stock,
                "reason": payload.get("reason"),
            },
        )


def register_subscriptions() -> None:
    global _subscriptions_registered
    if _subscriptions_registered:
        return
    event_bus.subscribe("system.started", _on_system_started)
    event_bus.subscribe("inventory.stock_posted", _on_stock_posted)
    _subscriptions_registered = True


@asynccontextmanager
async def lifespan(app: FastAPI):
    register_subscriptions()
    event_bus.publish("system.started", {"service": "orderdesk"})
    yield


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in {"body", "query", "path"})
    message = str(first.get("msg", "invalid value"))
    return f"{location}: {message}" if location else message


app = FastAPI(title="OrderDesk API", version="0.1.0", lifespan=lifespan)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(DomainError)
async def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": _describe_validation_error(exc)})


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(SQLAlchemyError)
async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    error_logger.error(
        "request.database_error",
        exc_info=exc,
        extra={"method": request.method, "path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(status_code=500, content={"error": "Internal error"})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    error_logger.error(
        "request.unhandled_error",
        exc_info=exc,
        extra={"method": request.method, "path": request.url.path, "error": str(exc)},
    )
    return JSONResponse(status_code=500, content={"error": "Internal error"})


setup_otel(get_settings())

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
