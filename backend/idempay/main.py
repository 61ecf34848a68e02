import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from idempay.api.deps import get_dispatcher, get_settings
from idempay.api.routes.payments import router as payments_router
from idempay.api.routes.webhooks import router as webhooks_router
from idempay.config import configure_logging, settings
from idempay.db.session import async_session
from idempay.exceptions import PaymentError
from idempay.schemas.errors import error_body
from idempay.services.cleanup_service import start_cleanup_task
from idempay.services.payment_service import PaymentService

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class JsonBodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Rejects oversized JSON bodies before they are read.

    A JSON body without Content-Length (chunked) is rejected too, since its
    size cannot be checked up front.
    """

    def __init__(self, app, max_bytes: int):
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        content_type = request.headers.get("content-type", "")
        if request.method in ("POST", "PUT", "PATCH") and "json" in content_type.lower():
            content_length = request.headers.get("content-length")
            if content_length is None or not content_length.isdigit():
                return self._too_large(request, "Content-Length header is required for JSON requests")
            if int(content_length) > self.max_bytes:
                return self._too_large(request, f"Request body exceeds {self.max_bytes} bytes limit")
        return await call_next(request)

    @staticmethod
    def _too_large(request: Request, message: str) -> JSONResponse:
        return JSONResponse(
            status_code=413,
            content=error_body("PAYLOAD_TOO_LARGE", message, _get_request_id(request)),
        )


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    service = PaymentService(async_session, get_dispatcher(), get_settings())
    cleanup_task = start_cleanup_task(service)
    yield
    if cleanup_task is not None:
        cleanup_task.cancel()


app = FastAPI(title="idempay", lifespan=lifespan)

app.add_middleware(JsonBodySizeLimitMiddleware, max_bytes=settings.max_json_bytes)
app.add_middleware(RequestIDMiddleware)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(
            exc.code,
            exc.message,
            _get_request_id(request),
            exc.details,
            retryable=exc.retryable,
        ),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = []
    for err in exc.errors():
        clean = {
            "type": err.get("type"),
            "loc": list(err.get("loc", [])),
            "msg": err.get("msg"),
        }
        errors.append(clean)
    return JSONResponse(
        status_code=422,
        content=error_body(
            "VALIDATION_ERROR",
            "Request validation failed",
            _get_request_id(request),
            {"errors": errors},
        ),
    )


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception")
    return JSONResponse(
        status_code=500,
        content=error_body(
            "INTERNAL_ERROR", "An internal error occurred", _get_request_id(request)
        ),
    )


app.include_router(payments_router)
app.include_router(webhooks_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
