from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

from opsdesk.api.routes import router as api_router
from opsdesk.core.config import get_settings
from opsdesk.events.api import error_response
from opsdesk.logging import configure_logging
from opsdesk.middleware.correlation_id import CorrelationIdMiddleware
from opsdesk.middleware.request_logging import RequestLoggingMiddleware
from opsdesk.otel import get_fastapi_server_request_hook, setup_otel


configure_logging()

app = FastAPI(title="Opsdesk API", version="0.1.0")
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.include_router(api_router)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    codes = {401: "unauthorized", 403: "forbidden", 404: "not_found"}
    response = error_response(
        request,
        status_code=exc.status_code,
        code=codes.get(exc.status_code, "http_error"),
        message=str(exc.detail),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    location = errors[0].get("loc", ()) if errors else ()
    names = [part for part in location if isinstance(part, str) and part not in ("body", "query", "path")]
    return error_response(
        request,
        status_code=400,
        code="validation_error",
        message="request is malformed",
        details={"field": ".".join(names) or "body"},
    )


settings = get_settings()
if settings.otel_enabled:
    setup_otel("opsdesk-api", True)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())

