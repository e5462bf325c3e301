import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from punch_audit.db import engine
from punch_audit.errors import ApiError, ConfigurationError, error_response, get_request_id
from punch_audit.logging_utils import setup_json_logging
from punch_audit.routers import attendance, discrepancies
from punch_audit.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from punch_audit.settings import get_attendance_rules, get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level, service=settings.app_name)
logger = logging.getLogger("punch_audit.request")
startup_logger = logging.getLogger("punch_audit.startup")

HTTP_ERROR_CODES = {
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    413: "PAYLOAD_TOO_LARGE",
}

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-Id") or str(uuid4())

    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request.state.request_id
        return response
    finally:
        logger.info(
            "request_complete",
            extra={
                "request_id": request.state.request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "actor_id": getattr(request.state, "actor_id", None),
                "member_employee_id": getattr(request.state, "employee_id", None),
                "batch_id": getattr(request.state, "batch_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("api_error", extra={"request_id": get_request_id(request), "code": exc.code})
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


@app.exception_handler(ConfigurationError)
async def handle_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    # Rule configuration is deployment state, so the caller cannot fix it.
    logger.error(
        "rule_configuration_invalid",
        extra={"request_id": get_request_id(request), "field": exc.field, "detail": str(exc)},
    )
    return error_response(
        request,
        status_code=500,
        code="CONFIGURATION_ERROR",
        message=str(exc),
        details={"field": exc.field} if exc.field else None,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in item.get("loc", ())) for item in exc.errors()]
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message="Request payload is invalid.",
        details={"fields": fields},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={"request_id": get_request_id(request), "method": request.method, "path": request.url.path},
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)
app.include_router(discrepancies.router)


@app.on_event("startup")
async def validate_rule_configuration() -> None:
    # Invalid rules abort start-up instead of surfacing on the first detection run.
    rules = get_attendance_rules()
    app.state.attendance_rules = rules
    startup_logger.info(
        "rule_configuration_loaded",
        extra={
            "workday_start_minute": rules.workday_start_minute,
            "workday_end_minute": rules.workday_end_minute,
            "min_presence_hours": rules.min_presence_hours,
            "near_zero_presence_hours": rules.near_zero_presence_hours,
            "material_log_minutes": rules.material_log_minutes,
            "standard_shift_hours": rules.standard_shift_hours,
            "shift_windows": [window.name for window in rules.shift_windows],
            "timezone": str(rules.timezone),
        },
    )


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        startup_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    startup_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult | None = getattr(app.state, "schema_guard_result", None)
    if schema_guard_result is None:
        schema_guard_result = SchemaGuardResult(
            ok=False,
            checked_at_utc=datetime.now(timezone.utc),
            issues=["SCHEMA_GUARD_NOT_RUN"],
        )
    return {
        "status": "ok" if schema_guard_result.ok else "degraded",
        "schema_guard": schema_guard_result.to_dict(),
    }
