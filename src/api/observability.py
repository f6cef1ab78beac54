import json
import logging
import os
import time
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Awaitable, Callable, Optional
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from prometheus_fastapi_instrumentator import Instrumentator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
tenant_slug_var: ContextVar[str] = ContextVar("tenant_slug", default="")

# Query parameters that carry capabilities or shared secrets.
REDACTED_QUERY_PARAMS = frozenset({"token", "secret"})
UNMETERED_PATHS = ("/health", "/metrics")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", "proposal-signing-portal"),
            "environment": os.getenv("ENVIRONMENT", "local"),
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get() or None,
            "request_id": request_id_var.get() or None,
            "trace_id": trace_id_var.get() or None,
            "tenant": tenant_slug_var.get() or None,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        return json.dumps({k: v for k, v in payload.items() if v is not None})


def redacted_query(request: Request) -> Optional[str]:
    if not request.query_params:
        return None
    return "&".join(
        f"{key}=***" if key.lower() in REDACTED_QUERY_PARAMS else f"{key}={value}"
        for key, value in request.query_params.multi_items()
    )


def _trace_id_from(traceparent: str) -> str:
    parts = traceparent.split("-") if traceparent else []
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return uuid4().hex


def setup_observability(app: FastAPI) -> None:
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    Instrumentator(excluded_handlers=list(UNMETERED_PATHS)).instrument(app).expose(app)

    @app.middleware("http")
    async def _request_observability_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        logger = logging.getLogger("http.access")
        started = time.perf_counter()

        correlation_id = request.headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}"
        request_id = request.headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}"
        trace_id = _trace_id_from(request.headers.get("traceparent", ""))

        correlation_token = correlation_id_var.set(correlation_id)
        request_token = request_id_var.set(request_id)
        trace_token = trace_id_var.set(trace_id)
        tenant_token = tenant_slug_var.set(request.query_params.get("tenant_slug", "").strip())
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
        finally:
            if request.url.path not in UNMETERED_PATHS:
                latency_ms = round((time.perf_counter() - started) * 1000, 2)
                logger.log(
                    logging.WARNING if status_code >= 500 else logging.INFO,
                    "request.completed",
                    extra={
                        "extra_fields": {
                            "http_method": request.method,
                            "endpoint": request.url.path,
                            "query": redacted_query(request),
                            "status_code": status_code,
                            "latency_ms": latency_ms,
                        }
                    },
                )
            correlation_id_var.reset(correlation_token)
            request_id_var.reset(request_token)
            trace_id_var.reset(trace_token)
            tenant_slug_var.reset(tenant_token)

        response.headers["X-Correlation-Id"] = response.headers.get(
            "X-Correlation-Id", correlation_id
        )
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Trace-Id"] = trace_id
        response.headers["traceparent"] = f"00-{trace_id}-0000000000000001-01"
        return response
