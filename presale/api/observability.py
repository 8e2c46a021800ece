import json
import logging
import os
import re
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
proposal_id_var: ContextVar[str] = ContextVar("proposal_id", default="")
stage_var: ContextVar[str] = ContextVar("stage", default="")

_PROPOSAL_PATH = re.compile(
    r"^/presale/proposals/(?P<proposal_id>[^/]+)(?:/stages/(?P<stage>[^/]+))?"
)
_COLLECTION_SEGMENTS = {"import"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying the request and proposal context."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "service": os.getenv("SERVICE_NAME", "presale-workflow"),
            "environment": os.getenv("ENVIRONMENT", "local"),
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": correlation_id_var.get() or None,
            "request_id": request_id_var.get() or None,
            "trace_id": trace_id_var.get() or None,
            "proposal_id": proposal_id_var.get() or None,
            "stage": stage_var.get() or None,
        }
        if hasattr(record, "extra_fields") and isinstance(record.extra_fields, dict):
            payload.update(record.extra_fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps({k: v for k, v in payload.items() if v is not None}, default=str)


def _trace_id_from(traceparent: str) -> str:
    parts = traceparent.split("-")
    if len(parts) >= 4 and len(parts[1]) == 32:
        return parts[1]
    return uuid4().hex


def proposal_context_from_path(path: str) -> tuple[Optional[str], Optional[str]]:
    """Proposal id and stage addressed by a workflow URL, when there is one."""
    match = _PROPOSAL_PATH.match(path)
    if match is None or match.group("proposal_id") in _COLLECTION_SEGMENTS:
        return None, None
    return match.group("proposal_id"), match.group("stage")


def setup_observability(app: FastAPI) -> None:
    root_logger = logging.getLogger()
    if root_logger.hasHandlers():
        root_logger.handlers.clear()
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    Instrumentator().instrument(app).expose(app)

    @app.middleware("http")
    async def _workflow_request_context_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        logger = logging.getLogger("presale.access")
        started = time.perf_counter()

        correlation_id = request.headers.get("X-Correlation-Id") or f"corr_{uuid4().hex[:12]}"
        request_id = request.headers.get("X-Request-Id") or f"req_{uuid4().hex[:12]}"
        trace_id = _trace_id_from(request.headers.get("traceparent", ""))
        proposal_id, stage = proposal_context_from_path(request.url.path)

        tokens = [
            (correlation_id_var, correlation_id_var.set(correlation_id)),
            (request_id_var, request_id_var.set(request_id)),
            (trace_id_var, trace_id_var.set(trace_id)),
            (proposal_id_var, proposal_id_var.set(proposal_id or "")),
            (stage_var, stage_var.set(stage or "")),
        ]
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
        finally:
            logger.info(
                "request.completed",
                extra={
                    "extra_fields": {
                        "http_method": request.method,
                        "endpoint": request.url.path,
                        "status_code": status_code,
                        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                    }
                },
            )
            for var, token in reversed(tokens):
                var.reset(token)

        response.headers["X-Correlation-Id"] = response.headers.get(
            "X-Correlation-Id", correlation_id
        )
        response.headers["X-Request-Id"] = request_id
        response.headers["X-Trace-Id"] = trace_id
        response.headers["traceparent"] = f"00-{trace_id}-0000000000000001-01"
        if proposal_id:
            response.headers["X-Proposal-Id"] = proposal_id
        return response
