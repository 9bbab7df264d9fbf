from __future__ import annotations

import json
import logging
import re
import time
import uuid
from datetime import datetime, timezone

STRUCTURED_FIELDS = (
    "request_id",
    "path",
    "method",
    "status_code",
    "error_code",
    "duration_ms",
    "remote_addr",
    "order_id",
    "invoice_id",
    "amount",
    "status",
    "count",
    "key",
)

# Client-supplied ids are echoed back and stored on audit rows.
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logs; known `extra` fields are lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = str(value) if not isinstance(value, (int, float, bool)) else value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def incoming_request_id(request) -> str:
    candidate = (request.headers.get("X-Request-ID") or "").strip()
    if _REQUEST_ID_RE.match(candidate):
        return candidate
    return str(uuid.uuid4())


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLogMiddleware:
    """Tag each request with an id and write one access log line per response.

    Error responses carry the envelope's `code`, so failed billing operations
    can be grouped by cause in the logs.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request_id = incoming_request_id(request)
        request.request_id = request_id

        response = self.get_response(request)

        data = getattr(response, "data", None)
        error_code = data.get("code") if response.status_code >= 400 and isinstance(data, dict) else None
        duration_ms = round((time.perf_counter() - started_at) * 1000, 2)
        self.logger.log(
            _level_for(response.status_code),
            "request_completed",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "error_code": error_code,
                "duration_ms": duration_ms,
                "remote_addr": request.META.get("REMOTE_ADDR"),
            },
        )
        response["X-Request-ID"] = request_id
        return response
