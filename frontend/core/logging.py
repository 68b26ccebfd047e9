from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from opentelemetry import trace

from .context import get_request_id, get_session

"""
Core Logging.

Rôle (fonctionnel) :
- Configure un logging JSON uniforme pour tout le frontend (app + uvicorn).
- Champs stables : timestamp (RFC 3339 UTC), severity, message.
- Injecte request_id, session et trace_id/span_id dans chaque log afin de
  corréler une requête entrante avec les traces des RPC qu’elle déclenche.
- Supporte des “extras” structurés (http.req.*, http.resp.*, backend, rpc.*).

Notes :
- 1 event = 1 ligne JSON sur stdout (agrégateurs de logs).
- Les extras sont passés via logger.info(..., extra={...}).
"""

EXTRA_KEYS = (
    "http.req.method",
    "http.req.path",
    "http.req.id",
    "http.resp.status",
    "http.resp.took_ms",
    "session",
    "backend",
    "address",
    "rpc.method",
    "rpc.code",
    "currency",
    "state",
)


class RequestContextFilter(logging.Filter):
    """Ajoute request_id, session et identifiants de trace au LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        if not hasattr(record, "session"):
            ctx = get_session()
            if ctx is not None:
                record.session = ctx.session_id

        span_ctx = trace.get_current_span().get_span_context()
        if span_ctx.is_valid:
            record.trace_id = format(span_ctx.trace_id, "032x")
            record.span_id = format(span_ctx.span_id, "016x")
        return True


class JsonFormatter(logging.Formatter):
    """Formateur JSON (champs timestamp / severity / message)."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: dict[str, Any] = {
            "timestamp": ts.isoformat(timespec="microseconds").replace("+00:00", "Z"),
            "severity": record.levelname.lower(),
            "message": record.getMessage(),
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
        }

        for key in ("trace_id", "span_id", *EXTRA_KEYS):
            if hasattr(record, key):
                payload[key] = getattr(record, key)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """
    Initialise le logging global (root) en JSON et aligne uvicorn dessus.

    - Nettoie les handlers existants pour éviter les doublons (--reload).
    - StreamHandler stdout + JsonFormatter + RequestContextFilter.
    """
    lvl = level.upper()

    root = logging.getLogger()
    root.setLevel(lvl)

    if root.handlers:
        root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logger = logging.getLogger(name)
        logger.handlers = root.handlers
        logger.setLevel(lvl)
        logger.propagate = False
