from __future__ import annotations

import functools
import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import Request
from opentelemetry import propagate, trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.trace import SpanKind, Status, StatusCode

from frontend.core.settings import Settings

"""
Core Tracing (OpenTelemetry).

Rôle (fonctionnel) :
- Construit le TracerProvider du process (ressource service.name = frontend).
- Branche l’exporter configuré (aucun / console / OTLP) : c’est le “sink”
  consommé par l’infrastructure de traces.
- Fournit traced_route() : enveloppe un handler d’orchestration dans un span
  SERVER dont le nom est l’identifiant stable de la route (homeHandler, ...).

Notes :
- Le contexte parent est extrait des headers entrants (W3C traceparent) :
  une trace démarrée en amont se prolonge dans le frontend puis dans les RPC.
- Le provider n’est pas enregistré globalement : il vit dans l’AppContext.
"""

log = logging.getLogger("frontend.tracing")

TRACER_NAME = "frontend"

Handler = Callable[..., Awaitable[Any]]


def _build_exporter(settings: Settings) -> Optional[SpanExporter]:
    if settings.TRACE_EXPORTER == "console":
        return ConsoleSpanExporter()
    if settings.TRACE_EXPORTER == "otlp":
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter

        return OTLPSpanExporter(endpoint=settings.OTLP_ENDPOINT, insecure=True)
    return None


def setup_tracing(settings: Settings, exporter: Optional[SpanExporter] = None) -> TracerProvider:
    """
    Crée le TracerProvider.

    - exporter explicite (tests) prioritaire sur TRACE_EXPORTER.
    - TRACE_EXPORTER=none : les spans sont créés (contexte propagé) mais pas exportés.
    """
    provider = TracerProvider(resource=Resource.create({"service.name": settings.SERVICE_NAME}))

    exporter = exporter or _build_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(BatchSpanProcessor(exporter))
        log.info("tracing enabled", extra={"state": settings.TRACE_EXPORTER})
    return provider


def _find_request(args: tuple, kwargs: dict) -> Optional[Request]:
    for value in (*args, *kwargs.values()):
        if isinstance(value, Request):
            return value
    return None


def traced_route(name: str, handler: Handler) -> Handler:
    """
    Enveloppe un handler dans un span SERVER nommé `name`.

    - Le handler doit déclarer un paramètre `request: Request`.
    - La signature est conservée (functools.wraps) pour l’injection FastAPI.
    """

    @functools.wraps(handler)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        request = _find_request(args, kwargs)
        if request is None:
            return await handler(*args, **kwargs)

        tracer = request.app.state.ctx.tracer
        parent = propagate.extract(request.headers)
        with tracer.start_as_current_span(
            name,
            context=parent,
            kind=SpanKind.SERVER,
            record_exception=True,
            set_status_on_exception=True,
        ) as span:
            request.state.trace_id = format(span.get_span_context().trace_id, "032x")
            span.set_attribute("http.method", request.method)
            span.set_attribute("http.target", request.url.path)
            session = getattr(request.state, "session", None)
            if session is not None:
                span.set_attribute("session.id", session.session_id)

            response = await handler(*args, **kwargs)

            status_code = getattr(response, "status_code", None)
            if status_code is not None:
                span.set_attribute("http.status_code", status_code)
                if status_code >= 500:
                    span.set_status(Status(StatusCode.ERROR))
            return response

    return wrapper


def get_tracer(provider: TracerProvider) -> trace.Tracer:
    return provider.get_tracer(TRACER_NAME)
