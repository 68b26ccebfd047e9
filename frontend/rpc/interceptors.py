from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Optional

import grpc
from opentelemetry import propagate, trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from frontend.core.context import rpc_timeout

"""
RPC Interceptors (tracing).

Rôle (fonctionnel) :
- Intercepte chaque appel sortant (unaire et streaming) d’un canal grpc.aio.
- Pour chaque appel :
  - ouvre un span CLIENT nommé par la méthode complète, tag rpc.call = méthode,
  - propage le contexte de trace courant dans les metadata (traceparent),
  - applique la deadline restante de la requête HTTP si l’appel n’a pas de timeout,
  - enregistre le code de retour gRPC comme issue du span.

Notes :
- Les erreurs RPC sont ré-émises telles quelles : c’est au handler de les traiter.
- Pour les réponses en flux, le span reste ouvert jusqu’à la fin du flux.
"""

log = logging.getLogger("frontend.rpc")


def _method_name(details: grpc.aio.ClientCallDetails) -> str:
    method = details.method
    if isinstance(method, bytes):
        method = method.decode("utf-8")
    return method


def _split_method(full_method: str) -> tuple[str, str]:
    """'/pkg.Service/Method' -> ('pkg.Service', 'Method')."""
    parts = full_method.lstrip("/").split("/", 1)
    if len(parts) == 2:
        return parts[0], parts[1]
    return "", parts[0]


def _record_code(span: Span, code: grpc.StatusCode, details: Optional[str] = None) -> None:
    span.set_attribute("rpc.grpc.status_code", code.value[0])
    if code != grpc.StatusCode.OK:
        span.set_status(Status(StatusCode.ERROR, details or code.name))


class _TracingInterceptorBase:
    def __init__(self, tracer: trace.Tracer, peer: str = "") -> None:
        self._tracer = tracer
        self._peer = peer

    def _start_span(self, details: grpc.aio.ClientCallDetails) -> Span:
        method = _method_name(details)
        service, rpc_method = _split_method(method)
        span = self._tracer.start_span(method, kind=SpanKind.CLIENT)
        span.set_attribute("rpc.call", method)
        span.set_attribute("rpc.system", "grpc")
        span.set_attribute("rpc.service", service)
        span.set_attribute("rpc.method", rpc_method)
        if self._peer:
            span.set_attribute("net.peer.name", self._peer)
        return span

    def _call_details(self, details: grpc.aio.ClientCallDetails, span: Span) -> grpc.aio.ClientCallDetails:
        metadata = grpc.aio.Metadata(*tuple(details.metadata or ()))
        carrier: dict[str, str] = {}
        propagate.inject(carrier, context=trace.set_span_in_context(span))
        for key, value in carrier.items():
            metadata.add(key, value)

        timeout = details.timeout
        if timeout is None:
            timeout = rpc_timeout()

        return grpc.aio.ClientCallDetails(
            method=details.method,
            timeout=timeout,
            metadata=metadata,
            credentials=details.credentials,
            wait_for_ready=details.wait_for_ready,
        )

    async def _unary_response(self, span: Span, invoke: Callable[[], Any]) -> Any:
        call = None
        try:
            with trace.use_span(span, end_on_exit=False):
                call = await invoke()
            code = await call.code()
            _record_code(span, code, await call.details())
            return call
        except asyncio.CancelledError:
            # Requête abandonnée : le RPC est annulé côté serveur aussi
            if call is not None:
                call.cancel()
            span.set_status(Status(StatusCode.ERROR, "cancelled"))
            raise
        except grpc.aio.AioRpcError as exc:
            _record_code(span, exc.code(), exc.details())
            span.record_exception(exc)
            raise
        except BaseException as exc:
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise
        finally:
            span.end()

    async def _stream_response(self, span: Span, call: Any) -> AsyncIterator[Any]:
        try:
            async for response in call:
                yield response
            _record_code(span, await call.code())
        except asyncio.CancelledError:
            call.cancel()
            span.set_status(Status(StatusCode.ERROR, "cancelled"))
            raise
        except grpc.aio.AioRpcError as exc:
            _record_code(span, exc.code(), exc.details())
            span.record_exception(exc)
            raise
        except BaseException as exc:
            span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
            raise
        finally:
            span.end()


class TracingUnaryUnaryInterceptor(_TracingInterceptorBase, grpc.aio.UnaryUnaryClientInterceptor):
    async def intercept_unary_unary(self, continuation, client_call_details, request):
        span = self._start_span(client_call_details)
        details = self._call_details(client_call_details, span)
        return await self._unary_response(span, lambda: continuation(details, request))


class TracingStreamUnaryInterceptor(_TracingInterceptorBase, grpc.aio.StreamUnaryClientInterceptor):
    async def intercept_stream_unary(self, continuation, client_call_details, request_iterator):
        span = self._start_span(client_call_details)
        details = self._call_details(client_call_details, span)
        return await self._unary_response(span, lambda: continuation(details, request_iterator))


class TracingUnaryStreamInterceptor(_TracingInterceptorBase, grpc.aio.UnaryStreamClientInterceptor):
    async def intercept_unary_stream(self, continuation, client_call_details, request):
        span = self._start_span(client_call_details)
        details = self._call_details(client_call_details, span)
        try:
            call = await continuation(details, request)
        except BaseException:
            span.set_status(Status(StatusCode.ERROR))
            span.end()
            raise
        return self._stream_response(span, call)


class TracingStreamStreamInterceptor(_TracingInterceptorBase, grpc.aio.StreamStreamClientInterceptor):
    async def intercept_stream_stream(self, continuation, client_call_details, request_iterator):
        span = self._start_span(client_call_details)
        details = self._call_details(client_call_details, span)
        try:
            call = await continuation(details, request_iterator)
        except BaseException:
            span.set_status(Status(StatusCode.ERROR))
            span.end()
            raise
        return self._stream_response(span, call)


def tracing_interceptors(tracer: trace.Tracer, peer: str = "") -> list[grpc.aio.ClientInterceptor]:
    """Les 4 intercepteurs (unaire + streaming) à installer sur un canal."""
    return [
        TracingUnaryUnaryInterceptor(tracer, peer),
        TracingUnaryStreamInterceptor(tracer, peer),
        TracingStreamUnaryInterceptor(tracer, peer),
        TracingStreamStreamInterceptor(tracer, peer),
    ]
