"""
Tests for route spans and RPC client spans
"""

import grpc
import pytest
import pytest_asyncio
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind, StatusCode

from frontend.rpc.clients import JSON_CODEC, CartClient
from frontend.rpc.interceptors import tracing_interceptors


def _finished(ctx, exporter):
    ctx.tracer_provider.force_flush()
    return exporter.get_finished_spans()


async def test_route_span_named_after_route(client, ctx, span_exporter):
    response = await client.get("/cart")
    assert response.status_code == 200

    spans = _finished(ctx, span_exporter)
    routes = [s for s in spans if s.kind is SpanKind.SERVER]
    assert [s.name for s in routes] == ["viewCartHandler"]
    assert routes[0].attributes["http.method"] == "GET"


async def test_rpc_span_tag_matches_invoked_method(client, ctx, span_exporter, backend):
    await client.get("/")

    spans = _finished(ctx, span_exporter)
    rpc_spans = [s for s in spans if s.kind is SpanKind.CLIENT]
    assert rpc_spans

    for span in rpc_spans:
        assert span.attributes["rpc.call"] == span.name
        assert span.attributes["rpc.system"] == "grpc"
        assert span.name.startswith("/hipstershop.")

    assert sorted(s.name for s in rpc_spans) == sorted(backend.methods())


async def test_route_and_rpc_spans_share_trace(client, ctx, span_exporter):
    await client.get("/product/OLJCESPC7Z")

    spans = _finished(ctx, span_exporter)
    route = next(s for s in spans if s.name == "productHandler")
    rpc_spans = [s for s in spans if s.kind is SpanKind.CLIENT]

    assert rpc_spans
    for span in rpc_spans:
        assert span.context.trace_id == route.context.trace_id
        assert span.parent is not None
        assert span.parent.span_id == route.context.span_id


async def test_trace_context_propagated_to_backend(client, ctx, span_exporter, backend):
    await client.get("/cart")

    spans = _finished(ctx, span_exporter)
    route = next(s for s in spans if s.name == "viewCartHandler")
    trace_hex = format(route.context.trace_id, "032x")

    for method, _request, metadata in backend.calls:
        assert trace_hex in metadata["traceparent"], method


async def test_inbound_trace_context_is_continued(client, ctx, span_exporter):
    trace_hex = "4bf92f3577b34da6a3ce929d0e0e4736"
    await client.get("/", headers={"traceparent": f"00-{trace_hex}-00f067aa0ba902b7-01"})

    spans = _finished(ctx, span_exporter)
    assert spans
    assert {format(s.context.trace_id, "032x") for s in spans} == {trace_hex}


async def test_failed_rpc_span_records_status(client, ctx, span_exporter, backend):
    backend.failures["/hipstershop.CartService/EmptyCart"] = grpc.StatusCode.UNAVAILABLE
    response = await client.post("/cart/empty", follow_redirects=False)
    assert response.status_code == 503

    spans = _finished(ctx, span_exporter)
    failed = next(s for s in spans if s.name == "/hipstershop.CartService/EmptyCart")
    assert failed.status.status_code is StatusCode.ERROR
    assert failed.attributes["rpc.grpc.status_code"] == grpc.StatusCode.UNAVAILABLE.value[0]

    route = next(s for s in spans if s.name == "emptyCartHandler")
    assert route.status.status_code is StatusCode.ERROR


async def test_rpc_outside_request_has_own_trace(ctx, span_exporter, backend):
    client = CartClient(ctx.connections.channel("cart"))
    items = await client.get_cart("no-request")
    assert items == []

    spans = _finished(ctx, span_exporter)
    assert [s.name for s in spans] == ["/hipstershop.CartService/GetCart"]
    assert spans[0].parent is None
    assert spans[0].attributes["rpc.grpc.status_code"] == 0


class StreamingService(grpc.GenericRpcHandler):
    """Méthodes en flux (unaire-flux, flux-unaire, flux-flux)."""

    def service(self, handler_call_details):
        codec = {"request_deserializer": JSON_CODEC.decode, "response_serializer": JSON_CODEC.encode}
        method = handler_call_details.method
        if method == "/test.Streams/Count":
            return grpc.unary_stream_rpc_method_handler(self.count, **codec)
        if method == "/test.Streams/Broken":
            return grpc.unary_stream_rpc_method_handler(self.broken, **codec)
        if method == "/test.Streams/Total":
            return grpc.stream_unary_rpc_method_handler(self.total, **codec)
        if method == "/test.Streams/Echo":
            return grpc.stream_stream_rpc_method_handler(self.echo, **codec)
        return None

    async def count(self, request, context):
        for i in range(request["n"]):
            yield {"i": i}

    async def broken(self, request, context):
        yield {"i": 0}
        await context.abort(grpc.StatusCode.INTERNAL, "stream broken")

    async def total(self, request_iterator, context):
        n = 0
        async for request in request_iterator:
            n += request["v"]
        return {"n": n}

    async def echo(self, request_iterator, context):
        async for request in request_iterator:
            yield request


class TestStreamingSpans:
    @pytest.fixture
    def exporter(self):
        return InMemorySpanExporter()

    @pytest_asyncio.fixture
    async def channel(self, exporter):
        server = grpc.aio.server()
        server.add_generic_rpc_handlers((StreamingService(),))
        port = server.add_insecure_port("127.0.0.1:0")
        await server.start()

        provider = TracerProvider()
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        address = f"127.0.0.1:{port}"
        channel = grpc.aio.insecure_channel(
            address,
            interceptors=tracing_interceptors(provider.get_tracer("test"), address),
        )
        yield channel
        await channel.close()
        await server.stop(None)

    @staticmethod
    def _method(channel, kind, name):
        factory = getattr(channel, kind)
        return factory(
            f"/test.Streams/{name}",
            request_serializer=JSON_CODEC.encode,
            response_deserializer=JSON_CODEC.decode,
        )

    @staticmethod
    async def _values(*values):
        for v in values:
            yield {"v": v}

    @staticmethod
    def _only_span(exporter):
        (span,) = exporter.get_finished_spans()
        return span

    async def test_unary_stream(self, channel, exporter):
        count = self._method(channel, "unary_stream", "Count")
        items = [item async for item in count({"n": 3})]

        assert items == [{"i": 0}, {"i": 1}, {"i": 2}]
        span = self._only_span(exporter)
        assert span.name == "/test.Streams/Count"
        assert span.kind is SpanKind.CLIENT
        assert span.attributes["rpc.call"] == "/test.Streams/Count"
        assert span.attributes["rpc.grpc.status_code"] == 0
        assert span.status.status_code is not StatusCode.ERROR

    async def test_stream_unary(self, channel, exporter):
        total = self._method(channel, "stream_unary", "Total")
        result = await total(self._values(1, 3))

        assert result == {"n": 4}
        span = self._only_span(exporter)
        assert span.name == "/test.Streams/Total"
        assert span.attributes["rpc.call"] == "/test.Streams/Total"
        assert span.attributes["rpc.grpc.status_code"] == 0

    async def test_stream_stream(self, channel, exporter):
        echo = self._method(channel, "stream_stream", "Echo")
        items = [item async for item in echo(self._values(5, 6))]

        assert items == [{"v": 5}, {"v": 6}]
        span = self._only_span(exporter)
        assert span.name == "/test.Streams/Echo"
        assert span.attributes["rpc.call"] == "/test.Streams/Echo"
        assert span.attributes["rpc.grpc.status_code"] == 0

    async def test_aborted_stream_marks_span_error(self, channel, exporter):
        broken = self._method(channel, "unary_stream", "Broken")
        items = []
        with pytest.raises(grpc.RpcError):
            async for item in broken({}):
                items.append(item)

        assert items == [{"i": 0}]
        span = self._only_span(exporter)
        assert span.name == "/test.Streams/Broken"
        assert span.attributes["rpc.grpc.status_code"] == grpc.StatusCode.INTERNAL.value[0]
        assert span.status.status_code is StatusCode.ERROR
