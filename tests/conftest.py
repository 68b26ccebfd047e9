"""
Pytest fixtures for frontend tests

- FakeStorefront : serveur grpc.aio en process qui répond au contrat des 7 backends
- ctx / app / client : démarrage complet (Startup) contre ce serveur
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import grpc
import httpx
import pytest
import pytest_asyncio
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from frontend.bootstrap import Startup
from frontend.core.settings import BACKEND_ENV_VARS
from frontend.main import create_app

PRODUCT = {
    "id": "OLJCESPC7Z",
    "name": "Sunglasses",
    "description": "Add a modern touch to your outfits.",
    "picture": "/static/img/products/sunglasses.jpg",
    "price_usd": {"currency_code": "USD", "units": 19, "nanos": 990000000},
    "categories": ["accessories"],
}


def _encode(message: Dict[str, Any]) -> bytes:
    return json.dumps(message).encode("utf-8")


def _decode(data: bytes) -> Dict[str, Any]:
    return json.loads(data.decode("utf-8")) if data else {}


def _convert(req: Dict[str, Any]) -> Dict[str, Any]:
    money = req["from"]
    return {"currency_code": req["to_code"], "units": money["units"] * 2, "nanos": 0}


def default_responses() -> Dict[str, Any]:
    return {
        "/hipstershop.CurrencyService/GetSupportedCurrencies": {"currency_codes": ["USD", "EUR", "JPY", "XYZ"]},
        "/hipstershop.CurrencyService/Convert": _convert,
        "/hipstershop.ProductCatalogService/ListProducts": {"products": [PRODUCT]},
        "/hipstershop.ProductCatalogService/GetProduct": lambda req: {**PRODUCT, "id": req["id"]},
        "/hipstershop.ProductCatalogService/SearchProducts": {"results": [PRODUCT]},
        "/hipstershop.CartService/GetCart": lambda req: {"user_id": req["user_id"], "items": []},
        "/hipstershop.CartService/AddItem": {},
        "/hipstershop.CartService/EmptyCart": {},
        "/hipstershop.RecommendationService/ListRecommendations": {"product_ids": ["66VCHSJNUP"]},
        "/hipstershop.ShippingService/GetQuote": {
            "cost_usd": {"currency_code": "USD", "units": 8, "nanos": 990000000}
        },
        "/hipstershop.ShippingService/ShipOrder": {"tracking_id": "TRK-1"},
        "/hipstershop.CheckoutService/PlaceOrder": {
            "order": {
                "order_id": "ORDER-1",
                "shipping_tracking_id": "TRK-1",
                "shipping_cost": {"currency_code": "USD", "units": 8, "nanos": 990000000},
                "items": [
                    {
                        "item": {"product_id": "OLJCESPC7Z", "quantity": 2},
                        "cost": {"currency_code": "USD", "units": 19, "nanos": 990000000},
                    }
                ],
            }
        },
        "/hipstershop.AdService/GetAds": {"ads": [{"redirect_url": "/product/OLJCESPC7Z", "text": "Sunglasses for sale"}]},
    }


class FakeStorefront(grpc.GenericRpcHandler):
    """Répond à toutes les méthodes du contrat, enregistre les appels."""

    def __init__(self) -> None:
        self.responses: Dict[str, Any] = default_responses()
        self.failures: Dict[str, grpc.StatusCode] = {}
        self.delays: Dict[str, float] = {}
        self.calls: List[Tuple[str, Dict[str, Any], Dict[str, str]]] = []

    def methods(self) -> List[str]:
        return [call[0] for call in self.calls]

    def requests_for(self, method: str) -> List[Dict[str, Any]]:
        return [call[1] for call in self.calls if call[0] == method]

    def service(self, handler_call_details):
        method = handler_call_details.method

        async def behavior(request, context):
            metadata = {key: value for key, value in (context.invocation_metadata() or ())}
            self.calls.append((method, request, metadata))
            if method in self.delays:
                await asyncio.sleep(self.delays[method])
            if method in self.failures:
                await context.abort(self.failures[method], "fake failure")
            response = self.responses.get(method, {})
            return response(request) if callable(response) else response

        return grpc.unary_unary_rpc_method_handler(
            behavior,
            request_deserializer=_decode,
            response_serializer=_encode,
        )


@pytest_asyncio.fixture
async def backend():
    fake = FakeStorefront()
    server = grpc.aio.server()
    server.add_generic_rpc_handlers((fake,))
    port = server.add_insecure_port("127.0.0.1:0")
    await server.start()
    fake.address = f"127.0.0.1:{port}"
    yield fake
    await server.stop(None)


def backend_overrides(address: str) -> Dict[str, str]:
    return {env: address for env in BACKEND_ENV_VARS.values()}


@pytest.fixture
def clear_backend_env(monkeypatch):
    for env in BACKEND_ENV_VARS.values():
        monkeypatch.delenv(env, raising=False)


@pytest.fixture
def span_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def static_dir(tmp_path):
    d = tmp_path / "static"
    (d / "styles").mkdir(parents=True)
    (d / "styles" / "styles.css").write_text("body { margin: 0; }")
    return d


@pytest.fixture
def settings_overrides(static_dir) -> Dict[str, Any]:
    return {"STATIC_DIR": str(static_dir), "RPC_CONNECT_TIMEOUT_S": 2.0}


@pytest_asyncio.fixture
async def ctx(backend, span_exporter, settings_overrides):
    startup = Startup(
        env_file=None,
        exporter=span_exporter,
        **backend_overrides(backend.address),
        **settings_overrides,
    )
    context = await startup.run()
    yield context
    await context.aclose()


@pytest.fixture
def app(ctx):
    return create_app(ctx)


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


def cookie_header(response: httpx.Response, name: str) -> Optional[str]:
    """Retourne l’en-tête Set-Cookie brut pour `name` (ou None)."""
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(f"{name}="):
            return header
    return None


def cookie_value(response: httpx.Response, name: str) -> Optional[str]:
    header = cookie_header(response, name)
    if header is None:
        return None
    return header.split(";", 1)[0].split("=", 1)[1].strip('"')


def spans_by_name(exporter: InMemorySpanExporter, predicate: Callable[[str], bool]):
    return [s for s in exporter.get_finished_spans() if predicate(s.name)]
