from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import grpc

from frontend.rpc.connector import ConnectionTable

"""
RPC Clients (stubs par backend).

Rôle (fonctionnel) :
- Un stub par type de backend, construit sur le canal partagé de la ConnectionTable.
- Chaque méthode correspond à un RPC du contrat storefront (hipstershop.*).
- Les messages sont des dicts (noms de champs du contrat) sérialisés par un codec.

Notes :
- Codec par défaut : JSON UTF-8. Un codec protobuf peut être injecté à la place
  sans toucher aux handlers.
- Les stubs ne capturent aucune erreur : grpc.RpcError remonte au handler.
"""

Message = Dict[str, Any]


@dataclass(frozen=True)
class Codec:
    encode: Callable[[Message], bytes]
    decode: Callable[[bytes], Message]


def _json_encode(message: Message) -> bytes:
    return json.dumps(message, separators=(",", ":")).encode("utf-8")


def _json_decode(data: bytes) -> Message:
    if not data:
        return {}
    return json.loads(data.decode("utf-8"))


JSON_CODEC = Codec(encode=_json_encode, decode=_json_decode)


class BackendClient:
    """Base commune : construit les callables unaires `/service/Method`."""

    service: str = ""

    def __init__(self, channel: grpc.aio.Channel, codec: Codec = JSON_CODEC) -> None:
        self._channel = channel
        self._codec = codec
        self._methods: Dict[str, grpc.aio.UnaryUnaryMultiCallable] = {}

    def _method(self, name: str) -> grpc.aio.UnaryUnaryMultiCallable:
        method = self._methods.get(name)
        if method is None:
            method = self._channel.unary_unary(
                f"/{self.service}/{name}",
                request_serializer=self._codec.encode,
                response_deserializer=self._codec.decode,
            )
            self._methods[name] = method
        return method

    async def _call(self, name: str, request: Optional[Message] = None) -> Message:
        return await self._method(name)(request or {})


class ProductCatalogClient(BackendClient):
    service = "hipstershop.ProductCatalogService"

    async def list_products(self) -> List[Message]:
        res = await self._call("ListProducts")
        return list(res.get("products", []))

    async def get_product(self, product_id: str) -> Message:
        return await self._call("GetProduct", {"id": product_id})

    async def search_products(self, query: str) -> List[Message]:
        """Recherche catalogue (RPC du contrat, non utilisé par les handlers)."""
        res = await self._call("SearchProducts", {"query": query})
        return list(res.get("results", []))


class CurrencyClient(BackendClient):
    service = "hipstershop.CurrencyService"

    async def get_supported_currencies(self) -> List[str]:
        res = await self._call("GetSupportedCurrencies")
        return list(res.get("currency_codes", []))

    async def convert(self, money: Message, to_code: str) -> Message:
        return await self._call("Convert", {"from": money, "to_code": to_code})


class CartClient(BackendClient):
    service = "hipstershop.CartService"

    async def add_item(self, user_id: str, product_id: str, quantity: int) -> None:
        await self._call(
            "AddItem",
            {"user_id": user_id, "item": {"product_id": product_id, "quantity": quantity}},
        )

    async def get_cart(self, user_id: str) -> List[Message]:
        res = await self._call("GetCart", {"user_id": user_id})
        return list(res.get("items", []))

    async def empty_cart(self, user_id: str) -> None:
        await self._call("EmptyCart", {"user_id": user_id})


class RecommendationClient(BackendClient):
    service = "hipstershop.RecommendationService"

    async def list_recommendations(self, user_id: str, product_ids: List[str]) -> List[str]:
        res = await self._call("ListRecommendations", {"user_id": user_id, "product_ids": product_ids})
        return list(res.get("product_ids", []))


class CheckoutClient(BackendClient):
    service = "hipstershop.CheckoutService"

    async def place_order(
        self,
        user_id: str,
        user_currency: str,
        address: Message,
        email: str,
        credit_card: Message,
    ) -> Message:
        res = await self._call(
            "PlaceOrder",
            {
                "user_id": user_id,
                "user_currency": user_currency,
                "address": address,
                "email": email,
                "credit_card": credit_card,
            },
        )
        return res.get("order", {})


class ShippingClient(BackendClient):
    service = "hipstershop.ShippingService"

    async def get_quote(self, address: Message, items: List[Message]) -> Message:
        res = await self._call("GetQuote", {"address": address, "items": items})
        return res.get("cost_usd", {})

    async def ship_order(self, address: Message, items: List[Message]) -> str:
        """Expédition (RPC du contrat ; appelé par le checkout, pas par le frontend)."""
        res = await self._call("ShipOrder", {"address": address, "items": items})
        return str(res.get("tracking_id", ""))


class AdClient(BackendClient):
    service = "hipstershop.AdService"

    async def get_ads(self, context_keys: List[str]) -> List[Message]:
        res = await self._call("GetAds", {"context_keys": context_keys})
        return list(res.get("ads", []))


@dataclass(frozen=True)
class BackendClients:
    """Ensemble des stubs, un par backend (lecture seule)."""
    catalog: ProductCatalogClient
    currency: CurrencyClient
    cart: CartClient
    recommendation: RecommendationClient
    checkout: CheckoutClient
    shipping: ShippingClient
    ad: AdClient

    @classmethod
    def from_table(cls, table: ConnectionTable, codec: Codec = JSON_CODEC) -> "BackendClients":
        return cls(
            catalog=ProductCatalogClient(table.channel("catalog"), codec),
            currency=CurrencyClient(table.channel("currency"), codec),
            cart=CartClient(table.channel("cart"), codec),
            recommendation=RecommendationClient(table.channel("recommendation"), codec),
            checkout=CheckoutClient(table.channel("checkout"), codec),
            shipping=ShippingClient(table.channel("shipping"), codec),
            ad=AdClient(table.channel("ad"), codec),
        )
