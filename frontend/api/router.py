from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple

from fastapi import APIRouter

from frontend.api import shop
from frontend.api.health import router as health_router
from frontend.core.tracing import traced_route

"""
Router principal.

Rôle (fonctionnel) :
- Table statique (verbe, chemin) -> handler d’orchestration, construite une fois.
- Chaque route d’orchestration est enveloppée dans un span nommé par son
  identifiant stable (agrégation des traces par opération).
- Inclut les endpoints fixes (robots.txt, _healthz) qui n’appellent aucun backend.

Notes :
- Les fichiers statiques (/static/*) sont montés par l’application (main.py).
"""


@dataclass(frozen=True)
class Route:
    path: str
    methods: Tuple[str, ...]
    name: str
    handler: Callable[..., Awaitable[Any]]


ROUTES: Tuple[Route, ...] = (
    Route("/", ("GET", "HEAD"), "homeHandler", shop.home),
    Route("/product/{id}", ("GET", "HEAD"), "productHandler", shop.product),
    Route("/cart", ("GET", "HEAD"), "viewCartHandler", shop.view_cart),
    Route("/cart", ("POST",), "addToCartHandler", shop.add_to_cart),
    Route("/cart/empty", ("POST",), "emptyCartHandler", shop.empty_cart),
    Route("/setCurrency", ("POST",), "setCurrencyHandler", shop.set_currency),
    Route("/logout", ("GET",), "logoutHandler", shop.logout),
    Route("/cart/checkout", ("POST",), "placeOrderHandler", shop.place_order),
)


def build_router() -> APIRouter:
    router = APIRouter()

    for route in ROUTES:
        router.add_api_route(
            route.path,
            traced_route(route.name, route.handler),
            methods=list(route.methods),
            name=route.name,
        )

    router.include_router(health_router)
    return router
