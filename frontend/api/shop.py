import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional
from urllib.parse import urlparse

import grpc
from fastapi import Form, Request
from fastapi.responses import RedirectResponse

from frontend.api.deps import AppContextDep, SessionDep
from frontend.bootstrap import AppContext
from frontend.core.context import SessionContext
from frontend.core.errors import AppHTTPException
from frontend.core.settings import WHITELISTED_CURRENCIES
from frontend.services.money import money_multiply, money_sum, money_total

"""
API Shop (handlers d’orchestration).

Rôle (fonctionnel) :
- Chaque handler lit le SessionContext (session_id, devise), appelle un ou
  plusieurs backends via les stubs de l’AppContext et répond en JSON.
- Les erreurs RPC (grpc.RpcError) ne sont pas capturées ici : le handler
  d’exception global les convertit en réponse HTTP non-2xx.
- Exception : la publicité est optionnelle (échec = pas d’annonce, warning).

Notes :
- Les appels indépendants partent en parallèle (_gather) ; ils héritent du span
  de la route et de la deadline de la requête. Un échec annule les autres.
"""

log = logging.getLogger("frontend.shop")

MAX_QUANTITY = 10
MAX_RECOMMENDATIONS = 4


async def _gather(*aws: Awaitable[Any]) -> List[Any]:
    """
    Comme asyncio.gather, mais le premier échec annule les appels frères
    avant d’être ré-émis (pas de RPC orphelin après la réponse d’erreur).
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _convert(ctx: AppContext, money: Dict[str, Any], currency: str) -> Dict[str, Any]:
    if money.get("currency_code") == currency:
        return money
    return await ctx.clients.currency.convert(money, currency)


async def _choose_ad(ctx: AppContext, context_keys: List[str]) -> Optional[Dict[str, Any]]:
    try:
        ads = await ctx.clients.ad.get_ads(context_keys)
    except grpc.RpcError as exc:
        log.warning("failed to retrieve ads: %s", exc.code() if hasattr(exc, "code") else exc)
        return None
    return ads[0] if ads else None


async def _recommendations(ctx: AppContext, session_id: str, product_ids: List[str]) -> List[Dict[str, Any]]:
    ids = await ctx.clients.recommendation.list_recommendations(session_id, product_ids)
    ids = ids[:MAX_RECOMMENDATIONS]
    return list(await _gather(*(ctx.clients.catalog.get_product(pid) for pid in ids)))


def _cart_size(items: List[Dict[str, Any]]) -> int:
    return sum(int(item.get("quantity", 0)) for item in items)


async def home(request: Request, ctx: AppContext = AppContextDep, sess: SessionContext = SessionDep):
    currencies, products, cart, ad = await _gather(
        ctx.clients.currency.get_supported_currencies(),
        ctx.clients.catalog.list_products(),
        ctx.clients.cart.get_cart(sess.session_id),
        _choose_ad(ctx, []),
    )
    prices = await _gather(*(_convert(ctx, p.get("price_usd", {}), sess.currency) for p in products))

    return {
        "session_id": sess.session_id,
        "user_currency": sess.currency,
        "currencies": [c for c in currencies if c in WHITELISTED_CURRENCIES],
        "products": [{"item": p, "price": price} for p, price in zip(products, prices)],
        "cart_size": _cart_size(cart),
        "ad": ad,
    }


async def product(request: Request, id: str, ctx: AppContext = AppContextDep, sess: SessionContext = SessionDep):
    if not id:
        raise AppHTTPException(404, "NOT_FOUND", "Produit non spécifié")

    item = await ctx.clients.catalog.get_product(id)
    price, cart, recommendations, ad = await _gather(
        _convert(ctx, item.get("price_usd", {}), sess.currency),
        ctx.clients.cart.get_cart(sess.session_id),
        _recommendations(ctx, sess.session_id, [id]),
        _choose_ad(ctx, list(item.get("categories", []))),
    )

    return {
        "session_id": sess.session_id,
        "user_currency": sess.currency,
        "product": {"item": item, "price": price},
        "recommendations": recommendations,
        "cart_size": _cart_size(cart),
        "ad": ad,
    }


async def view_cart(request: Request, ctx: AppContext = AppContextDep, sess: SessionContext = SessionDep):
    cart = await ctx.clients.cart.get_cart(sess.session_id)
    product_ids = [str(i.get("product_id", "")) for i in cart]

    recommendations, shipping_usd, products = await _gather(
        _recommendations(ctx, sess.session_id, product_ids),
        ctx.clients.shipping.get_quote({}, cart),
        _gather(*(ctx.clients.catalog.get_product(pid) for pid in product_ids)),
    )
    shipping, prices = await _gather(
        _convert(ctx, shipping_usd or {"currency_code": "USD", "units": 0, "nanos": 0}, sess.currency),
        _gather(*(_convert(ctx, p.get("price_usd", {}), sess.currency) for p in products)),
    )

    items = []
    for cart_item, item, price in zip(cart, products, prices):
        quantity = int(cart_item.get("quantity", 0))
        items.append({"item": item, "quantity": quantity, "price": money_multiply(price, quantity)})

    total = money_sum(money_total((i["price"] for i in items), sess.currency), shipping)

    return {
        "session_id": sess.session_id,
        "user_currency": sess.currency,
        "items": items,
        "cart_size": _cart_size(cart),
        "shipping_cost": shipping,
        "total_cost": total,
        "recommendations": recommendations,
    }


async def add_to_cart(
    request: Request,
    product_id: str = Form(...),
    quantity: int = Form(...),
    ctx: AppContext = AppContextDep,
    sess: SessionContext = SessionDep,
):
    if quantity < 1 or quantity > MAX_QUANTITY:
        raise AppHTTPException(
            400,
            "INVALID_QUANTITY",
            "Quantité invalide",
            details={"quantity": quantity, "max": MAX_QUANTITY},
        )

    # Le produit doit exister avant l’ajout
    await ctx.clients.catalog.get_product(product_id)
    await ctx.clients.cart.add_item(sess.session_id, product_id, quantity)
    log.debug("item added to cart", extra={"session": sess.session_id})

    return RedirectResponse("/cart", status_code=302)


async def empty_cart(request: Request, ctx: AppContext = AppContextDep, sess: SessionContext = SessionDep):
    await ctx.clients.cart.empty_cart(sess.session_id)
    return RedirectResponse("/", status_code=302)


async def set_currency(
    request: Request,
    currency_code: str = Form(...),
    ctx: AppContext = AppContextDep,
    sess: SessionContext = SessionDep,
):
    code = currency_code.strip()
    if code not in WHITELISTED_CURRENCIES:
        # La devise courante (cookie) reste inchangée
        raise AppHTTPException(
            400,
            "INVALID_CURRENCY",
            "Devise non supportée",
            details={"currency_code": currency_code, "allowed": sorted(WHITELISTED_CURRENCIES)},
        )

    referer = urlparse(request.headers.get("referer") or "").path or "/"
    response = RedirectResponse(referer, status_code=302)
    response.set_cookie(
        ctx.settings.cookie_currency,
        code,
        max_age=ctx.settings.COOKIE_MAX_AGE,
        path="/",
        samesite="lax",
    )
    log.debug("currency changed", extra={"currency": code, "session": sess.session_id})
    return response


async def logout(request: Request, ctx: AppContext = AppContextDep, sess: SessionContext = SessionDep):
    response = RedirectResponse("/", status_code=302)
    response.delete_cookie(ctx.settings.cookie_session_id, path="/")
    response.delete_cookie(ctx.settings.cookie_currency, path="/")
    log.debug("logging out", extra={"session": sess.session_id})
    return response


async def place_order(
    request: Request,
    email: str = Form(...),
    street_address: str = Form(...),
    zip_code: int = Form(...),
    city: str = Form(...),
    state: str = Form(...),
    country: str = Form(...),
    credit_card_number: str = Form(...),
    credit_card_expiration_month: int = Form(...),
    credit_card_expiration_year: int = Form(...),
    credit_card_cvv: int = Form(...),
    ctx: AppContext = AppContextDep,
    sess: SessionContext = SessionDep,
):
    order = await ctx.clients.checkout.place_order(
        user_id=sess.session_id,
        user_currency=sess.currency,
        address={
            "street_address": street_address,
            "city": city,
            "state": state,
            "country": country,
            "zip_code": zip_code,
        },
        email=email,
        credit_card={
            "credit_card_number": credit_card_number,
            "credit_card_cvv": credit_card_cvv,
            "credit_card_expiration_year": credit_card_expiration_year,
            "credit_card_expiration_month": credit_card_expiration_month,
        },
    )
    log.info("order placed", extra={"session": sess.session_id})

    items = list(order.get("items", []))
    shipping = order.get("shipping_cost") or {"currency_code": sess.currency, "units": 0, "nanos": 0}
    lines = (money_multiply(i.get("cost", {}), int(i.get("item", {}).get("quantity", 0))) for i in items)
    total = money_sum(money_total(lines, shipping.get("currency_code", sess.currency)), shipping)

    recommendations = await _recommendations(ctx, sess.session_id, [])

    return {
        "session_id": sess.session_id,
        "user_currency": sess.currency,
        "order": order,
        "total_paid": total,
        "recommendations": recommendations,
    }
