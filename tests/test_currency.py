"""
Tests for currency selection (whitelist)
"""

import pytest

from conftest import cookie_header, cookie_value
from frontend.core.middleware import currency_from_cookie
from frontend.core.settings import WHITELISTED_CURRENCIES

CURRENCY_COOKIE = "shop_currency"


def test_whitelist_is_fixed():
    assert WHITELISTED_CURRENCIES == {"USD", "EUR", "CAD", "JPY", "GBP", "TRY"}


@pytest.mark.parametrize("value", [None, "", "XYZ", "usd", "EURO", "BTC"])
def test_cookie_currency_falls_back_to_default(value):
    assert currency_from_cookie(value, "USD") == "USD"


@pytest.mark.parametrize("code", sorted(WHITELISTED_CURRENCIES))
def test_cookie_currency_whitelisted(code):
    assert currency_from_cookie(code, "USD") == code


async def test_set_currency_accepts_whitelisted_code(client):
    response = await client.post(
        "/setCurrency",
        data={"currency_code": "EUR"},
        headers={"Referer": "http://testserver/product/OLJCESPC7Z"},
        follow_redirects=False,
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/product/OLJCESPC7Z"
    assert cookie_value(response, CURRENCY_COOKIE) == "EUR"
    assert "Max-Age=172800" in cookie_header(response, CURRENCY_COOKIE)


async def test_set_currency_without_referer_redirects_home(client):
    response = await client.post("/setCurrency", data={"currency_code": "JPY"}, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/"


@pytest.mark.parametrize("code", ["XYZ", "usd", "BTC", "EUR;"])
async def test_set_currency_rejects_unknown_code(client, code):
    response = await client.post(
        "/setCurrency",
        data={"currency_code": code},
        headers={"Cookie": f"{CURRENCY_COOKIE}=GBP"},
        follow_redirects=False,
    )
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_CURRENCY"
    # La devise précédente n’est pas modifiée
    assert cookie_header(response, CURRENCY_COOKIE) is None


async def test_set_currency_requires_code(client):
    response = await client.post(
        "/setCurrency",
        data={"currency_code": ""},
        headers={"Cookie": f"{CURRENCY_COOKIE}=GBP"},
        follow_redirects=False,
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert cookie_header(response, CURRENCY_COOKIE) is None


async def test_rejected_currency_keeps_previous_selection(client):
    await client.post("/setCurrency", data={"currency_code": "XYZ"}, headers={"Cookie": f"{CURRENCY_COOKIE}=GBP"})
    client.cookies.clear()
    response = await client.get("/", headers={"Cookie": f"{CURRENCY_COOKIE}=GBP"})
    assert response.json()["user_currency"] == "GBP"


async def test_rejection_payload(client):
    response = await client.post("/setCurrency", data={"currency_code": "XYZ"})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_CURRENCY"
    assert error["session_id"]
    assert error["request_id"] == response.headers["X-Request-Id"]


async def test_home_uses_default_currency_without_cookie(client):
    response = await client.get("/")
    body = response.json()
    assert body["user_currency"] == "USD"
    # Les devises hors liste blanche renvoyées par le backend sont filtrées
    assert body["currencies"] == ["USD", "EUR", "JPY"]


async def test_home_ignores_tampered_currency_cookie(client):
    response = await client.get("/", headers={"Cookie": f"{CURRENCY_COOKIE}=XYZ"})
    assert response.json()["user_currency"] == "USD"


async def test_prices_converted_to_selected_currency(client, backend):
    response = await client.get("/", headers={"Cookie": f"{CURRENCY_COOKIE}=EUR"})
    body = response.json()
    assert body["user_currency"] == "EUR"
    assert body["products"][0]["price"] == {"currency_code": "EUR", "units": 38, "nanos": 0}
    assert backend.requests_for("/hipstershop.CurrencyService/Convert")[0]["to_code"] == "EUR"
