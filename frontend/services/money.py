from __future__ import annotations

from typing import Any, Dict, Iterable

"""
Money (valeurs monétaires du contrat storefront).

Rôle (fonctionnel) :
- Représentation {currency_code, units, nanos} (nanos = 1e-9 unité, même signe que units).
- Somme et multiplication exactes (calcul en nanos entiers, pas de float).

Notes :
- Sommer deux devises différentes est une erreur (ValueError).
"""

Money = Dict[str, Any]

NANOS_MOD = 1_000_000_000


def _to_nanos(m: Money) -> int:
    return int(m.get("units", 0)) * NANOS_MOD + int(m.get("nanos", 0))


def _from_nanos(total: int, currency_code: str) -> Money:
    sign = -1 if total < 0 else 1
    units, nanos = divmod(abs(total), NANOS_MOD)
    return {"currency_code": currency_code, "units": sign * units, "nanos": sign * nanos}


def zero(currency_code: str) -> Money:
    return {"currency_code": currency_code, "units": 0, "nanos": 0}


def money_sum(left: Money, right: Money) -> Money:
    code = left.get("currency_code")
    if code != right.get("currency_code"):
        raise ValueError(f"mismatching currency codes: {code} != {right.get('currency_code')}")
    return _from_nanos(_to_nanos(left) + _to_nanos(right), code)


def money_multiply(m: Money, n: int) -> Money:
    return _from_nanos(_to_nanos(m) * int(n), m.get("currency_code", ""))


def money_total(values: Iterable[Money], currency_code: str) -> Money:
    total = zero(currency_code)
    for value in values:
        total = money_sum(total, value)
    return total
