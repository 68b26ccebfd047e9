from __future__ import annotations

import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional

"""
Core Request Context.

Rôle (fonctionnel) :
- Gère l’identifiant de requête (request_id) et le contexte de session stockés
  dans des ContextVar.
- Le SessionContext regroupe ce que chaque handler et chaque appel RPC sortant
  doivent connaître sans relire les cookies :
  - session_id (cookie, généré si absent),
  - devise sélectionnée (liste blanche),
  - deadline de la requête (borne les RPC sortants).

Notes :
- ContextVar est adapté aux contextes async : chaque requête garde ses propres valeurs.
- Rien n’est persisté côté serveur ; le contexte disparaît avec la requête.
"""

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_session: ContextVar[Optional["SessionContext"]] = ContextVar("session", default=None)


@dataclass(frozen=True)
class SessionContext:
    """Contexte par requête (jamais partagé entre requêtes)."""
    session_id: str
    currency: str
    deadline: float  # instant time.monotonic()
    request_id: Optional[str] = None

    def remaining(self) -> float:
        """Temps restant avant la deadline (secondes, >= 0)."""
        return max(0.0, self.deadline - time.monotonic())


def new_session_id() -> str:
    """Identifiant opaque (UUID4, 122 bits aléatoires)."""
    return str(uuid.uuid4())


def set_request_id(rid: Optional[str]) -> None:
    _request_id.set(rid)


def get_request_id() -> Optional[str]:
    return _request_id.get()


def ensure_request_id(incoming: Optional[str] = None) -> str:
    """
    Garantit un request_id pour le contexte courant.

    - Si un request_id entrant est fourni, il est nettoyé et réutilisé.
    - Sinon, on génère un UUID.
    """
    rid = (incoming or "").strip() or str(uuid.uuid4())
    set_request_id(rid)
    return rid


def set_session(ctx: Optional[SessionContext]) -> None:
    _session.set(ctx)


def get_session() -> Optional[SessionContext]:
    return _session.get()


def rpc_timeout() -> Optional[float]:
    """Timeout à appliquer à un RPC sortant (None hors requête HTTP)."""
    ctx = _session.get()
    if ctx is None:
        return None
    return ctx.remaining()
