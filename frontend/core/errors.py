from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from fastapi import HTTPException

"""
Core Errors.

Rôle (fonctionnel) :
- Standardise le format des erreurs renvoyées aux clients (payload homogène).
- Fournit une exception applicative (AppHTTPException) pour les erreurs “client”
  (devise refusée, quantité invalide, etc.).
- Définit les erreurs fatales de démarrage (StartupError) : configuration
  manquante ou backend injoignable. Elles ne sont jamais retentées : le point
  d’entrée les journalise puis sort avec un code non nul.

Convention de réponse (exemple) :
{
  "error": {
    "code": "INVALID_CURRENCY",
    "message": "Devise non supportée",
    "status": 400,
    "request_id": "...",
    "session_id": "...",
    "trace_id": "...",
    "timestamp": "...",
    "details": {...}
  }
}
"""


def now_iso() -> str:
    """Timestamp ISO-8601 en UTC (utilisé dans toutes les erreurs)."""
    return datetime.now(timezone.utc).isoformat()


def error_payload(
    *,
    code: str,
    message: str,
    status: int,
    request_id: Optional[str],
    session_id: Optional[str] = None,
    trace_id: Optional[str] = None,
    details: Optional[Any] = None,
) -> Dict[str, Any]:
    """Construit un payload d’erreur homogène (corrélable avec logs et traces)."""
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "status": status,
            "request_id": request_id,
            "session_id": session_id,
            "trace_id": trace_id,
            "timestamp": now_iso(),
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    return payload


class AppHTTPException(HTTPException):
    """
    Exception applicative standardisée.

    Exemple :
        raise AppHTTPException(400, "INVALID_CURRENCY", "Devise non supportée")
    """

    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        super().__init__(status_code=status_code, detail={"code": code, "message": message, "details": details})


class StartupError(Exception):
    """Erreur fatale avant la mise en service (aucun trafic ne doit être servi)."""


class ConfigError(StartupError):
    """Variable(s) d’environnement obligatoire(s) absente(s) ou invalide(s)."""

    def __init__(self, fields: Iterable[str], reason: str = "") -> None:
        self.fields = list(fields)
        self.reason = reason
        names = ", ".join(self.fields) or "?"
        super().__init__(f"configuration invalide: {names}")


class ConnectError(StartupError):
    """Connexion impossible à un backend au démarrage."""

    def __init__(self, name: str, address: str, reason: str = "") -> None:
        self.name = name
        self.address = address
        self.reason = reason
        msg = f"grpc: failed to connect {name} at {address!r}"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
