from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping

import grpc
from opentelemetry import trace

from frontend.core.errors import ConnectError
from frontend.rpc.interceptors import tracing_interceptors

"""
RPC Service Connector.

Rôle (fonctionnel) :
- Établit UNE connexion longue durée par backend (catalog, cart, currency, ...).
- Chaque canal est :
  - non chiffré (réseau interne, la frontière de confiance est le cluster),
  - instrumenté par les intercepteurs de tracing (unaire + streaming),
  - connecté une seule fois au démarrage, avec un timeout borné.
- Échec de connexion = erreur fatale (ConnectError) : pas de retry à ce niveau.

ConnectionTable :
- Registre des endpoints indexé par nom logique, rempli pendant le démarrage
  puis figé (freeze) : lecture seule pendant le service, donc sans verrou.
"""

log = logging.getLogger("frontend.rpc")


@dataclass(frozen=True)
class BackendEndpoint:
    """Backend connecté : nom logique, adresse host:port et canal grpc.aio."""
    name: str
    address: str
    channel: grpc.aio.Channel


async def connect(
    name: str,
    address: str,
    *,
    tracer: trace.Tracer,
    timeout: float = 3.0,
) -> BackendEndpoint:
    """
    Ouvre le canal vers `address` et attend qu’il soit prêt.

    Lève ConnectError si l’adresse est vide, mal formée ou injoignable
    dans le délai imparti.
    """
    address = (address or "").strip()
    if not address:
        raise ConnectError(name, address, "empty address")

    try:
        channel = grpc.aio.insecure_channel(address, interceptors=tracing_interceptors(tracer, address))
    except Exception as exc:
        raise ConnectError(name, address, str(exc)) from exc

    try:
        await asyncio.wait_for(channel.channel_ready(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await channel.close()
        raise ConnectError(name, address, f"not ready after {timeout:g}s") from exc
    except Exception as exc:
        await channel.close()
        raise ConnectError(name, address, str(exc)) from exc

    log.debug("backend connected", extra={"backend": name, "address": address})
    return BackendEndpoint(name=name, address=address, channel=channel)


class ConnectionTable(Mapping[str, BackendEndpoint]):
    """Table nom -> BackendEndpoint (écrite au démarrage, lue ensuite)."""

    def __init__(self) -> None:
        self._endpoints: Dict[str, BackendEndpoint] = {}
        self._frozen = False

    def register(self, endpoint: BackendEndpoint) -> None:
        if self._frozen:
            raise RuntimeError("connection table is frozen")
        if endpoint.name in self._endpoints:
            raise ValueError(f"backend already registered: {endpoint.name}")
        self._endpoints[endpoint.name] = endpoint

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def channel(self, name: str) -> grpc.aio.Channel:
        return self._endpoints[name].channel

    def __getitem__(self, name: str) -> BackendEndpoint:
        return self._endpoints[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._endpoints)

    def __len__(self) -> int:
        return len(self._endpoints)

    async def close(self) -> None:
        """Ferme tous les canaux (arrêt du process)."""
        for endpoint in self._endpoints.values():
            try:
                await endpoint.channel.close()
            except Exception:
                log.warning("channel close failed", extra={"backend": endpoint.name}, exc_info=True)
