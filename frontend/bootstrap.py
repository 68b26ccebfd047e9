from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SpanExporter

from frontend.core.errors import StartupError
from frontend.core.settings import ENV_PATH, Settings, load_settings
from frontend.core.tracing import get_tracer, setup_tracing
from frontend.rpc.clients import BackendClients
from frontend.rpc.connector import ConnectionTable, connect

"""
Séquence de démarrage.

Rôle (fonctionnel) :
- Enchaîne les états Unconfigured -> EnvironmentResolved -> BackendsConnected -> Serving.
- Toute erreur (variable manquante, backend injoignable) fait passer en Aborted
  et remonte une StartupError au point d’entrée : pas de démarrage partiel,
  pas de retry.
- Produit l’AppContext : objet unique, construit une fois, injecté dans
  l’application (app.state.ctx) au lieu de singletons globaux.
"""

log = logging.getLogger("frontend.bootstrap")

# Ordre de connexion des backends
DIAL_ORDER = ("currency", "catalog", "cart", "recommendation", "shipping", "checkout", "ad")


class StartupState(str, Enum):
    UNCONFIGURED = "Unconfigured"
    ENVIRONMENT_RESOLVED = "EnvironmentResolved"
    BACKENDS_CONNECTED = "BackendsConnected"
    SERVING = "Serving"
    ABORTED = "Aborted"


@dataclass(frozen=True)
class AppContext:
    """Contexte applicatif (lecture seule après démarrage)."""
    settings: Settings
    connections: ConnectionTable
    clients: BackendClients
    tracer_provider: TracerProvider

    @property
    def tracer(self) -> trace.Tracer:
        return get_tracer(self.tracer_provider)

    async def aclose(self) -> None:
        await self.connections.close()
        self.tracer_provider.shutdown()


class Startup:
    """
    Machine à états du démarrage.

    Usage :
        startup = Startup()
        ctx = await startup.run()   # lève StartupError
        ...                          # construction de l’app + bind
        startup.mark_serving()
    """

    def __init__(
        self,
        *,
        env_file: Any = ENV_PATH,
        exporter: Optional[SpanExporter] = None,
        **overrides: Any,
    ) -> None:
        self.state = StartupState.UNCONFIGURED
        self._env_file = env_file
        self._exporter = exporter
        self._overrides = overrides
        self.settings: Optional[Settings] = None

    def _transition(self, state: StartupState) -> None:
        log.info("startup state", extra={"state": state.value})
        self.state = state

    def resolve_environment(self) -> Settings:
        try:
            self.settings = load_settings(self._env_file, **self._overrides)
        except StartupError:
            self._transition(StartupState.ABORTED)
            raise
        self._transition(StartupState.ENVIRONMENT_RESOLVED)
        return self.settings

    async def connect_backends(self, settings: Settings) -> AppContext:
        provider = setup_tracing(settings, self._exporter)
        tracer = get_tracer(provider)
        table = ConnectionTable()
        addresses = settings.backend_addresses()

        try:
            for name in DIAL_ORDER:
                endpoint = await connect(
                    name,
                    addresses[name],
                    tracer=tracer,
                    timeout=settings.RPC_CONNECT_TIMEOUT_S,
                )
                table.register(endpoint)
        except StartupError:
            self._transition(StartupState.ABORTED)
            await table.close()
            provider.shutdown()
            raise

        table.freeze()
        self._transition(StartupState.BACKENDS_CONNECTED)
        return AppContext(
            settings=settings,
            connections=table,
            clients=BackendClients.from_table(table),
            tracer_provider=provider,
        )

    async def run(self) -> AppContext:
        settings = self.resolve_environment()
        return await self.connect_backends(settings)

    def mark_serving(self) -> None:
        if self.state is not StartupState.BACKENDS_CONNECTED:
            raise RuntimeError(f"cannot serve from state {self.state.value}")
        self._transition(StartupState.SERVING)
