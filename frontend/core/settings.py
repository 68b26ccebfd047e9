from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from frontend.core.errors import ConfigError

"""
Core Settings.

Rôle (fonctionnel) :
- Centralise la configuration du frontend via variables d’environnement (Pydantic Settings).
- Charge un fichier .env (racine du dépôt) pour faciliter le dev/local.
- Les adresses des 7 backends sont obligatoires : une variable absente ou vide
  est une erreur de configuration fatale (pas de démarrage partiel).

Organisation :
- App : nom, service (tracing), niveau de log, écoute HTTP.
- Backends : une adresse host:port par type de backend.
- Session : préfixe et durée de vie des cookies, devise par défaut.
- RPC : timeout de connexion (startup) et deadline par requête.
- Tracing : exporter (none / console / otlp).

Notes :
- Pas d’instance globale : la séquence de démarrage appelle load_settings()
  et transporte l’objet dans l’AppContext.
"""

ENV_PATH = Path(__file__).resolve().parents[2] / ".env"

# Devises acceptées (fermé, lecture seule)
WHITELISTED_CURRENCIES = frozenset({"USD", "EUR", "CAD", "JPY", "GBP", "TRY"})

# Nom logique du backend -> variable d’environnement
BACKEND_ENV_VARS: dict[str, str] = {
    "catalog": "PRODUCT_CATALOG_SERVICE_ADDR",
    "currency": "CURRENCY_SERVICE_ADDR",
    "cart": "CART_SERVICE_ADDR",
    "recommendation": "RECOMMENDATION_SERVICE_ADDR",
    "checkout": "CHECKOUT_SERVICE_ADDR",
    "shipping": "SHIPPING_SERVICE_ADDR",
    "ad": "AD_SERVICE_ADDR",
}


class Settings(BaseSettings):
    # --- App ---
    APP_NAME: str = "Online Boutique Frontend"
    SERVICE_NAME: str = "frontend"
    LOG_LEVEL: str = "DEBUG"
    SLOW_REQUEST_MS: int = 800

    # --- HTTP ---
    PORT: int = 8080
    LISTEN_ADDR: str = ""  # vide = toutes les interfaces
    STATIC_DIR: str = "./static"

    # --- Backends (obligatoires) ---
    PRODUCT_CATALOG_SERVICE_ADDR: str = Field(min_length=1)
    CURRENCY_SERVICE_ADDR: str = Field(min_length=1)
    CART_SERVICE_ADDR: str = Field(min_length=1)
    RECOMMENDATION_SERVICE_ADDR: str = Field(min_length=1)
    CHECKOUT_SERVICE_ADDR: str = Field(min_length=1)
    SHIPPING_SERVICE_ADDR: str = Field(min_length=1)
    AD_SERVICE_ADDR: str = Field(min_length=1)

    # --- Session / cookies ---
    COOKIE_PREFIX: str = "shop_"
    COOKIE_MAX_AGE: int = 60 * 60 * 48
    DEFAULT_CURRENCY: str = "USD"

    # --- RPC ---
    RPC_CONNECT_TIMEOUT_S: float = 3.0
    REQUEST_TIMEOUT_S: float = 30.0

    # --- Tracing ---
    TRACE_EXPORTER: str = "none"
    OTLP_ENDPOINT: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        str_strip_whitespace=True,
    )

    @field_validator("DEFAULT_CURRENCY")
    @classmethod
    def _default_currency_whitelisted(cls, value: str) -> str:
        code = value.upper()
        if code not in WHITELISTED_CURRENCIES:
            raise ValueError(f"devise par défaut non supportée: {value}")
        return code

    @field_validator("TRACE_EXPORTER")
    @classmethod
    def _known_exporter(cls, value: str) -> str:
        name = value.lower()
        if name not in ("none", "console", "otlp"):
            raise ValueError(f"exporter inconnu: {value}")
        return name

    @property
    def cookie_session_id(self) -> str:
        return f"{self.COOKIE_PREFIX}session-id"

    @property
    def cookie_currency(self) -> str:
        return f"{self.COOKIE_PREFIX}currency"

    @property
    def bind_address(self) -> str:
        return f"{self.LISTEN_ADDR}:{self.PORT}"

    def backend_addresses(self) -> dict[str, str]:
        """Adresses des backends indexées par nom logique."""
        return {name: getattr(self, env) for name, env in BACKEND_ENV_VARS.items()}


def load_settings(env_file: Any = ENV_PATH, **overrides: Any) -> Settings:
    """
    Lit la configuration et convertit les erreurs Pydantic en ConfigError.

    - env_file=None désactive la lecture du .env (tests).
    - Les variables manquantes/vides sont listées dans l’erreur.
    """
    try:
        return Settings(_env_file=env_file, **overrides)
    except ValidationError as exc:
        fields = [str(err["loc"][0]) for err in exc.errors() if err.get("loc")]
        raise ConfigError(fields, str(exc)) from exc
