from __future__ import annotations

from fastapi import Depends, Request

from frontend.bootstrap import AppContext
from frontend.core.context import SessionContext

"""
Dépendances API.

Rôle (fonctionnel) :
- Centralise les dépendances réutilisables sur les routes.
- AppContext : stubs backends, settings (construit une fois au démarrage).
- SessionContext : posé par le middleware de session (jamais relu depuis les cookies).
"""


def get_app_context(request: Request) -> AppContext:
    return request.app.state.ctx


def get_session_context(request: Request) -> SessionContext:
    return request.state.session


AppContextDep = Depends(get_app_context)
SessionDep = Depends(get_session_context)
