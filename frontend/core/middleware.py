from __future__ import annotations

import logging
import math
import time
from typing import Awaitable, Callable, Optional, Sequence

import anyio
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from frontend.core.context import (
    SessionContext,
    ensure_request_id,
    new_session_id,
    set_request_id,
    set_session,
)
from frontend.core.settings import WHITELISTED_CURRENCIES, Settings

"""
Core Middleware (chaîne ordonnée).

Rôle (fonctionnel) :
- log_requests (le plus externe) : request_id, timing, 1 log structuré par requête.
- ensure_session : garantit un session_id (cookie) + devise valide + deadline
  dans le contexte de la requête, et rafraîchit le cookie (48h glissantes).
- Le routeur (FastAPI) est l’étage le plus interne.
- CancelOnDisconnect enveloppe toute la chaîne : si le client ferme la connexion
  avant la fin de la réponse, la requête est annulée (RPC en cours compris).

Notes :
- L’ordre est explicite (MIDDLEWARE_CHAIN) : le premier élément enveloppe les suivants.
- Aucun étage ne modifie le corps ni le statut de la réponse.
- Les exceptions ne sont jamais avalées : elles sont journalisées puis ré-émises.
"""

http_log = logging.getLogger("frontend.http")

CallNext = Callable[[Request], Awaitable[Response]]
Stage = Callable[[Request, CallNext], Awaitable[Response]]


def _settings(request: Request) -> Settings:
    return request.app.state.ctx.settings


async def log_requests(request: Request, call_next: CallNext) -> Response:
    rid = ensure_request_id(request.headers.get("X-Request-Id"))
    request.state.request_id = rid
    slow_ms = _settings(request).SLOW_REQUEST_MS

    http_log.debug(
        "request started",
        extra={
            "http.req.method": request.method,
            "http.req.path": request.url.path,
            "http.req.id": rid,
        },
    )

    start = time.perf_counter()
    response: Optional[Response] = None
    cancelled = False
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = rid
        return response
    except anyio.get_cancelled_exc_class():
        cancelled = True
        raise
    finally:
        took_ms = int((time.perf_counter() - start) * 1000)
        session = getattr(request.state, "session", None)

        if cancelled:
            level = logging.INFO
        elif response is None:
            level = logging.ERROR
        elif took_ms >= slow_ms:
            level = logging.WARNING
        else:
            level = logging.INFO

        http_log.log(
            level,
            _outcome(response, cancelled),
            extra={
                "http.req.method": request.method,
                "http.req.path": request.url.path,
                "http.req.id": rid,
                "session": session.session_id if session else None,
                "http.resp.status": getattr(response, "status_code", None),
                "http.resp.took_ms": took_ms,
            },
        )
        set_request_id(None)


def _outcome(response: Optional[Response], cancelled: bool) -> str:
    if cancelled:
        return "request cancelled"
    return "request complete" if response is not None else "request failed"


def currency_from_cookie(value: Optional[str], default: str) -> str:
    """Devise du cookie si elle est dans la liste blanche, sinon la devise par défaut."""
    code = (value or "").strip()
    if code in WHITELISTED_CURRENCIES:
        return code
    return default


def _sets_cookie(response: Response, name: str) -> bool:
    prefix = f"{name}="
    return any(h.startswith(prefix) for h in response.headers.getlist("set-cookie"))


async def ensure_session(request: Request, call_next: CallNext) -> Response:
    settings = _settings(request)

    sid = (request.cookies.get(settings.cookie_session_id) or "").strip()
    if not sid:
        sid = new_session_id()

    ctx = SessionContext(
        session_id=sid,
        currency=currency_from_cookie(request.cookies.get(settings.cookie_currency), settings.DEFAULT_CURRENCY),
        deadline=time.monotonic() + settings.REQUEST_TIMEOUT_S,
        request_id=getattr(request.state, "request_id", None),
    )
    request.state.session = ctx
    set_session(ctx)

    try:
        response = await call_next(request)
    finally:
        set_session(None)

    # Un handler (logout) peut avoir expiré le cookie : on ne l’écrase pas
    if not _sets_cookie(response, settings.cookie_session_id):
        response.set_cookie(
            settings.cookie_session_id,
            sid,
            max_age=settings.COOKIE_MAX_AGE,
            path="/",
            httponly=True,
            samesite="lax",
        )
    return response


MIDDLEWARE_CHAIN: Sequence[Stage] = (log_requests, ensure_session)


class CancelOnDisconnect:
    """
    Annule la requête quand le client se déconnecte avant la fin de la réponse.

    - Une tâche lit `receive()` en continu et relaie les messages à l’application.
    - Sur `http.disconnect` (réponse non terminée), la portée d’annulation est
      levée : handler, appels en parallèle et RPC grpc.aio en attente.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_complete = False
        send_stream, receive_stream = anyio.create_memory_object_stream(math.inf)

        async def send_wrapper(message: Message) -> None:
            nonlocal response_complete
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                response_complete = True
            await send(message)

        app_error: Optional[Exception] = None
        async with anyio.create_task_group() as tg:

            async def watch() -> None:
                while True:
                    message = await receive()
                    await send_stream.send(message)
                    if message["type"] == "http.disconnect":
                        break
                if not response_complete:
                    http_log.info("client disconnected", extra={"http.req.path": scope.get("path")})
                    tg.cancel_scope.cancel()

            tg.start_soon(watch)
            try:
                await self.app(scope, receive_stream.receive, send_wrapper)
            except Exception as exc:
                # Ré-émise hors du task group (pas d’ExceptionGroup)
                app_error = exc
            finally:
                tg.cancel_scope.cancel()

        if app_error is not None:
            raise app_error


def install_middleware(app: FastAPI, chain: Sequence[Stage] = MIDDLEWARE_CHAIN) -> None:
    """Installe la chaîne : chain[0] est l’étage le plus externe, sous CancelOnDisconnect."""
    for stage in reversed(chain):
        app.add_middleware(BaseHTTPMiddleware, dispatch=stage)
    app.add_middleware(CancelOnDisconnect)
