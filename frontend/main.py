from __future__ import annotations

import asyncio
import logging
import os
import sys
import uuid
from typing import Optional, Tuple

import grpc
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from frontend.api.router import build_router
from frontend.bootstrap import AppContext, Startup
from frontend.core.context import get_request_id
from frontend.core.errors import AppHTTPException, StartupError, error_payload
from frontend.core.logging import setup_logging
from frontend.core.middleware import install_middleware

"""
Application FastAPI (entrypoint).

Rôle (fonctionnel) :
- create_app(ctx) : assemble l’application à partir d’un AppContext déjà prêt
  (backends connectés) : middlewares, routes, fichiers statiques, erreurs.
- main() : séquence de démarrage complète puis service HTTP (uvicorn).
  Une StartupError (config manquante, backend injoignable) est journalisée et
  termine le process (code 1) avant l’ouverture du socket d’écoute.
- Uniformise les erreurs côté client (format error_payload), y compris les
  erreurs RPC des backends (502 / 504 ...).

Ce fichier ne contient pas de logique métier :
- Les handlers sont dans frontend.api
- Les connexions backends dans frontend.rpc
- Les composants transverses dans frontend.core
"""


class UTF8JSONResponse(JSONResponse):
    """Réponse JSON avec charset UTF-8 explicite (cohérent sur tous les endpoints)."""
    media_type = "application/json; charset=utf-8"


log = logging.getLogger("frontend")

# Code gRPC -> (statut HTTP, code d’erreur)
RPC_ERROR_STATUS = {
    grpc.StatusCode.DEADLINE_EXCEEDED: (504, "BACKEND_TIMEOUT"),
    grpc.StatusCode.NOT_FOUND: (404, "NOT_FOUND"),
    grpc.StatusCode.INVALID_ARGUMENT: (400, "INVALID_ARGUMENT"),
    grpc.StatusCode.UNAVAILABLE: (503, "BACKEND_UNAVAILABLE"),
}


def _correlation(request: Request) -> Tuple[str, Optional[str], Optional[str]]:
    """(request_id, session_id, trace_id) de la requête en cours."""
    rid = getattr(request.state, "request_id", None) or get_request_id() or str(uuid.uuid4())
    session = getattr(request.state, "session", None)
    sid = session.session_id if session is not None else None
    return rid, sid, getattr(request.state, "trace_id", None)


def _error_response(
    request: Request,
    status: int,
    code: str,
    message: str,
    details=None,
) -> UTF8JSONResponse:
    rid, sid, tid = _correlation(request)
    return UTF8JSONResponse(
        status_code=status,
        content=error_payload(
            code=code,
            message=message,
            status=status,
            request_id=rid,
            session_id=sid,
            trace_id=tid,
            details=details,
        ),
    )


async def app_http_exception_handler(request: Request, exc: AppHTTPException):
    """Erreurs applicatives (AppHTTPException) -> payload standard."""
    detail = exc.detail if isinstance(exc.detail, dict) else {}
    return _error_response(
        request,
        exc.status_code,
        str(detail.get("code", "HTTP_ERROR")),
        str(detail.get("message", "Erreur HTTP")),
        detail.get("details", None),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Erreurs HTTP natives (404, 405, etc.) -> payload standard."""
    if exc.status_code == 404:
        code = "NOT_FOUND"
    elif exc.status_code == 405:
        code = "METHOD_NOT_ALLOWED"
    else:
        code = "HTTP_ERROR"
    response = _error_response(request, exc.status_code, code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Erreurs de validation (formulaires) -> 422 + details=exc.errors()."""
    return _error_response(request, 422, "VALIDATION_ERROR", "Requête invalide", exc.errors())


async def rpc_exception_handler(request: Request, exc: grpc.RpcError):
    """Erreur d’un backend pendant la requête -> non-2xx, le process continue."""
    code = exc.code() if hasattr(exc, "code") else grpc.StatusCode.UNKNOWN
    status, err_code = RPC_ERROR_STATUS.get(code, (502, "BACKEND_ERROR"))
    rid, sid, tid = _correlation(request)

    log.error(
        "backend call failed",
        extra={"rpc.code": getattr(code, "name", str(code)), "session": sid, "trace_id": tid},
    )
    return _error_response(
        request,
        status,
        err_code,
        "Erreur lors de l’appel d’un service backend",
        {"rpc_code": getattr(code, "name", str(code))},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    """Fallback : toute exception non gérée -> 500 + log serveur."""
    log.exception("Unhandled error: %s", exc)
    return _error_response(request, 500, "INTERNAL_ERROR", "Erreur interne du serveur")


def create_app(ctx: AppContext) -> FastAPI:
    settings = ctx.settings

    app = FastAPI(
        title=settings.APP_NAME,
        default_response_class=UTF8JSONResponse,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.ctx = ctx

    install_middleware(app)

    app.include_router(build_router())
    app.mount("/static", StaticFiles(directory=settings.STATIC_DIR, check_dir=False), name="static")

    app.add_exception_handler(AppHTTPException, app_http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(grpc.RpcError, rpc_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    return app


async def serve(startup: Optional[Startup] = None) -> None:
    """Démarrage complet puis service HTTP jusqu’au signal d’arrêt."""
    startup = startup or Startup()
    ctx = await startup.run()
    setup_logging(ctx.settings.LOG_LEVEL)

    app = create_app(ctx)
    config = uvicorn.Config(
        app,
        host=ctx.settings.LISTEN_ADDR or "0.0.0.0",
        port=ctx.settings.PORT,
        log_config=None,
    )
    server = uvicorn.Server(config)

    startup.mark_serving()
    log.info("starting server on %s", ctx.settings.bind_address)
    try:
        await server.serve()
    finally:
        await ctx.aclose()


def main() -> None:
    setup_logging(os.getenv("LOG_LEVEL", "DEBUG"))
    try:
        asyncio.run(serve())
    except StartupError as exc:
        log.critical("startup aborted: %s", exc, extra={"state": "Aborted"})
        sys.exit(1)


if __name__ == "__main__":
    main()
