from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

"""
API Health.

Rôle (fonctionnel) :
- /_healthz : liveness, corps fixe "ok".
- /robots.txt : politique crawler, interdit tout.
- Aucun appel backend : ces endpoints restent joignables même si un backend
  est dégradé (utilisés par l’infrastructure de health-check).
"""

ROBOTS_TXT = "User-agent: *\nDisallow: /"

router = APIRouter(tags=["health"])


@router.api_route("/robots.txt", methods=["GET", "HEAD"], response_class=PlainTextResponse)
async def robots() -> str:
    return ROBOTS_TXT


@router.api_route("/_healthz", methods=["GET", "HEAD"], response_class=PlainTextResponse)
async def healthz() -> str:
    return "ok"
