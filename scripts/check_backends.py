import asyncio
import sys

from frontend.bootstrap import Startup
from frontend.core.errors import StartupError

"""
Script CLI: check_backends

Rôle (fonctionnel) :
- Exécute la séquence de démarrage sans ouvrir de socket HTTP.
- Vérifie que toutes les variables d’adresse sont présentes et que les 7
  backends acceptent la connexion.
- Affiche un résumé (backend -> adresse) puis ferme les canaux.

Usage typique :
- Debug local / vérification d’un déploiement avant de lancer le frontend.
"""


async def main() -> int:
    startup = Startup()
    try:
        ctx = await startup.run()
    except StartupError as exc:
        print(f"KO ({startup.state.value}): {exc}")
        return 1

    try:
        for name, endpoint in ctx.connections.items():
            print(f"OK {name:<15} {endpoint.address}")
    finally:
        await ctx.aclose()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
