"""
frontend

Package racine du frontend storefront (tier “edge”).

Rôle (fonctionnel) :
- Termine le trafic HTTP des navigateurs.
- Maintient session et devise du visiteur via cookies (aucun état serveur).
- Orchestre les appels vers les 7 backends RPC (catalog, cart, currency,
  recommendation, checkout, shipping, ad).

Organisation (haute-level) :
- frontend.core      : settings, errors, logs, tracing, contexte de requête, middlewares
- frontend.rpc       : connexions backends + intercepteurs de tracing + stubs
- frontend.api       : table de routage + handlers d’orchestration
- frontend.services  : calculs réutilisables (montants)
- frontend.bootstrap : séquence de démarrage + AppContext
"""
