"""
frontend.rpc

Couche RPC sortante du frontend.

- connector    : connexion (une par backend) + ConnectionTable figée après démarrage
- interceptors : spans OpenTelemetry + propagation de contexte + deadline par requête
- clients      : un stub par backend (catalog, currency, cart, recommendation,
                 checkout, shipping, ad)
"""
