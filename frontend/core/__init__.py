"""
frontend.core

Package “cœur” du frontend : tout ce qui est transversal et ne dépend pas d’un
handler en particulier.

- settings   : configuration (adresses des backends, cookies, timeouts, tracing)
- errors     : format d’erreur uniforme + erreurs fatales de démarrage
- context    : request_id + SessionContext (ContextVar)
- logging    : logs JSON (timestamp / severity / message) corrélés aux traces
- tracing    : TracerProvider, exporter, spans des routes
- middleware : chaîne ordonnée logging -> session -> devise

En résumé :
- frontend.core = infrastructure + conventions
- frontend.rpc  = connexions et stubs vers les backends
- frontend.api  = routes et handlers d’orchestration
"""
