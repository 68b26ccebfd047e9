"""
scripts

Scripts CLI utilitaires (debug / vérification de déploiement).

- check_backends : résolution de l’environnement + connexion aux 7 backends
"""
