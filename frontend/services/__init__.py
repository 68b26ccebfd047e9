"""
frontend.services

Logique réutilisable indépendante du transport HTTP.

- money : somme / multiplication exactes des montants {currency_code, units, nanos}
"""
