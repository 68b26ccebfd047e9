"""
API du frontend : routeur, handlers d’orchestration et endpoints fixes.
"""
