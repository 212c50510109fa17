"""
Core - Utilitaires transverses (cache, rate limiting, config, erreurs)
"""
