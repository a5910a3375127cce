"""Crucible Ledger : historique d'activités Destiny 2 consultable hors ligne.

Architecture :
- data/sync : client API Bungie + moteur de synchronisation incrémentale
- data/manifest : référentiel local (manifest) versionné
- data/store : base DuckDB des activités (schéma + écriture + frontière)
- data/repositories : couche de requêtes pour les outils CLI
- analysis : agrégats de stats et rating Elo (calculés à la lecture)
"""

__version__ = "0.9.0"
