"""Module data : synchronisation, stockage DuckDB et requêtes.

HOW IT WORKS:
1. sync : API Bungie → transformation → écriture atomique dans DuckDB
2. manifest : référentiel local versionné (noms des cartes, armes, modes)
3. store : base des activités (schéma, écriture, frontier de sync)
4. repositories : requêtes de lecture pour les outils CLI
"""
