"""Exceptions du projet.

Taxonomie :
- TransportError : réseau / HTTP / code d'erreur distant. Interrompt l'opération
  en cours sans toucher aux données déjà committées ; l'appelant relance plus tard.
- SchemaVersionMismatch : base locale incompatible, ré-acquisition complète requise.
- StoreNotFound : base locale absente, première sync requise.
- ActivityNotFound / CharacterDoesNotExist : côté requêtes (ligne absente).

Les références non résolues (ReferenceMiss) et les doublons ne sont PAS des
exceptions : ils sont comptés dans SyncResult.
"""

from __future__ import annotations


class CrucibleLedgerError(Exception):
    """Exception de base du projet."""


# =============================================================================
# Transport (API distante)
# =============================================================================


class TransportError(CrucibleLedgerError):
    """Erreur réseau ou réponse d'erreur de l'API distante."""

    def __init__(self, message: str, *, status: int | None = None, error_code: int | None = None):
        self.status = status
        self.error_code = error_code
        super().__init__(message)


class AuthError(TransportError):
    """Requête refusée (401/403, clé API invalide ou expirée)."""


class NotFoundError(TransportError):
    """Ressource distante inexistante (404, PGCR introuvable)."""


# =============================================================================
# Stockage local
# =============================================================================


class SchemaVersionMismatch(CrucibleLedgerError):
    """La base locale a une version de schéma incompatible.

    Aucune migration en place : il faut ré-acquérir toutes les données.
    """

    def __init__(self, path: str, found: int | None, expected: int):
        self.path = path
        self.found = found
        self.expected = expected
        super().__init__(
            f"Version de schéma incompatible pour {path}: "
            f"trouvée={found}, attendue={expected}. Resynchronisation complète requise."
        )


class StoreNotFound(CrucibleLedgerError):
    """La base des activités n'existe pas encore (aucune sync lancée)."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Base des activités absente: {path}")


class StoreBusyError(CrucibleLedgerError):
    """Le fichier DuckDB est verrouillé par un autre processus."""


class ManifestError(CrucibleLedgerError):
    """Un manifest téléchargé n'a pas passé la validation (l'ancien est conservé)."""


# =============================================================================
# Requêtes
# =============================================================================


class ActivityNotFound(CrucibleLedgerError):
    """Aucune activité ne correspond à la requête."""


class CharacterDoesNotExist(CrucibleLedgerError):
    """Le joueur n'a pas de personnage correspondant à la sélection."""
