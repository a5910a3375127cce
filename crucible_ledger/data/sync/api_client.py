"""Client API Bungie asynchrone (Destiny 2).

Ce module fournit :
- ActivityApi : le contrat (Protocol) consommé par le moteur de sync
- BungieAPIClient : implémentation aiohttp (header X-API-Key)

Pas de retry automatique : toute erreur réseau ou code d'erreur distant est
convertie en TransportError (AuthError / NotFoundError selon le cas) et
remonte à l'appelant, qui relance la sync plus tard.

Usage:
    async with BungieAPIClient(api_key="...") as client:
        profile = await client.fetch_player_profile(4611686018467284386, 3)
        page = await client.fetch_activity_page(profile.member_id, cid, 3, Mode.ALL_PVP, 0)
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from aiohttp import ClientError, ClientSession, ClientTimeout

from crucible_ledger.data.domain.refdata import Mode
from crucible_ledger.data.sync.models import (
    ActivityHistoryEntry,
    ActivityPage,
    CarnageReport,
    CharacterInfo,
    CurrentActivity,
    ManifestVersion,
    PlayerProfile,
)
from crucible_ledger.errors import AuthError, NotFoundError, TransportError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

API_ROOT = "https://www.bungie.net"
STATS_ROOT = "https://stats.bungie.net"

# ErrorCode Bungie : 1 = Success
SUCCESS_CODE = 1

# WebAuthRequired, ApiInvalidOrExpiredKey, ApiKeyMissingFromRequest, ...
AUTH_ERROR_CODES = frozenset({99, 2101, 2102, 2103, 2104, 2105, 2106, 2107})

# DestinyAccountNotFound, DestinyCharacterNotFound, DestinyPGCRNotFound, ...
NOT_FOUND_ERROR_CODES = frozenset({1601, 1620, 1653, 1665, 217})

# Nombre maximum d'entrées par page d'historique côté Bungie
MAX_HISTORY_COUNT = 250


# =============================================================================
# Contrat
# =============================================================================


@runtime_checkable
class ActivityApi(Protocol):
    """Interface du collaborateur API distant.

    Chaque méthode renvoie un modèle ou lève TransportError / AuthError /
    NotFoundError.
    """

    async def fetch_manifest_version(self) -> ManifestVersion: ...

    async def fetch_manifest_blob(self, version: ManifestVersion) -> dict[str, Any]: ...

    async def fetch_player_profile(self, member_id: int, platform: int) -> PlayerProfile: ...

    async def fetch_current_activity(self, member_id: int, platform: int) -> CurrentActivity | None: ...

    async def fetch_activity_page(
        self,
        member_id: int,
        character_id: int,
        platform: int,
        mode: Mode,
        page: int,
        count: int = MAX_HISTORY_COUNT,
    ) -> ActivityPage: ...

    async def fetch_activity_detail(self, activity_id: int) -> CarnageReport: ...


# =============================================================================
# Client aiohttp
# =============================================================================


class BungieAPIClient:
    """Client API Bungie asynchrone.

    Usage:
        async with BungieAPIClient(api_key=key) as client:
            detail = await client.fetch_activity_detail(123)
    """

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float = 45.0,
        session: ClientSession | None = None,
    ) -> None:
        """
        Args:
            api_key: Clé API Bungie (header X-API-Key).
            timeout_seconds: Timeout total par requête.
            session: Session aiohttp existante (non fermée par le client).
        """
        if not api_key:
            raise AuthError("Clé API Bungie manquante (CRUCIBLE_LEDGER_API_KEY)")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> BungieAPIClient:
        """Initialise la session."""
        if self._session is None:
            self._session = ClientSession(timeout=ClientTimeout(total=self._timeout_seconds))
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Ferme la session."""
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

    @property
    def session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("Client non initialisé. Utiliser 'async with'.")
        return self._session

    # =========================================================================
    # Transport
    # =========================================================================

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET + décodage de l'enveloppe Bungie ({"ErrorCode", "Response"}).

        Returns:
            Le contenu de "Response".

        Raises:
            AuthError: 401/403 ou code d'authentification.
            NotFoundError: 404 ou code "introuvable".
            TransportError: toute autre erreur réseau / HTTP / distante.
        """
        headers = {"X-API-Key": self._api_key, "Accept": "application/json"}
        logger.debug(f"GET {url} {params or ''}")
        try:
            async with self.session.get(url, headers=headers, params=params) as resp:
                status = resp.status
                text = await resp.text()
        except (ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Erreur réseau sur {url}: {e}") from e

        payload: dict[str, Any] | None
        try:
            payload = json.loads(text) if text else None
        except json.JSONDecodeError:
            payload = None

        error_code = payload.get("ErrorCode") if isinstance(payload, dict) else None
        message = (payload or {}).get("Message") if isinstance(payload, dict) else None

        if status in (401, 403) or error_code in AUTH_ERROR_CODES:
            raise AuthError(
                f"Accès refusé ({status}): {message or url}", status=status, error_code=error_code
            )
        if status == 404 or error_code in NOT_FOUND_ERROR_CODES:
            raise NotFoundError(
                f"Introuvable ({status}): {message or url}", status=status, error_code=error_code
            )
        if status >= 400:
            raise TransportError(
                f"HTTP {status} sur {url}: {message or text[:200]}",
                status=status,
                error_code=error_code,
            )
        if not isinstance(payload, dict):
            raise TransportError(f"Réponse non JSON sur {url}", status=status)
        if error_code is not None and error_code != SUCCESS_CODE:
            raise TransportError(
                f"Erreur API {error_code} ({payload.get('ErrorStatus')}): {message}",
                status=status,
                error_code=error_code,
            )
        return payload.get("Response")

    async def _get_raw_json(self, url: str) -> dict[str, Any]:
        """GET d'un fichier JSON brut (contenu manifest, pas d'enveloppe)."""
        try:
            async with self.session.get(url) as resp:
                if resp.status == 404:
                    raise NotFoundError(f"Introuvable: {url}", status=404)
                if resp.status >= 400:
                    raise TransportError(f"HTTP {resp.status} sur {url}", status=resp.status)
                return await resp.json(content_type=None)
        except (ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Erreur réseau sur {url}: {e}") from e

    # =========================================================================
    # Manifest
    # =========================================================================

    async def fetch_manifest_version(self) -> ManifestVersion:
        data = await self._get_json(f"{API_ROOT}/Platform/Destiny2/Manifest/")
        return ManifestVersion.model_validate(data or {})

    async def fetch_manifest_blob(self, version: ManifestVersion) -> dict[str, Any]:
        """Télécharge le contenu monde (JSON des tables de définitions)."""
        if not version.world_content_path:
            raise TransportError(f"Pas de chemin de contenu pour le manifest {version.version}")
        path = version.world_content_path
        url = path if path.startswith("http") else f"{API_ROOT}{path}"
        logger.info(f"Téléchargement du manifest {version.version}")
        return await self._get_raw_json(url)

    # =========================================================================
    # Profil
    # =========================================================================

    async def resolve_primary_membership(self, member_id: int, platform: int) -> tuple[int, int]:
        """Résout le membership primaire (cross-save).

        Returns:
            (member_id, platform) du compte primaire.
        """
        data = await self._get_json(f"{API_ROOT}/Platform/User/GetMembershipsById/{member_id}/{platform}/")
        data = data or {}
        primary = data.get("primaryMembershipId")
        if not primary:
            return member_id, platform
        for membership in data.get("destinyMemberships") or []:
            if str(membership.get("membershipId")) == str(primary):
                return int(primary), int(membership.get("membershipType", platform))
        return member_id, platform

    async def fetch_player_profile(self, member_id: int, platform: int) -> PlayerProfile:
        member_id, platform = await self.resolve_primary_membership(member_id, platform)
        data = await self._get_json(
            f"{API_ROOT}/Platform/Destiny2/{platform}/Profile/{member_id}/",
            params={"components": "100,200"},
        )
        data = data or {}
        user_info = ((data.get("profile") or {}).get("data") or {}).get("userInfo") or {}
        characters = ((data.get("characters") or {}).get("data") or {}).values()

        display_name = user_info.get("bungieGlobalDisplayName") or user_info.get("displayName")
        code = user_info.get("bungieGlobalDisplayNameCode")
        if display_name and code:
            display_name = f"{display_name}#{int(code):04d}"

        return PlayerProfile(
            member_id=member_id,
            platform=platform,
            display_name=display_name,
            characters=[CharacterInfo.model_validate(c) for c in characters],
        )

    async def fetch_current_activity(self, member_id: int, platform: int) -> CurrentActivity | None:
        """Activité en cours du joueur (composant 204).

        Retient le personnage dont l'activité a démarré le plus récemment.

        Returns:
            None si aucun personnage n'est en activité (joueur hors ligne).
        """
        data = await self._get_json(
            f"{API_ROOT}/Platform/Destiny2/{platform}/Profile/{member_id}/",
            params={"components": "204"},
        )
        by_character = ((data or {}).get("characterActivities") or {}).get("data") or {}
        activities = [
            CurrentActivity.model_validate({**raw, "characterId": character_id})
            for character_id, raw in by_character.items()
            if raw.get("currentActivityHash")
        ]
        if not activities:
            return None
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return max(activities, key=lambda a: a.started_at or epoch)

    # =========================================================================
    # Historique et PGCR
    # =========================================================================

    async def fetch_activity_page(
        self,
        member_id: int,
        character_id: int,
        platform: int,
        mode: Mode,
        page: int,
        count: int = MAX_HISTORY_COUNT,
    ) -> ActivityPage:
        """Une page d'historique (plus récent d'abord).

        has_more est vrai quand la page est pleine.
        """
        data = await self._get_json(
            f"{API_ROOT}/Platform/Destiny2/{platform}/Account/{member_id}"
            f"/Character/{character_id}/Stats/Activities/",
            params={"mode": int(mode), "count": count, "page": page},
        )
        raw_entries = (data or {}).get("activities") or []
        entries = [ActivityHistoryEntry.model_validate(e) for e in raw_entries]
        return ActivityPage(entries=entries, has_more=len(raw_entries) >= count)

    async def fetch_activity_detail(self, activity_id: int) -> CarnageReport:
        data = await self._get_json(
            f"{STATS_ROOT}/Platform/Destiny2/Stats/PostGameCarnageReport/{activity_id}/"
        )
        return CarnageReport.model_validate(data or {})
