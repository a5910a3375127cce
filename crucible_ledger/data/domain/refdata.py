"""Enums de référence Destiny 2 basés sur la documentation de l'API Bungie.

Ce module fournit les enums utilisés par le stockage et les requêtes :
- Mode : Types de modes d'activité (DestinyActivityModeType)
- Platform : Plateformes (BungieMembershipType)
- CharacterClass / CharacterClassSelection : Classes de personnage
- Standing : Résultat d'un joueur dans une activité
- CompletionReason : Raison de fin d'activité

Source : https://bungie-net.github.io/multi/schema_Destiny-HistoricalStats-Definitions-DestinyActivityModeType.html
"""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final


class Mode(IntEnum):
    """Modes d'activité (sous-ensemble PvP + quelques modes PvE courants)."""

    NONE = 0
    STORY = 2
    STRIKE = 3
    RAID = 4
    ALL_PVP = 5
    PATROL = 6
    ALL_PVE = 7
    CONTROL = 10
    CLASH = 12
    CRIMSON_DOUBLES = 15
    NIGHTFALL = 16
    ALL_STRIKES = 18
    IRON_BANNER = 19
    ALL_MAYHEM = 25
    SUPREMACY = 31
    ALL_PRIVATE = 32
    SURVIVAL = 37
    COUNTDOWN = 38
    TRIALS_OF_THE_NINE = 39
    SOCIAL = 40
    IRON_BANNER_CONTROL = 43
    IRON_BANNER_CLASH = 44
    IRON_BANNER_SUPREMACY = 45
    RUMBLE = 48
    ALL_DOUBLES = 49
    DOUBLES = 50
    PRIVATE_CLASH = 51
    PRIVATE_CONTROL = 52
    PRIVATE_SUPREMACY = 53
    PRIVATE_COUNTDOWN = 54
    PRIVATE_SURVIVAL = 55
    PRIVATE_MAYHEM = 56
    PRIVATE_RUMBLE = 57
    SHOWDOWN = 59
    LOCKDOWN = 60
    SCORCHED = 61
    SCORCHED_TEAM = 62
    GAMBIT = 63
    BREAKTHROUGH = 65
    SALVAGE = 67
    IRON_BANNER_SALVAGE = 68
    PVP_COMPETITIVE = 69
    PVP_QUICKPLAY = 70
    CLASH_QUICKPLAY = 71
    CLASH_COMPETITIVE = 72
    CONTROL_QUICKPLAY = 73
    CONTROL_COMPETITIVE = 74
    GAMBIT_PRIME = 75
    ELIMINATION = 80
    MOMENTUM = 81
    TRIALS_OF_OSIRIS = 84
    RIFT = 88
    ZONE_CONTROL = 89
    IRON_BANNER_RIFT = 90

    @classmethod
    def from_name(cls, name: str) -> Mode:
        """Parse un nom de mode CLI (ex: "all_pvp", "trials_of_osiris")."""
        key = name.strip().upper().replace("-", "_")
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Mode inconnu: {name!r}") from None

    @classmethod
    def from_value(cls, value: int | None) -> Mode:
        """Convertit une valeur brute en Mode (NONE si inconnue)."""
        if value is None:
            return cls.NONE
        try:
            return cls(int(value))
        except ValueError:
            return cls.NONE

    @property
    def cli_name(self) -> str:
        return self.name.lower()

    @property
    def is_private(self) -> bool:
        return self in PRIVATE_MODES

    @property
    def is_free_for_all(self) -> bool:
        return self in FREE_FOR_ALL_MODES


class Platform(IntEnum):
    """Plateformes (BungieMembershipType)."""

    UNKNOWN = 0
    XBOX = 1
    PSN = 2
    STEAM = 3
    BLIZZARD = 4
    STADIA = 5

    @classmethod
    def from_name(cls, name: str) -> Platform:
        key = name.strip().upper()
        aliases = {"PS": "PSN", "PLAYSTATION": "PSN", "XB": "XBOX", "PC": "STEAM"}
        key = aliases.get(key, key)
        if key.isdigit():
            return cls(int(key))
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"Plateforme inconnue: {name!r}") from None


class CharacterClass(IntEnum):
    """Classe de personnage (identifiant stocké en base)."""

    TITAN = 0
    HUNTER = 1
    WARLOCK = 2
    UNKNOWN = 3

    @classmethod
    def from_hash(cls, class_hash: int | None) -> CharacterClass:
        return CLASS_HASH_TO_CLASS.get(int(class_hash or 0), cls.UNKNOWN)

    @classmethod
    def from_type(cls, class_type: int | None) -> CharacterClass:
        """Convertit le champ classType (0/1/2) du profil."""
        try:
            return cls(int(class_type))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return cls.UNKNOWN


class CharacterClassSelection(str, Enum):
    """Sélection de personnage côté requêtes."""

    TITAN = "titan"
    HUNTER = "hunter"
    WARLOCK = "warlock"
    LAST_ACTIVE = "last_active"
    ALL = "all"

    @classmethod
    def from_name(cls, name: str) -> CharacterClassSelection:
        try:
            return cls(name.strip().lower().replace("-", "_"))
        except ValueError:
            raise ValueError(f"Sélection de classe inconnue: {name!r}") from None

    @property
    def character_class(self) -> CharacterClass | None:
        return {
            CharacterClassSelection.TITAN: CharacterClass.TITAN,
            CharacterClassSelection.HUNTER: CharacterClass.HUNTER,
            CharacterClassSelection.WARLOCK: CharacterClass.WARLOCK,
        }.get(self)


class Standing(IntEnum):
    """Résultat d'un joueur. Les égalités sont enregistrées comme VICTORY."""

    VICTORY = 0
    DEFEAT = 1
    UNKNOWN = 2


class CompletionReason(IntEnum):
    """Raison de fin d'activité."""

    OBJECTIVE_COMPLETED = 0
    TIMER_FINISHED = 1
    FAILED = 2
    NO_OPPONENTS = 3
    MERCY = 4
    UNKNOWN = 255

    @classmethod
    def from_value(cls, value: int | float | None) -> CompletionReason:
        try:
            return cls(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return cls.UNKNOWN


# =============================================================================
# Constantes
# =============================================================================

CLASS_HASH_TO_CLASS: Final[dict[int, CharacterClass]] = {
    3655393761: CharacterClass.TITAN,
    671679327: CharacterClass.HUNTER,
    2271682572: CharacterClass.WARLOCK,
}

PRIVATE_MODES: Final[frozenset[Mode]] = frozenset(
    {
        Mode.ALL_PRIVATE,
        Mode.PRIVATE_CLASH,
        Mode.PRIVATE_CONTROL,
        Mode.PRIVATE_SUPREMACY,
        Mode.PRIVATE_COUNTDOWN,
        Mode.PRIVATE_SURVIVAL,
        Mode.PRIVATE_MAYHEM,
        Mode.PRIVATE_RUMBLE,
    }
)

FREE_FOR_ALL_MODES: Final[frozenset[Mode]] = frozenset(
    {Mode.RUMBLE, Mode.PRIVATE_RUMBLE, Mode.SCORCHED}
)

# Hashes "director" des matchs privés Gambit, listés dans l'historique privé
# mais sans PGCR exploitable
GAMBIT_PRIVATE_DIRECTOR_HASHES: Final[frozenset[int]] = frozenset({2526740498, 248695599})

# Index d'équipe utilisé quand l'activité n'a pas d'équipes (Rumble)
NO_TEAMS_INDEX: Final[int] = 253

# En free-for-all, standing = place (0 = premier) ; top 3 compté comme victoire
FREE_FOR_ALL_VICTORY_MAX_PLACE: Final[int] = 2

# Historiques synchronisés par défaut
DEFAULT_SYNC_MODES: Final[tuple[Mode, ...]] = (Mode.ALL_PVP, Mode.ALL_PRIVATE)

# Libellé affiché pour une référence non résolue
UNKNOWN_LABEL: Final[str] = "Unknown"


def standing_from_value(value: int | float | None, *, free_for_all: bool = False) -> Standing:
    """Convertit la valeur brute "standing" de l'API.

    Équipes : 0 = victoire (égalités incluses), 1 = défaite.
    Free-for-all : la valeur est la place finale.
    """
    if value is None:
        return Standing.UNKNOWN
    try:
        raw = int(value)
    except (TypeError, ValueError):
        return Standing.UNKNOWN
    if raw < 0:
        return Standing.UNKNOWN
    if free_for_all:
        return Standing.VICTORY if raw <= FREE_FOR_ALL_VICTORY_MAX_PLACE else Standing.DEFEAT
    if raw == 0:
        return Standing.VICTORY
    if raw == 1:
        return Standing.DEFEAT
    return Standing.UNKNOWN


def parse_modes(names: list[str] | tuple[str, ...] | None) -> list[Mode]:
    """Parse une liste de noms de modes CLI. Vide => [ALL_PVP]."""
    if not names:
        return [Mode.ALL_PVP]
    return [Mode.from_name(n) for n in names]
