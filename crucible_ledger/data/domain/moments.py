"""Moments : fenêtres temporelles nommées pour les requêtes.

Un moment (ex: "weekly", "season", "all_time") est résolu en une fenêtre
[start, end) concrète à partir d'un instant "now" passé explicitement.
Aucune lecture de l'horloge murale ici : la résolution est déterministe.

Les resets Destiny 2 ont lieu à 17:00 UTC (quotidien), le mardi (hebdo)
et le vendredi (week-end, Trials / Xur).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Final

# Heure du reset quotidien (UTC)
RESET_HOUR_UTC: Final[int] = 17

# datetime.weekday() : lundi = 0
TUESDAY: Final[int] = 1
FRIDAY: Final[int] = 4

# Sortie de Destiny 2
LAUNCH_DATE: Final[datetime] = datetime(2017, 9, 6, RESET_HOUR_UTC, tzinfo=timezone.utc)


class Moment(str, Enum):
    """Moments disponibles en ligne de commande."""

    NOW = "now"
    DAILY = "daily"
    WEEKEND = "weekend"
    WEEKLY = "weekly"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    SEASON = "season"
    ALL_TIME = "all_time"
    LAUNCH = "launch"
    CURSE_OF_OSIRIS = "curse_of_osiris"
    WARMIND = "warmind"
    SEASON_OF_THE_OUTLAW = "season_of_the_outlaw"
    SEASON_OF_THE_FORGE = "season_of_the_forge"
    SEASON_OF_THE_DRIFTER = "season_of_the_drifter"
    SEASON_OF_OPULENCE = "season_of_opulence"
    SEASON_OF_THE_UNDYING = "season_of_the_undying"
    SEASON_OF_DAWN = "season_of_dawn"
    SEASON_OF_THE_WORTHY = "season_of_the_worthy"
    SEASON_OF_ARRIVALS = "season_of_arrivals"
    SEASON_OF_THE_HUNT = "season_of_the_hunt"
    SEASON_OF_THE_CHOSEN = "season_of_the_chosen"
    SEASON_OF_THE_SPLICER = "season_of_the_splicer"
    SEASON_OF_THE_LOST = "season_of_the_lost"

    @classmethod
    def from_name(cls, name: str) -> Moment:
        try:
            return cls(name.strip().lower().replace("-", "_"))
        except ValueError:
            raise ValueError(f"Moment inconnu: {name!r}") from None


def _utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, RESET_HOUR_UTC, tzinfo=timezone.utc)


# Dates de début de saison, dans l'ordre chronologique
SEASON_STARTS: Final[tuple[tuple[Moment, datetime], ...]] = (
    (Moment.LAUNCH, LAUNCH_DATE),
    (Moment.CURSE_OF_OSIRIS, _utc(2017, 12, 5)),
    (Moment.WARMIND, _utc(2018, 5, 8)),
    (Moment.SEASON_OF_THE_OUTLAW, _utc(2018, 9, 4)),
    (Moment.SEASON_OF_THE_FORGE, _utc(2018, 11, 27)),
    (Moment.SEASON_OF_THE_DRIFTER, _utc(2019, 3, 5)),
    (Moment.SEASON_OF_OPULENCE, _utc(2019, 6, 4)),
    (Moment.SEASON_OF_THE_UNDYING, _utc(2019, 10, 1)),
    (Moment.SEASON_OF_DAWN, _utc(2019, 12, 10)),
    (Moment.SEASON_OF_THE_WORTHY, _utc(2020, 3, 10)),
    (Moment.SEASON_OF_ARRIVALS, _utc(2020, 6, 9)),
    (Moment.SEASON_OF_THE_HUNT, _utc(2020, 11, 10)),
    (Moment.SEASON_OF_THE_CHOSEN, _utc(2021, 2, 9)),
    (Moment.SEASON_OF_THE_SPLICER, _utc(2021, 5, 11)),
    (Moment.SEASON_OF_THE_LOST, _utc(2021, 8, 24)),
)


@dataclass(frozen=True)
class TimeWindow:
    """Fenêtre [start, end) en UTC (datetimes "aware")."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))

    def contains(self, instant: datetime) -> bool:
        return self.start <= ensure_utc(instant) < self.end

    @property
    def start_naive(self) -> datetime:
        """Début en UTC naïf (format de stockage)."""
        return to_naive_utc(self.start)

    @property
    def end_naive(self) -> datetime:
        return to_naive_utc(self.end)


def ensure_utc(value: datetime) -> datetime:
    """Normalise en UTC aware ; un datetime naïf est considéré comme UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return ensure_utc(value).replace(tzinfo=None)


def most_recent_reset(now: datetime, weekday: int | None = None) -> datetime:
    """Dernier reset à 17:00 UTC au plus tard à `now`.

    Args:
        now: Instant de référence.
        weekday: Jour du reset (0 = lundi). None = reset quotidien.
    """
    now = ensure_utc(now)
    candidate = now.replace(hour=RESET_HOUR_UTC, minute=0, second=0, microsecond=0)
    if weekday is not None:
        candidate -= timedelta(days=(candidate.weekday() - weekday) % 7)
        if candidate > now:
            candidate -= timedelta(days=7)
    elif candidate > now:
        candidate -= timedelta(days=1)
    return candidate


def season_window(moment: Moment, now: datetime) -> TimeWindow:
    """Fenêtre d'une saison : du début jusqu'au début de la suivante (ou now)."""
    now = ensure_utc(now)
    for i, (name, start) in enumerate(SEASON_STARTS):
        if name is not moment:
            continue
        if i + 1 < len(SEASON_STARTS):
            end = SEASON_STARTS[i + 1][1]
        else:
            end = max(now, start)
        return TimeWindow(start, end)
    raise ValueError(f"{moment.value} n'est pas une saison")


def current_season(now: datetime) -> Moment:
    now = ensure_utc(now)
    current = SEASON_STARTS[0][0]
    for name, start in SEASON_STARTS:
        if start <= now:
            current = name
    return current


def resolve_moment(moment: Moment | str, now: datetime) -> TimeWindow:
    """Résout un moment en fenêtre concrète.

    Args:
        moment: Moment (ou son nom CLI).
        now: Instant de référence (injecté, jamais lu ici).

    Returns:
        TimeWindow [start, end). La fin vaut `now` sauf pour les saisons passées.
    """
    if isinstance(moment, str) and not isinstance(moment, Moment):
        moment = Moment.from_name(moment)
    now = ensure_utc(now)

    if moment is Moment.NOW:
        return TimeWindow(now, now)
    if moment is Moment.DAILY:
        return TimeWindow(most_recent_reset(now), now)
    if moment is Moment.WEEKEND:
        return TimeWindow(most_recent_reset(now, FRIDAY), now)
    if moment is Moment.WEEKLY:
        return TimeWindow(most_recent_reset(now, TUESDAY), now)
    if moment is Moment.DAY:
        return TimeWindow(now - timedelta(days=1), now)
    if moment is Moment.WEEK:
        return TimeWindow(now - timedelta(days=7), now)
    if moment is Moment.MONTH:
        return TimeWindow(now - timedelta(days=30), now)
    if moment is Moment.ALL_TIME:
        return TimeWindow(LAUNCH_DATE, max(now, LAUNCH_DATE))
    if moment is Moment.SEASON:
        return season_window(current_season(now), now)
    return season_window(moment, now)
