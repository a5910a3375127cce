"""Rating Elo calculé à la lecture.

Les ratings ne sont jamais persistés : ils sont rejoués depuis les rosters
stockés, du plus ancien au plus récent (ordre (period, activity_id) quel que
soit l'ordre d'entrée). Un recalcul complet reproduit donc toujours le même
historique.

Pour chaque activité :
- rating de camp = moyenne des ratings courants des joueurs du camp
- score attendu E = 1 / (1 + 10 ** ((adverse - propre) / 400))
- score réel S = 1 victoire (égalités incluses), 0 défaite ; standing
  inconnu => joueur ignoré pour cette activité
- K = k_provisional pendant les `provisional_games` premières activités
  d'un joueur, k_established ensuite
- free-for-all : chaque joueur est comparé à la moyenne de tous les autres
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from crucible_ledger.data.domain.models import PlayerActivityPerformance
from crucible_ledger.data.domain.refdata import NO_TEAMS_INDEX, Mode, Standing


@dataclass(frozen=True)
class RatingConfig:
    """Paramètres du rating."""

    initial_rating: float = 1500.0
    k_provisional: float = 40.0
    k_established: float = 20.0
    provisional_games: int = 20
    scale: float = 400.0


@dataclass(frozen=True)
class RatingChange:
    """Évolution du rating d'un joueur sur une activité."""

    activity_id: int
    period: datetime
    member_id: int
    before: float
    after: float
    expected: float
    actual: float

    @property
    def delta(self) -> float:
        return self.after - self.before


@dataclass
class RatingResult:
    """Ratings finaux + historique des changements."""

    ratings: dict[int, float] = field(default_factory=dict)
    games: dict[int, int] = field(default_factory=dict)
    history: list[RatingChange] = field(default_factory=list)
    activities_rated: int = 0
    activities_skipped: int = 0
    tracked_member_id: int | None = None

    def rating_for(self, member_id: int, default: float | None = None) -> float | None:
        return self.ratings.get(member_id, default)

    def history_for(self, member_id: int) -> list[RatingChange]:
        return [c for c in self.history if c.member_id == member_id]

    @property
    def tracked_history(self) -> list[RatingChange]:
        if self.tracked_member_id is None:
            return []
        return self.history_for(self.tracked_member_id)


def expected_score(own: float, opponent: float, scale: float = 400.0) -> float:
    return 1.0 / (1.0 + 10.0 ** ((opponent - own) / scale))


def _is_free_for_all(players: list[PlayerActivityPerformance]) -> bool:
    if any(Mode.from_value(p.mode).is_free_for_all for p in players):
        return True
    return all(p.team == NO_TEAMS_INDEX for p in players)


def compute_ratings(
    rows: Iterable[PlayerActivityPerformance],
    *,
    tracked_member_id: int | None = None,
    config: RatingConfig | None = None,
) -> RatingResult:
    """Rejoue les activités et calcule les ratings de tous les joueurs croisés.

    Args:
        rows: Lignes de roster (toutes les lignes des activités à noter).
        tracked_member_id: Joueur dont l'historique est mis en avant.
        config: Paramètres (défauts si None).

    Returns:
        RatingResult.
    """
    config = config or RatingConfig()
    result = RatingResult(tracked_member_id=tracked_member_id)

    by_activity: dict[int, dict[int, PlayerActivityPerformance]] = defaultdict(dict)
    periods: dict[int, datetime] = {}
    for row in rows:
        # Un joueur par activité (premier personnage rencontré)
        by_activity[row.activity_id].setdefault(row.member_id, row)
        periods[row.activity_id] = row.period

    for activity_id in sorted(by_activity, key=lambda a: (periods[a], a)):
        players = [
            p
            for _, p in sorted(by_activity[activity_id].items())
            if p.standing != Standing.UNKNOWN
        ]
        if len(players) < 2:
            result.activities_skipped += 1
            continue

        current = {p.member_id: result.ratings.get(p.member_id, config.initial_rating) for p in players}
        free_for_all = _is_free_for_all(players)

        updates: list[RatingChange] = []
        for p in players:
            if free_for_all:
                own = current[p.member_id]
                opponents = [current[o.member_id] for o in players if o.member_id != p.member_id]
            else:
                own_side = [current[o.member_id] for o in players if o.team == p.team]
                own = sum(own_side) / len(own_side)
                opponents = [current[o.member_id] for o in players if o.team != p.team]
            if not opponents:
                continue
            opponent = sum(opponents) / len(opponents)

            expected = expected_score(own, opponent, config.scale)
            actual = 1.0 if p.standing == Standing.VICTORY else 0.0
            games = result.games.get(p.member_id, 0)
            k = config.k_provisional if games < config.provisional_games else config.k_established
            before = current[p.member_id]
            updates.append(
                RatingChange(
                    activity_id=activity_id,
                    period=periods[activity_id],
                    member_id=p.member_id,
                    before=before,
                    after=before + k * (actual - expected),
                    expected=expected,
                    actual=actual,
                )
            )

        if not updates:
            result.activities_skipped += 1
            continue

        # Mise à jour simultanée : les ratings d'avant-activité servent à tous
        for change in updates:
            result.ratings[change.member_id] = change.after
            result.games[change.member_id] = result.games.get(change.member_id, 0) + 1
        result.history.extend(updates)
        result.activities_rated += 1

    return result
