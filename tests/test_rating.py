"""Tests du rating Elo calculé à la lecture."""

from __future__ import annotations

import random
from datetime import timedelta

import pytest

from crucible_ledger.analysis.rating import RatingConfig, compute_ratings, expected_score
from crucible_ledger.data.domain.models import PlayerActivityPerformance
from crucible_ledger.data.domain.refdata import NO_TEAMS_INDEX, Mode, Standing
from tests.conftest import BASE_PERIOD


def perf(
    activity_id: int,
    member_id: int,
    team: int,
    standing: Standing,
    *,
    minutes: int = 0,
    mode: Mode = Mode.CONTROL,
    character_id: int | None = None,
) -> PlayerActivityPerformance:
    return PlayerActivityPerformance(
        activity_id=activity_id,
        period=BASE_PERIOD + timedelta(minutes=minutes),
        mode=int(mode),
        map_name=None,
        is_private=False,
        member_id=member_id,
        display_name=None,
        character_id=character_id or member_id * 10,
        class_id=1,
        team=team,
        standing=int(standing),
        completion_reason=0,
        completed=True,
        kills=10,
        deaths=5,
        assists=2,
        score=1000,
        opponents_defeated=12,
        precision_kills=3,
        ability_kills=1,
        grenade_kills=1,
        melee_kills=1,
        super_kills=0,
        time_played_seconds=600,
        activity_duration_seconds=600,
        player_count=2,
        team_score=100,
    )


def duel(activity_id: int, winner: int, loser: int, minutes: int) -> list[PlayerActivityPerformance]:
    return [
        perf(activity_id, winner, 17, Standing.VICTORY, minutes=minutes),
        perf(activity_id, loser, 18, Standing.DEFEAT, minutes=minutes),
    ]


def season_rows() -> list[PlayerActivityPerformance]:
    rows = []
    for i in range(30):
        winner, loser = (1, 2) if i % 3 else (2, 3)
        rows.extend(duel(100 + i, winner, loser, minutes=15 * i))
    return rows


class TestExpectedScore:
    """Score attendu."""

    def test_equal_ratings(self):
        """À cote égale, le score attendu vaut 0,5."""
        assert expected_score(1500, 1500) == pytest.approx(0.5)

    def test_stronger_player(self):
        """Un écart de 400 points donne une cote de 10 contre 1."""
        assert expected_score(1900, 1500) == pytest.approx(1 / 1.1, rel=1e-3)
        assert expected_score(1500, 1900) == pytest.approx(1 - 1 / 1.1, rel=1e-3)


class TestComputeRatings:
    """Rejeu des activités."""

    def test_first_duel(self):
        """Premier duel : le gagnant prend ce que le perdant cède."""
        result = compute_ratings(duel(1, winner=1, loser=2, minutes=0))

        assert result.rating_for(1) == pytest.approx(1520)
        assert result.rating_for(2) == pytest.approx(1480)
        assert result.activities_rated == 1

    def test_reproducible(self):
        """Le même rejeu donne les mêmes cotes."""
        first = compute_ratings(season_rows(), tracked_member_id=1)
        second = compute_ratings(season_rows(), tracked_member_id=1)

        assert first.ratings == second.ratings
        assert first.tracked_history == second.tracked_history

    def test_input_order_does_not_matter(self):
        """L'ordre des lignes en entrée ne change pas les cotes."""
        rows = season_rows()
        shuffled = list(rows)
        random.Random(7).shuffle(shuffled)

        assert compute_ratings(shuffled).ratings == pytest.approx(compute_ratings(rows).ratings)

    def test_same_period_ordered_by_activity_id(self):
        """À période égale, les activités sont rejouées par identifiant."""
        rows = duel(2, winner=2, loser=1, minutes=0) + duel(1, winner=1, loser=2, minutes=0)

        result = compute_ratings(rows, tracked_member_id=1)

        assert [c.activity_id for c in result.tracked_history] == [1, 2]

    def test_k_factor_drops_after_provisional_games(self):
        """Le facteur K baisse après les parties provisoires."""
        config = RatingConfig(provisional_games=1)
        rows = duel(1, 1, 2, minutes=0) + duel(2, 1, 2, minutes=10)

        result = compute_ratings(rows, config=config)

        second = result.history_for(1)[1]
        assert second.before == pytest.approx(1520)
        assert second.delta == pytest.approx(20 * (1 - expected_score(1520, 1480)))

    def test_unknown_standing_is_skipped(self):
        """Une activité sans résultat connu est ignorée."""
        rows = [
            perf(1, 1, 17, Standing.UNKNOWN),
            perf(1, 2, 18, Standing.UNKNOWN),
        ]

        result = compute_ratings(rows)

        assert result.ratings == {}
        assert result.activities_skipped == 1

    def test_team_sides_use_mean_rating(self):
        """Chaque équipe est comparée à la cote moyenne adverse."""
        rows = duel(1, 1, 3, minutes=0) + [
            perf(2, 1, 17, Standing.VICTORY, minutes=10),
            perf(2, 2, 17, Standing.VICTORY, minutes=10),
            perf(2, 3, 18, Standing.DEFEAT, minutes=10),
            perf(2, 4, 18, Standing.DEFEAT, minutes=10),
        ]

        result = compute_ratings(rows)

        # Camp 17 : (1520 + 1500) / 2 ; camp 18 : (1480 + 1500) / 2
        change = result.history_for(2)[0]
        assert change.expected == pytest.approx(expected_score(1510, 1490))

    def test_one_update_per_member_per_activity(self):
        """Un joueur n'est mis à jour qu'une fois par activité."""
        rows = duel(1, 1, 2, minutes=0) + [perf(1, 1, 17, Standing.VICTORY, character_id=99)]

        result = compute_ratings(rows)

        assert result.games[1] == 1
        assert len(result.history_for(1)) == 1

    def test_free_for_all_compares_with_everyone(self):
        """En chacun pour soi, chaque joueur est comparé à tous les autres."""
        rows = [
            perf(1, member, NO_TEAMS_INDEX, standing, mode=Mode.RUMBLE)
            for member, standing in [
                (1, Standing.VICTORY),
                (2, Standing.VICTORY),
                (3, Standing.VICTORY),
                (4, Standing.DEFEAT),
            ]
        ]

        result = compute_ratings(rows)

        assert result.rating_for(1) == pytest.approx(1520)
        assert result.rating_for(4) == pytest.approx(1480)

    def test_tie_counts_as_win(self):
        """Une égalité compte comme victoire des deux côtés."""
        # Les égalités sont stockées comme VICTORY des deux côtés
        rows = [perf(1, 1, 17, Standing.VICTORY), perf(1, 2, 18, Standing.VICTORY)]

        result = compute_ratings(rows)

        assert result.rating_for(1) == pytest.approx(1520)
        assert result.rating_for(2) == pytest.approx(1520)
